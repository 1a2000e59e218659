import argparse
import csv
import datetime
import json
import logging
import shutil
import time
import uuid

import requests

from db import HistoryRepository, SessionRepository
from models import ExercisePlan, ExerciseProgress, PerformanceRecord, Session
from progress_service import ProgressService

CSV_FIELDS = [
    "entry_id",
    "trainee_id",
    "session_id",
    "exercise_name",
    "completed_at",
    "set",
    "reps",
    "weight",
]


def export_history(db_path: str, fmt: str, out_path: str) -> int:
    """Write every history entry to ``out_path``; returns the entry count."""
    history = HistoryRepository(db_path)
    entries = []
    for trainee_id in history.trainee_ids():
        entries.extend(history.query_all(trainee_id))
    with open(out_path, "w", encoding="utf-8", newline="") as f:
        if fmt == "json":
            json.dump([e.to_dict() for e in entries], f, indent=2)
        else:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            for entry in entries:
                for number, record in enumerate(entry.performed, start=1):
                    writer.writerow(
                        {
                            "entry_id": entry.id,
                            "trainee_id": entry.trainee_id,
                            "session_id": entry.session_id,
                            "exercise_name": entry.exercise_name,
                            "completed_at": entry.completed_at.isoformat(),
                            "set": number,
                            "reps": record.reps,
                            "weight": record.weight,
                        }
                    )
    return len(entries)


def clear_history(db_path: str) -> None:
    history = HistoryRepository(db_path)
    history.clear()
    history.vacuum()


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def benchmark(url: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")


def _demo_session(trainee_id: str, when: datetime.datetime, bench: float, squat: float) -> Session:
    session = Session(
        id=str(uuid.uuid4()),
        trainee_id=trainee_id,
        trainer_id="demo-trainer",
        name="Upper/Lower Demo",
        scheduled_date=when,
        exercises=[
            ExerciseProgress(ExercisePlan("Bench Press", 3, 8, bench, 90)),
            ExerciseProgress(ExercisePlan("Squats", 3, 5, squat, 120)),
        ],
    )
    for exercise in session.exercises:
        exercise.performed = [
            PerformanceRecord(exercise.plan.target_reps, exercise.plan.target_weight)
            for _ in range(exercise.plan.target_sets)
        ]
    session.mark_completed(when)
    return session


def demo_data(db_path: str, trainee_id: str = "demo-trainee") -> list[str]:
    """Insert two completed demo sessions a week apart, if none exist."""
    sessions = SessionRepository(db_path)
    history = HistoryRepository(db_path)
    if sessions.fetch_for_trainee(trainee_id):
        print("Database already contains sessions for", trainee_id)
        return []
    now = datetime.datetime.now().replace(microsecond=0)
    ids = []
    for when, bench, squat in (
        (now - datetime.timedelta(days=7), 60.0, 100.0),
        (now, 62.5, 100.0),
    ):
        session = _demo_session(trainee_id, when, bench, squat)
        sessions.create(session)
        history.save_session(session)
        ids.append(session.id)
    print("Demo data inserted")
    return ids


def print_report(db_path: str, session_id: str, trainee_name: str) -> dict:
    sessions = SessionRepository(db_path)
    service = ProgressService(HistoryRepository(db_path))
    report = service.build_report(sessions.fetch(session_id), trainee_name)
    print(f"{report.session_name} ({report.trainee_name})")
    for comparison in report.comparisons:
        print(f"  {comparison.exercise_name}: {comparison.progress_description}")
    print(report.overall_summary)
    return report.to_dict()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Session engine utility commands")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="cmd", required=True)

    exp = sub.add_parser("export")
    exp.add_argument("--db", default="training.db")
    exp.add_argument("--fmt", choices=["csv", "json"], default="csv")
    exp.add_argument("--out", default="history.csv")

    clr = sub.add_parser("clear-history")
    clr.add_argument("--db", default="training.db")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="training.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="training.db")

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="training.db")
    demo.add_argument("--trainee", default="demo-trainee")

    rep = sub.add_parser("report")
    rep.add_argument("session_id")
    rep.add_argument("--db", default="training.db")
    rep.add_argument("--name", default="Trainee")

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper())

    if args.cmd == "export":
        count = export_history(args.db, args.fmt, args.out)
        print(f"Exported {count} history entries to {args.out}")
    elif args.cmd == "clear-history":
        clear_history(args.db)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "demo":
        demo_data(args.db, args.trainee)
    elif args.cmd == "report":
        print_report(args.db, args.session_id, args.name)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)


if __name__ == "__main__":
    main()
