import os
import sys
import datetime
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import HistoryRepository
from errors import ValidationError
from models import (
    ExercisePlan,
    ExerciseProgress,
    HistoryEntry,
    PerformanceRecord,
    Session,
)
from progress_service import ProgressComparison, ProgressService


def records(*pairs):
    return [PerformanceRecord(r, w) for r, w in pairs]


class ProgressComparisonTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime.datetime(2024, 2, 1)

    def _previous(self, *pairs) -> HistoryEntry:
        return HistoryEntry(
            id="p",
            exercise_name="Bench Press",
            trainee_id="t1",
            session_id="old",
            completed_at=self.now - datetime.timedelta(days=7),
            performed=tuple(records(*pairs)),
        )

    def test_first_time(self) -> None:
        comparison = ProgressComparison("Bench Press", None, records((10, 60)), self.now)
        self.assertEqual(comparison.weight_progress, 0)
        self.assertEqual(comparison.reps_progress, 0)
        self.assertEqual(comparison.volume_progress, 0)
        self.assertFalse(comparison.has_improved)
        self.assertEqual(comparison.progress_description, "First time doing this exercise")

    def test_weight_increase(self) -> None:
        comparison = ProgressComparison(
            "Bench Press", self._previous((10, 20)), records((10, 25)), self.now
        )
        self.assertEqual(comparison.weight_progress, 5.0)
        self.assertAlmostEqual(comparison.weight_progress_percentage, 25.0)
        self.assertEqual(comparison.volume_progress, 50.0)
        self.assertTrue(comparison.has_improved)
        self.assertEqual(comparison.progress_description, "5.0kg weight increase")

    def test_mixed_changes_described_together(self) -> None:
        comparison = ProgressComparison(
            "Bench Press", self._previous((8, 60)), records((10, 57.5)), self.now
        )
        self.assertEqual(comparison.progress_description, "2.5kg weight decrease, 2 more reps")

    def test_maintained(self) -> None:
        comparison = ProgressComparison(
            "Bench Press", self._previous((10, 60)), records((10, 60)), self.now
        )
        self.assertFalse(comparison.has_improved)
        self.assertEqual(comparison.progress_description, "Performance maintained")

    def test_zero_previous_weight_percentage(self) -> None:
        comparison = ProgressComparison(
            "Push Ups", self._previous((15, 0)), records((20, 0)), self.now
        )
        self.assertEqual(comparison.weight_progress_percentage, 0.0)
        self.assertEqual(comparison.progress_description, "5 more reps")

    def test_empty_current_has_zero_deltas(self) -> None:
        comparison = ProgressComparison("Bench Press", self._previous((10, 60)), [], self.now)
        self.assertEqual(comparison.weight_progress, 0)
        self.assertEqual(comparison.volume_progress, 0)
        self.assertFalse(comparison.has_improved)


class ProgressServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_progress.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.history = HistoryRepository(self.db_path)
        self.service = ProgressService(self.history)
        self.day = datetime.datetime(2024, 2, 1, 8, 0)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def _session(self, sid, when, bench, squat_sets=None) -> Session:
        exercises = [
            ExerciseProgress(ExercisePlan("Bench Press", 1, 10), records((10, bench)))
        ]
        if squat_sets is not None:
            exercises.append(
                ExerciseProgress(ExercisePlan("Squats", 1, 5), records(*squat_sets))
            )
        return Session(
            id=sid,
            trainee_id="t1",
            trainer_id="c1",
            name="Full Body",
            exercises=exercises,
            scheduled_date=when,
            completed=True,
            completed_at=when,
        )

    def test_compare_excludes_current_session(self) -> None:
        old = self._session("old", self.day, 20)
        self.history.save_session(old)
        current = self._session("new", self.day + datetime.timedelta(days=7), 25)
        self.history.save_session(current)

        comparison = self.service.compare(
            "t1", "Bench Press", current.exercises[0].performed, "new"
        )
        self.assertEqual(comparison.previous.session_id, "old")
        self.assertEqual(comparison.weight_progress, 5.0)
        self.assertAlmostEqual(comparison.weight_progress_percentage, 25.0)

    def test_compare_without_history(self) -> None:
        comparison = self.service.compare("t1", "Bench Press", records((10, 60)), "new")
        self.assertIsNone(comparison.previous)
        self.assertFalse(comparison.has_improved)

    def test_report_aggregates(self) -> None:
        self.history.save_session(self._session("old", self.day, 20, [(5, 100)]))
        current = self._session(
            "new", self.day + datetime.timedelta(days=7), 25, [(5, 100)]
        )
        self.history.save_session(current)

        report = self.service.build_report(current, "Alex")
        self.assertEqual(report.total_exercises, 2)
        self.assertEqual(report.exercises_with_improvement, 1)
        self.assertAlmostEqual(report.improvement_percentage, 50.0)
        self.assertAlmostEqual(report.total_volume_increase, 50.0)
        self.assertEqual(report.overall_summary, "Improvement in 1 out of 2 exercises")
        data = report.to_dict()
        self.assertEqual(data["trainee_name"], "Alex")
        self.assertEqual(len(data["comparisons"]), 2)

    def test_report_summaries(self) -> None:
        self.history.save_session(self._session("old", self.day, 20))
        better = self._session("a", self.day + datetime.timedelta(days=1), 22.5)
        self.assertEqual(
            self.service.build_report(better, "Alex").overall_summary,
            "Improvement in all exercises!",
        )
        same = self._session("b", self.day + datetime.timedelta(days=1), 20)
        self.assertEqual(
            self.service.build_report(same, "Alex").overall_summary,
            "Performance maintained across all exercises",
        )

    def test_report_requires_completed_session(self) -> None:
        session = self._session("x", self.day, 20)
        session.completed = False
        session.completed_at = None
        with self.assertRaises(ValidationError):
            self.service.build_report(session, "Alex")

    def test_stats_and_timeline(self) -> None:
        self.history.save_session(self._session("a", self.day, 20))
        self.history.save_session(self._session("b", self.day + datetime.timedelta(days=3), 30))
        stats = self.service.exercise_stats("t1", "Bench Press")
        self.assertEqual(stats["total_sessions"], 2)
        self.assertEqual(stats["max_weight"], 30.0)
        self.assertEqual(stats["average_volume"], 250.0)
        timeline = self.service.exercise_timeline("t1", "Bench Press")
        self.assertEqual([p["session_id"] for p in timeline], ["a", "b"])
        self.assertEqual(self.service.exercise_stats("t1", "Rows")["total_sessions"], 0)


if __name__ == "__main__":
    unittest.main()
