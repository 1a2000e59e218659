from __future__ import annotations
import datetime
from typing import Dict, List, Optional, Sequence

from db import HistoryRepository
from errors import ValidationError
from models import HistoryEntry, PerformanceRecord, Session
from tools import MathTools


def _pairs(sets: Sequence[PerformanceRecord]) -> list[tuple[int, float]]:
    return [(s.reps, s.weight) for s in sets]


class ProgressComparison:
    """Current performance of one exercise measured against a prior attempt.

    All deltas are zero when there is no previous entry or nothing was
    performed in the current session.
    """

    def __init__(
        self,
        exercise_name: str,
        previous: Optional[HistoryEntry],
        current: Sequence[PerformanceRecord],
        current_date: datetime.datetime,
    ) -> None:
        self.exercise_name = exercise_name
        self.previous = previous
        self.current = list(current)
        self.current_date = current_date

    def _comparable(self) -> bool:
        return self.previous is not None and bool(self.current)

    @property
    def weight_progress(self) -> float:
        if not self._comparable():
            return 0.0
        return MathTools.max_weight(_pairs(self.current)) - self.previous.max_weight

    @property
    def reps_progress(self) -> int:
        if not self._comparable():
            return 0
        return MathTools.max_reps(_pairs(self.current)) - self.previous.max_reps

    @property
    def volume_progress(self) -> float:
        if not self._comparable():
            return 0.0
        return MathTools.volume(_pairs(self.current)) - self.previous.total_volume

    @property
    def weight_progress_percentage(self) -> float:
        if not self._comparable() or self.previous.max_weight == 0:
            return 0.0
        return MathTools.percentage_change(
            MathTools.max_weight(_pairs(self.current)), self.previous.max_weight
        )

    @property
    def has_improved(self) -> bool:
        return (
            self.weight_progress > 0
            or self.reps_progress > 0
            or self.volume_progress > 0
        )

    @property
    def progress_description(self) -> str:
        if self.previous is None:
            return "First time doing this exercise"
        parts: list[str] = []
        weight = self.weight_progress
        if weight > 0:
            parts.append(f"{weight:.1f}kg weight increase")
        elif weight < 0:
            parts.append(f"{-weight:.1f}kg weight decrease")
        reps = self.reps_progress
        if reps > 0:
            parts.append(f"{reps} more reps")
        elif reps < 0:
            parts.append(f"{-reps} fewer reps")
        if not parts:
            return "Performance maintained"
        return ", ".join(parts)

    def to_dict(self) -> dict:
        return {
            "exercise_name": self.exercise_name,
            "previous": self.previous.to_dict() if self.previous else None,
            "current": [s.to_dict() for s in self.current],
            "current_date": self.current_date.isoformat(),
            "weight_progress": round(self.weight_progress, 2),
            "reps_progress": self.reps_progress,
            "volume_progress": round(self.volume_progress, 2),
            "weight_progress_percentage": round(self.weight_progress_percentage, 2),
            "has_improved": self.has_improved,
            "description": self.progress_description,
        }


class ProgressReport:
    """Progress comparisons for every exercise of one submitted session."""

    def __init__(
        self,
        session_id: str,
        session_name: str,
        trainee_id: str,
        trainee_name: str,
        completed_at: datetime.datetime,
        comparisons: List[ProgressComparison],
    ) -> None:
        self.session_id = session_id
        self.session_name = session_name
        self.trainee_id = trainee_id
        self.trainee_name = trainee_name
        self.completed_at = completed_at
        self.comparisons = comparisons

    @property
    def exercises_with_improvement(self) -> int:
        return sum(1 for c in self.comparisons if c.has_improved)

    @property
    def total_exercises(self) -> int:
        return len(self.comparisons)

    @property
    def improvement_percentage(self) -> float:
        if self.total_exercises == 0:
            return 0.0
        return self.exercises_with_improvement / self.total_exercises * 100

    @property
    def total_volume_increase(self) -> float:
        return sum(c.volume_progress for c in self.comparisons)

    @property
    def overall_summary(self) -> str:
        improved = self.exercises_with_improvement
        if improved == 0:
            return "Performance maintained across all exercises"
        if improved == self.total_exercises:
            return "Improvement in all exercises!"
        return f"Improvement in {improved} out of {self.total_exercises} exercises"

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "session_name": self.session_name,
            "trainee_id": self.trainee_id,
            "trainee_name": self.trainee_name,
            "completed_at": self.completed_at.isoformat(),
            "comparisons": [c.to_dict() for c in self.comparisons],
            "exercises_with_improvement": self.exercises_with_improvement,
            "total_exercises": self.total_exercises,
            "improvement_percentage": round(self.improvement_percentage, 2),
            "total_volume_increase": round(self.total_volume_increase, 2),
            "summary": self.overall_summary,
        }


class ProgressService:
    """Compare completed exercises against a trainee's earlier attempts."""

    def __init__(self, history_repo: HistoryRepository) -> None:
        self.history = history_repo

    def previous_entry(
        self,
        trainee_id: str,
        exercise_name: str,
        current_session_id: str,
        exercise_id: Optional[str] = None,
    ) -> Optional[HistoryEntry]:
        """Most recent entry that does not belong to ``current_session_id``."""
        latest = self.history.last(trainee_id, exercise_name, exercise_id=exercise_id)
        if latest is None:
            return None
        if latest.session_id != current_session_id:
            return latest
        for entry in self.history.query(
            trainee_id, exercise_name, exercise_id=exercise_id
        ):
            if entry.session_id != current_session_id:
                return entry
        return None

    def compare(
        self,
        trainee_id: str,
        exercise_name: str,
        current: Sequence[PerformanceRecord],
        current_session_id: str,
        current_date: Optional[datetime.datetime] = None,
        exercise_id: Optional[str] = None,
    ) -> ProgressComparison:
        previous = self.previous_entry(
            trainee_id, exercise_name, current_session_id, exercise_id
        )
        return ProgressComparison(
            exercise_name,
            previous,
            current,
            current_date or datetime.datetime.now(),
        )

    def build_report(self, session: Session, trainee_name: str) -> ProgressReport:
        if not session.completed or session.completed_at is None:
            raise ValidationError("session must be completed to build a progress report")
        comparisons = [
            self.compare(
                session.trainee_id,
                exercise.plan.name,
                exercise.performed,
                session.id,
                session.completed_at,
                exercise.plan.exercise_id,
            )
            for exercise in session.exercises
            if exercise.performed
        ]
        return ProgressReport(
            session.id,
            session.name,
            session.trainee_id,
            trainee_name,
            session.completed_at,
            comparisons,
        )

    def exercise_stats(self, trainee_id: str, exercise_name: str) -> Dict[str, object]:
        history = self.history.query(trainee_id, exercise_name)
        if not history:
            return {
                "total_sessions": 0,
                "max_weight": 0.0,
                "max_reps": 0,
                "average_volume": 0.0,
                "best_est_1rm": 0.0,
                "last_performed": None,
                "first_performed": None,
            }
        return {
            "total_sessions": len(history),
            "max_weight": max(e.max_weight for e in history),
            "max_reps": max(e.max_reps for e in history),
            "average_volume": round(
                sum(e.total_volume for e in history) / len(history), 2
            ),
            "best_est_1rm": round(
                max(MathTools.best_1rm(_pairs(e.performed)) for e in history), 2
            ),
            "last_performed": history[0].completed_at.isoformat(),
            "first_performed": history[-1].completed_at.isoformat(),
        }

    def exercise_timeline(
        self, trainee_id: str, exercise_name: str
    ) -> List[Dict[str, float]]:
        timeline = []
        for entry in reversed(self.history.query(trainee_id, exercise_name)):
            timeline.append(
                {
                    "date": entry.completed_at.isoformat(),
                    "session_id": entry.session_id,
                    "max_weight": entry.max_weight,
                    "max_reps": entry.max_reps,
                    "volume": entry.total_volume,
                    "est_1rm": round(MathTools.best_1rm(_pairs(entry.performed)), 2),
                }
            )
        return timeline
