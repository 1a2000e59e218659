from __future__ import annotations
import copy
import datetime
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from errors import ValidationError
from tools import MathTools


class ExecutionMode(str, Enum):
    """How the trainee chose to run a session when it was started."""

    STEP_BY_STEP = "step_by_step"
    BULK = "bulk"


def _parse_dt(value: Any) -> Optional[datetime.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(str(value))


def _format_dt(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_reps(value: Any) -> int:
    """Return ``value`` as a positive integer or raise ``ValidationError``."""
    if value is None:
        raise ValidationError("reps must not be blank")
    if isinstance(value, bool):
        raise ValidationError("reps must be a positive integer")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValidationError("reps must not be blank")
        try:
            value = int(text)
        except ValueError:
            raise ValidationError(f"reps must be a positive integer, got {text!r}")
    if not isinstance(value, int):
        raise ValidationError("reps must be a positive integer")
    if value <= 0:
        raise ValidationError("reps must be positive")
    return value


def parse_weight(value: Any) -> float:
    """Return ``value`` as a non-negative float or raise ``ValidationError``."""
    if value is None:
        raise ValidationError("weight must not be blank")
    if isinstance(value, bool):
        raise ValidationError("weight must be a number")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValidationError("weight must not be blank")
        try:
            value = float(text)
        except ValueError:
            raise ValidationError(f"weight must be a number, got {text!r}")
    if not isinstance(value, (int, float)):
        raise ValidationError("weight must be a number")
    weight = float(value)
    if math.isnan(weight) or math.isinf(weight):
        raise ValidationError("weight must be finite")
    if weight < 0:
        raise ValidationError("weight must be non-negative")
    return weight


@dataclass(frozen=True)
class PerformanceRecord:
    """Reps and weight actually performed for one set."""

    reps: int
    weight: float

    @classmethod
    def create(cls, reps: Any, weight: Any) -> "PerformanceRecord":
        return cls(parse_reps(reps), parse_weight(weight))

    @property
    def volume(self) -> float:
        return self.reps * self.weight

    def to_dict(self) -> dict:
        return {"reps": self.reps, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceRecord":
        return cls.create(data["reps"], data["weight"])


@dataclass(frozen=True)
class ExercisePlan:
    """Trainer-specified target for one exercise of a session."""

    name: str
    target_sets: int
    target_reps: int
    target_weight: Optional[float] = None
    rest_seconds: int = 60
    exercise_id: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("exercise name must not be blank")
        if self.target_sets <= 0:
            raise ValidationError("target_sets must be positive")
        if self.target_reps <= 0:
            raise ValidationError("target_reps must be positive")
        if self.target_weight is not None and self.target_weight < 0:
            raise ValidationError("target_weight must be non-negative")
        if self.rest_seconds < 0:
            raise ValidationError("rest_seconds must be non-negative")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "target_sets": self.target_sets,
            "target_reps": self.target_reps,
            "target_weight": self.target_weight,
            "rest_seconds": self.rest_seconds,
            "exercise_id": self.exercise_id,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExercisePlan":
        weight = data.get("target_weight")
        return cls(
            name=data["name"],
            target_sets=int(data["target_sets"]),
            target_reps=int(data["target_reps"]),
            target_weight=float(weight) if weight is not None else None,
            rest_seconds=int(data.get("rest_seconds", 60)),
            exercise_id=data.get("exercise_id"),
            notes=data.get("notes"),
        )


@dataclass
class ExerciseProgress:
    """An exercise plan together with the sets recorded against it."""

    plan: ExercisePlan
    performed: list[PerformanceRecord] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.plan.name

    @property
    def is_complete(self) -> bool:
        return len(self.performed) >= self.plan.target_sets

    @property
    def volume(self) -> float:
        return MathTools.volume([(s.reps, s.weight) for s in self.performed])

    @property
    def max_weight(self) -> float:
        return MathTools.max_weight([(s.reps, s.weight) for s in self.performed])

    @property
    def max_reps(self) -> int:
        return MathTools.max_reps([(s.reps, s.weight) for s in self.performed])

    def to_dict(self) -> dict:
        data = self.plan.to_dict()
        data["performed"] = [s.to_dict() for s in self.performed]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ExerciseProgress":
        return cls(
            ExercisePlan.from_dict(data),
            [PerformanceRecord.from_dict(s) for s in data.get("performed", [])],
        )


@dataclass
class Session:
    """One trainee's scheduled instance of a list of exercises."""

    id: str
    trainee_id: str
    trainer_id: str
    name: str
    exercises: list[ExerciseProgress]
    scheduled_date: datetime.datetime
    completed: bool = False
    completed_at: Optional[datetime.datetime] = None
    recurrence_group_id: Optional[str] = None
    recurrence_index: Optional[int] = None
    total_recurrences: Optional[int] = None
    description: str = ""
    difficulty: str = "beginner"
    estimated_duration: int = 60
    category: str = "strength"
    notes: Optional[str] = None
    execution_mode: Optional[ExecutionMode] = None

    def __post_init__(self) -> None:
        if self.completed != (self.completed_at is not None):
            raise ValidationError("completed_at must be set if and only if completed")

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_group_id is not None

    @property
    def recurrence_display(self) -> str:
        if not self.is_recurring:
            return ""
        return f"{(self.recurrence_index or 0) + 1} of {self.total_recurrences or 1}"

    @property
    def has_recorded_sets(self) -> bool:
        return any(ex.performed for ex in self.exercises)

    def mark_completed(self, timestamp: datetime.datetime) -> None:
        self.completed = True
        self.completed_at = timestamp

    def copy(self) -> "Session":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trainee_id": self.trainee_id,
            "trainer_id": self.trainer_id,
            "name": self.name,
            "description": self.description,
            "exercises": [ex.to_dict() for ex in self.exercises],
            "scheduled_date": _format_dt(self.scheduled_date),
            "completed": self.completed,
            "completed_at": _format_dt(self.completed_at),
            "recurrence_group_id": self.recurrence_group_id,
            "recurrence_index": self.recurrence_index,
            "total_recurrences": self.total_recurrences,
            "difficulty": self.difficulty,
            "estimated_duration": self.estimated_duration,
            "category": self.category,
            "notes": self.notes,
            "execution_mode": (
                self.execution_mode.value if self.execution_mode else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        mode = data.get("execution_mode")
        return cls(
            id=data["id"],
            trainee_id=data["trainee_id"],
            trainer_id=data["trainer_id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            exercises=[ExerciseProgress.from_dict(e) for e in data["exercises"]],
            scheduled_date=_parse_dt(data["scheduled_date"]),
            completed=bool(data.get("completed", False)),
            completed_at=_parse_dt(data.get("completed_at")),
            recurrence_group_id=data.get("recurrence_group_id"),
            recurrence_index=data.get("recurrence_index"),
            total_recurrences=data.get("total_recurrences"),
            difficulty=data.get("difficulty", "beginner"),
            estimated_duration=int(data.get("estimated_duration", 60)),
            category=data.get("category", "strength"),
            notes=data.get("notes"),
            execution_mode=ExecutionMode(mode) if mode else None,
        )


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one exercise's performance in a submitted session."""

    id: str
    exercise_name: str
    trainee_id: str
    session_id: str
    completed_at: datetime.datetime
    performed: tuple[PerformanceRecord, ...]
    notes: Optional[str] = None
    exercise_id: Optional[str] = None

    @property
    def max_weight(self) -> float:
        return MathTools.max_weight([(s.reps, s.weight) for s in self.performed])

    @property
    def max_reps(self) -> int:
        return MathTools.max_reps([(s.reps, s.weight) for s in self.performed])

    @property
    def total_volume(self) -> float:
        return MathTools.volume([(s.reps, s.weight) for s in self.performed])

    @property
    def total_reps(self) -> int:
        return sum(s.reps for s in self.performed)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exercise_name": self.exercise_name,
            "exercise_id": self.exercise_id,
            "trainee_id": self.trainee_id,
            "session_id": self.session_id,
            "completed_at": _format_dt(self.completed_at),
            "performed": [s.to_dict() for s in self.performed],
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            id=data["id"],
            exercise_name=data["exercise_name"],
            trainee_id=data["trainee_id"],
            session_id=data["session_id"],
            completed_at=_parse_dt(data["completed_at"]),
            performed=tuple(PerformanceRecord.from_dict(s) for s in data["performed"]),
            notes=data.get("notes"),
            exercise_id=data.get("exercise_id"),
        )
