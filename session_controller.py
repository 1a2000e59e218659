"""State machine that drives one trainee through one scheduled session.

The controller works on a private copy of the session. Every mutating
operation hands the updated copy to ``on_session_changed``; the call is a
fire-and-forget message: failures are logged and collected in
``persistence_errors`` but never undo the transition that triggered them,
and nothing is retried. A later save carries the latest state. Async
callbacks are scheduled, never awaited: on the running event loop when
there is one, otherwise on a shared background loop thread.
"""
from __future__ import annotations
import asyncio
import datetime
import inspect
import logging
import threading
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from db import HistoryRepository
from errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from models import (
    ExecutionMode,
    ExerciseProgress,
    HistoryEntry,
    PerformanceRecord,
    Session,
)

logger = logging.getLogger(__name__)

SessionCallback = Callable[[Session], Any]

_background_loop: Optional[asyncio.AbstractEventLoop] = None
_background_lock = threading.Lock()


def _save_loop() -> asyncio.AbstractEventLoop:
    """Event loop on a daemon thread for async callbacks made outside a loop."""
    global _background_loop
    with _background_lock:
        if _background_loop is None or _background_loop.is_closed():
            loop = asyncio.new_event_loop()
            threading.Thread(
                target=loop.run_forever, name="session-saves", daemon=True
            ).start()
            _background_loop = loop
        return _background_loop


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    RESTING = "resting"
    COMPLETED = "completed"
    EDITING = "editing"


class RestTimer(threading.Thread):
    """Background thread calling ``callback`` once per ``interval`` seconds."""

    def __init__(self, callback: Callable[[], None], interval: float = 1.0) -> None:
        super().__init__(daemon=True)
        self.callback = callback
        self.interval = interval
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("rest timer tick failed")
                self._stopped.set()

    def cancel(self) -> None:
        self._stopped.set()


def _cell(value: Any) -> tuple[Any, Any]:
    if isinstance(value, Mapping):
        return value.get("reps"), value.get("weight")
    reps, weight = value
    return reps, weight


class SessionController:
    """Run, resume and correct a scheduled workout session."""

    def __init__(
        self,
        session: Session,
        on_session_changed: Optional[SessionCallback] = None,
        on_session_completed: Optional[SessionCallback] = None,
        history: Optional[HistoryRepository] = None,
        *,
        timer_factory: Callable[[Callable[[], None]], Any] = RestTimer,
        auto_continue: bool = False,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self._session = session.copy()
        self.on_session_changed = on_session_changed
        self.on_session_completed = on_session_completed
        self.history = history
        self.timer_factory = timer_factory
        self.auto_continue = auto_continue
        self.clock = clock
        self.persistence_errors: list[PersistenceError] = []
        self._lock = threading.RLock()
        self._pending: set = set()
        self._timer: Any = None
        self._disposed = False
        self._state = SessionState.NOT_STARTED
        self._exercise_index = 0
        self._set_index = 0
        self._rest_remaining = 0
        self._submitted = False
        self._changed_since_submit = False
        self.resume(self._session)

    # ------------------------------------------------------------------
    # read-only view

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def exercise_index(self) -> int:
        return self._exercise_index

    @property
    def set_index(self) -> int:
        return self._set_index

    @property
    def rest_remaining(self) -> int:
        return self._rest_remaining

    @property
    def rest_complete(self) -> bool:
        return self._state is SessionState.RESTING and self._rest_remaining == 0

    @property
    def submitted(self) -> bool:
        return self._submitted

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def pending_saves(self) -> int:
        """Async callbacks scheduled but not finished yet."""
        return len(self._pending)

    @property
    def session(self) -> Session:
        return self._session.copy()

    @property
    def current_exercise(self) -> Optional[ExerciseProgress]:
        if self._state not in (SessionState.ACTIVE, SessionState.RESTING):
            return None
        return self._session.exercises[self._exercise_index]

    @property
    def progress(self) -> tuple[int, int]:
        """Recorded sets and total target sets across the session."""
        done = sum(
            min(len(ex.performed), ex.plan.target_sets) for ex in self._session.exercises
        )
        total = sum(ex.plan.target_sets for ex in self._session.exercises)
        return done, total

    def snapshot(self) -> dict:
        return {
            "session_id": self._session.id,
            "state": self._state.value,
            "exercise_index": self._exercise_index,
            "set_index": self._set_index,
            "rest_remaining": self._rest_remaining,
            "rest_complete": self.rest_complete,
            "completed_sets": self.progress[0],
            "total_sets": self.progress[1],
            "submitted": self._submitted,
            "execution_mode": (
                self._session.execution_mode.value
                if self._session.execution_mode
                else None
            ),
            "persistence_errors": [str(e) for e in self.persistence_errors],
        }

    def last_performance(self, exercise_index: int) -> Optional[HistoryEntry]:
        """Most recent history of the exercise at ``exercise_index``."""
        if self.history is None:
            return None
        exercise = self._exercise_at(exercise_index)
        return self.history.last(
            self._session.trainee_id, exercise.plan.name, exercise.plan.exercise_id
        )

    # ------------------------------------------------------------------
    # transitions

    def resume(self, session: Session) -> SessionState:
        """Position the controller at the point where ``session`` left off."""
        with self._lock:
            self._check_alive()
            self._require(SessionState.NOT_STARTED)
            self._session = session.copy()
            exercises = self._session.exercises
            self._submitted = self._session.completed
            self._changed_since_submit = False
            if self._session.completed:
                self._exercise_index = max(len(exercises) - 1, 0)
                self._set_index = (
                    min(len(exercises[-1].performed), exercises[-1].plan.target_sets)
                    if exercises
                    else 0
                )
                self._set_state(SessionState.COMPLETED)
                return self._state
            last = None
            for index, exercise in enumerate(exercises):
                if exercise.performed:
                    last = index
            if last is None:
                return self._state
            self._exercise_index = last
            self._set_index = len(exercises[last].performed)
            if self._set_index >= exercises[last].plan.target_sets:
                if last < len(exercises) - 1:
                    self._exercise_index = last + 1
                    self._set_index = 0
                else:
                    self._set_index = exercises[last].plan.target_sets
                    self._set_state(SessionState.COMPLETED)
                    return self._state
            self._set_state(SessionState.ACTIVE)
            return self._state

    def start(self, mode: ExecutionMode = ExecutionMode.STEP_BY_STEP) -> SessionState:
        with self._lock:
            self._check_alive()
            self._require(SessionState.NOT_STARTED)
            self._session.execution_mode = mode
            self._exercise_index = 0
            self._set_index = 0
            if not self._session.exercises:
                self._set_state(SessionState.COMPLETED)
            else:
                self._set_state(SessionState.ACTIVE)
            self._save()
            return self._state

    def submit_set(self, reps: Any, weight: Any) -> SessionState:
        with self._lock:
            self._check_alive()
            self._require(SessionState.ACTIVE)
            record = PerformanceRecord.create(reps, weight)
            exercise = self._session.exercises[self._exercise_index]
            if self._set_index < len(exercise.performed):
                exercise.performed[self._set_index] = record
            else:
                exercise.performed.append(record)
            self._changed_since_submit = True
            self._save()

            if self._set_index + 1 < exercise.plan.target_sets:
                self._set_index += 1
                if exercise.plan.rest_seconds > 0:
                    self._rest_remaining = exercise.plan.rest_seconds
                    self._set_state(SessionState.RESTING)
                    self._start_timer()
            elif self._exercise_index + 1 < len(self._session.exercises):
                self._exercise_index += 1
                self._set_index = 0
                self._set_state(SessionState.ACTIVE)
            else:
                self._set_index += 1
                self._complete()
            return self._state

    def tick(self) -> int:
        with self._lock:
            self._check_alive()
            self._require(SessionState.RESTING)
            return self._tick()

    def skip_rest(self) -> SessionState:
        with self._lock:
            self._check_alive()
            self._require(SessionState.RESTING)
            self._cancel_timer()
            self._rest_remaining = 0
            self._set_state(SessionState.ACTIVE)
            return self._state

    def continue_after_rest(self) -> SessionState:
        with self._lock:
            self._check_alive()
            self._require(SessionState.RESTING)
            if self._rest_remaining > 0:
                raise InvalidTransitionError(
                    f"rest not finished, {self._rest_remaining}s remaining"
                )
            self._cancel_timer()
            self._set_state(SessionState.ACTIVE)
            return self._state

    resume_from_rest = continue_after_rest

    def finish(self) -> Session:
        with self._lock:
            self._check_alive()
            self._require(SessionState.COMPLETED)
            if self._submitted and not self._changed_since_submit:
                raise InvalidTransitionError("session already submitted")
            self._session.mark_completed(self.clock())
            self._submitted = True
            self._changed_since_submit = False
            if self.history is not None:
                try:
                    self.history.save_session(self._session.copy())
                except Exception as e:
                    self._record_failure("history write failed", e)
            self._save()
            self._notify(self.on_session_completed, "completion callback failed")
            logger.info("session %s submitted", self._session.id)
            return self._session.copy()

    def enter_edit(self) -> SessionState:
        with self._lock:
            self._check_alive()
            self._require(SessionState.COMPLETED)
            self._set_state(SessionState.EDITING)
            return self._state

    def exit_edit(self) -> SessionState:
        with self._lock:
            self._check_alive()
            self._require(SessionState.EDITING)
            self._set_state(SessionState.COMPLETED)
            return self._state

    def save_edits(self, edits: Mapping[Any, Sequence[Any]]) -> SessionState:
        """Replace recorded sets with edited values, all or nothing.

        ``edits`` maps an exercise index or name to a list of ``(reps,
        weight)`` pairs (or ``{"reps": .., "weight": ..}`` dicts) holding raw
        input values. Exercises not named keep their sets.
        """
        with self._lock:
            self._check_alive()
            self._require(SessionState.EDITING)
            rebuilt = self._validate_grid(edits, require_full=False)
            for index, records in rebuilt.items():
                self._session.exercises[index].performed = records
            self._changed_since_submit = True
            self._save()
            self._set_state(SessionState.COMPLETED)
            return self._state

    def submit_bulk(self, entries: Mapping[Any, Sequence[Any]]) -> SessionState:
        """Record every target set at once and complete the session.

        Every target set of every exercise must be filled in; a single blank
        or invalid cell rejects the whole submission.
        """
        with self._lock:
            self._check_alive()
            self._require_bulk()
            rebuilt = self._validate_grid(entries, require_full=True)
            self._cancel_timer()
            if self._session.execution_mode is None:
                self._session.execution_mode = ExecutionMode.BULK
            for index, records in rebuilt.items():
                self._session.exercises[index].performed = records
            self._changed_since_submit = True
            self._save()
            if self._session.exercises:
                self._exercise_index = len(self._session.exercises) - 1
                self._set_index = self._session.exercises[-1].plan.target_sets
            self._complete()
            return self._state

    def save_bulk_progress(self, entries: Mapping[Any, Sequence[Any]]) -> Session:
        """Store the filled, valid cells of a partially entered grid."""
        with self._lock:
            self._check_alive()
            self._require_bulk()
            if self._session.execution_mode is None:
                self._session.execution_mode = ExecutionMode.BULK
            for key, rows in entries.items():
                index = self._resolve(key)
                exercise = self._session.exercises[index]
                records = []
                for value in list(rows)[: exercise.plan.target_sets]:
                    try:
                        records.append(PerformanceRecord.create(*_cell(value)))
                    except (ValidationError, TypeError, ValueError):
                        continue
                exercise.performed = records
            self._changed_since_submit = True
            self._save()
            return self._session.copy()

    def dispose(self) -> None:
        """Stop the rest timer; the controller accepts no further calls."""
        with self._lock:
            self._cancel_timer()
            self._disposed = True

    # ------------------------------------------------------------------
    # internals

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(
                "session %s: %s -> %s (exercise %d, set %d)",
                self._session.id,
                self._state.value,
                state.value,
                self._exercise_index,
                self._set_index,
            )
        self._state = state

    def _require(self, *states: SessionState) -> None:
        if self._state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransitionError(
                f"operation requires state {allowed}, controller is {self._state.value}"
            )

    def _require_bulk(self) -> None:
        if self._state is SessionState.NOT_STARTED:
            return
        if (
            self._state is SessionState.ACTIVE
            and self._session.execution_mode is ExecutionMode.BULK
        ):
            return
        raise InvalidTransitionError(
            f"bulk entry is not available while {self._state.value}"
        )

    def _check_alive(self) -> None:
        if self._disposed:
            raise InvalidTransitionError("controller has been disposed")

    def _exercise_at(self, index: int) -> ExerciseProgress:
        if not 0 <= index < len(self._session.exercises):
            raise NotFoundError(f"exercise index {index} out of range")
        return self._session.exercises[index]

    def _resolve(self, key: Any) -> int:
        if isinstance(key, int) and not isinstance(key, bool):
            self._exercise_at(key)
            return key
        for index, exercise in enumerate(self._session.exercises):
            if exercise.plan.name == key:
                return index
        raise NotFoundError(f"exercise {key!r} not found in session")

    def _validate_grid(
        self, grid: Mapping[Any, Sequence[Any]], require_full: bool
    ) -> dict[int, list[PerformanceRecord]]:
        """Validate every cell before anything is mutated."""
        indexes = {self._resolve(key): rows for key, rows in grid.items()}
        if require_full:
            for index in range(len(self._session.exercises)):
                indexes.setdefault(index, [])
        errors: list[tuple[str, int, str]] = []
        rebuilt: dict[int, list[PerformanceRecord]] = {}
        for index in sorted(indexes):
            exercise = self._session.exercises[index]
            rows = list(indexes[index])
            if require_full and len(rows) < exercise.plan.target_sets:
                rows += [(None, None)] * (exercise.plan.target_sets - len(rows))
            records = []
            for set_index, value in enumerate(rows):
                try:
                    records.append(PerformanceRecord.create(*_cell(value)))
                except ValidationError as e:
                    errors.append((exercise.plan.name, set_index, str(e)))
                except (TypeError, ValueError):
                    errors.append((exercise.plan.name, set_index, "malformed set"))
            rebuilt[index] = records
        if errors:
            messages = [f"{name}, set {idx + 1}: {msg}" for name, idx, msg in errors]
            name, set_index, _msg = errors[0]
            raise ValidationError(
                messages[0], exercise=name, set_index=set_index, errors=messages
            )
        return rebuilt

    def _complete(self) -> None:
        self._cancel_timer()
        self._rest_remaining = 0
        self._set_state(SessionState.COMPLETED)

    def _tick(self) -> int:
        if self._rest_remaining > 0:
            self._rest_remaining -= 1
        if self._rest_remaining == 0:
            self._cancel_timer()
            if self.auto_continue:
                self._set_state(SessionState.ACTIVE)
        return self._rest_remaining

    def _on_timer_tick(self) -> None:
        with self._lock:
            if self._disposed or self._state is not SessionState.RESTING:
                return
            self._tick()

    def _start_timer(self) -> None:
        self._cancel_timer()
        self._timer = self.timer_factory(self._on_timer_tick)
        self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _record_failure(self, message: str, cause: BaseException) -> None:
        error = PersistenceError(f"{message}: {cause}", cause)
        logger.error("session %s: %s", self._session.id, error)
        self.persistence_errors.append(error)

    def _save(self) -> None:
        self._notify(self.on_session_changed, "save failed")

    def _notify(self, callback: Optional[SessionCallback], message: str) -> None:
        if callback is None:
            return
        try:
            result = callback(self._session.copy())
        except Exception as e:
            self._record_failure(message, e)
            return
        if inspect.isawaitable(result):
            self._dispatch(result, message)

    def _dispatch(self, awaitable: Any, message: str) -> None:
        async def runner() -> None:
            try:
                await awaitable
            except Exception as e:
                self._record_failure(message, e)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pending = asyncio.run_coroutine_threadsafe(runner(), _save_loop())
        else:
            pending = loop.create_task(runner())
        self._pending.add(pending)
        pending.add_done_callback(self._pending.discard)
