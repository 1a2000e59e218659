import datetime
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Body, APIRouter
from pydantic import BaseModel, Field

from db import HistoryRepository, SessionRepository, SettingsRepository
from errors import InvalidTransitionError, NotFoundError, ValidationError
from models import ExecutionMode, ExercisePlan, ExerciseProgress, Session
from notification_service import WebhookNotifier
from progress_service import ProgressService
from recurrence_service import RecurrenceScope, RecurrenceService
from session_controller import RestTimer, SessionController

logger = logging.getLogger(__name__)


class ExercisePayload(BaseModel):
    name: str
    target_sets: int
    target_reps: int
    target_weight: Optional[float] = None
    rest_seconds: Optional[int] = None
    exercise_id: Optional[str] = None
    notes: Optional[str] = None


class SessionPayload(BaseModel):
    trainee_id: str
    trainer_id: str
    name: str
    scheduled_date: datetime.datetime
    exercises: List[ExercisePayload] = Field(default_factory=list)
    id: Optional[str] = None
    description: str = ""
    difficulty: str = "beginner"
    estimated_duration: int = 60
    category: str = "strength"
    notes: Optional[str] = None


class SeriesPayload(SessionPayload):
    dates: List[datetime.datetime]


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=400,
            detail={
                "message": str(e),
                "exercise": e.exercise,
                "set_index": e.set_index,
                "errors": e.errors,
            },
        )
    return HTTPException(status_code=400, detail=str(e))


_ENGINE_ERRORS = (ValidationError, NotFoundError, InvalidTransitionError)


def _grid_keys(grid: Dict[str, List[Any]]) -> Dict[Any, List[Any]]:
    """JSON object keys arrive as strings; digits address exercises by index."""
    return {int(k) if k.isdigit() else k: v for k, v in grid.items()}


class TrainingAPI:
    """Provides REST endpoints for running and reviewing training sessions."""

    def __init__(
        self,
        db_path: str = "training.db",
        yaml_path: str = "settings.yaml",
        *,
        timer_factory: Callable = RestTimer,
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.sessions = SessionRepository(db_path)
        self.history = HistoryRepository(db_path)
        self.progress = ProgressService(self.history)
        self.recurrence = RecurrenceService(self.sessions)
        self.timer_factory = timer_factory
        self.controllers: dict[str, SessionController] = {}
        self.app = FastAPI(
            title="Session Engine API",
            description="REST API for workout session execution and progress reports",
        )
        self._setup_routes()

    def _session_from_payload(self, payload: SessionPayload) -> Session:
        default_rest = self.settings.get_int("default_rest_seconds", 60)
        exercises = [
            ExerciseProgress(
                ExercisePlan(
                    name=ex.name,
                    target_sets=ex.target_sets,
                    target_reps=ex.target_reps,
                    target_weight=ex.target_weight,
                    rest_seconds=(
                        ex.rest_seconds if ex.rest_seconds is not None else default_rest
                    ),
                    exercise_id=ex.exercise_id,
                    notes=ex.notes,
                )
            )
            for ex in payload.exercises
        ]
        return Session(
            id=payload.id or str(uuid.uuid4()),
            trainee_id=payload.trainee_id,
            trainer_id=payload.trainer_id,
            name=payload.name,
            description=payload.description,
            exercises=exercises,
            scheduled_date=payload.scheduled_date,
            difficulty=payload.difficulty,
            estimated_duration=payload.estimated_duration,
            category=payload.category,
            notes=payload.notes,
        )

    def controller(self, session_id: str) -> SessionController:
        """Return the live controller for a session, opening it on first use."""
        ctrl = self.controllers.get(session_id)
        if ctrl is not None:
            return ctrl
        session = self.sessions.fetch(session_id)
        ctrl = SessionController(
            session,
            on_session_changed=self.sessions.update,
            on_session_completed=WebhookNotifier(
                self.settings.get_text("webhook_url", "")
            ),
            history=self.history,
            timer_factory=self.timer_factory,
            auto_continue=self.settings.get_bool("rest_auto_continue", False),
        )
        self.controllers[session_id] = ctrl
        return ctrl

    def close_controller(self, session_id: str) -> None:
        ctrl = self.controllers.pop(session_id, None)
        if ctrl is not None:
            ctrl.dispose()

    def _setup_routes(self) -> None:
        sessions_router = APIRouter(prefix="/sessions", tags=["Sessions"])
        history_router = APIRouter(prefix="/history", tags=["History"])

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.history.history_count()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @sessions_router.post("")
        def create_session(payload: SessionPayload):
            try:
                session = self._session_from_payload(payload)
                sid = self.sessions.create(session)
            except ValidationError as e:
                raise _http_error(e)
            return {"id": sid}

        @sessions_router.post("/series")
        def create_series(payload: SeriesPayload):
            try:
                template = self._session_from_payload(payload)
                created = self.recurrence.create_series(template, payload.dates)
            except ValidationError as e:
                raise _http_error(e)
            return {
                "recurrence_group_id": created[0].recurrence_group_id,
                "ids": [s.id for s in created],
            }

        @sessions_router.get("")
        def list_sessions(
            trainee_id: str = None,
            trainer_id: str = None,
            completed: bool = None,
        ):
            if trainee_id:
                rows = self.sessions.fetch_for_trainee(trainee_id, completed)
            elif trainer_id:
                rows = self.sessions.fetch_for_trainer(trainer_id)
            else:
                rows = self.sessions.fetch_all_sessions()
            return [s.to_dict() for s in rows]

        @sessions_router.get("/{session_id}")
        def get_session(session_id: str):
            try:
                return self.sessions.fetch(session_id).to_dict()
            except NotFoundError as e:
                raise _http_error(e)

        @sessions_router.put("/{session_id}")
        def update_session(
            session_id: str,
            payload: SessionPayload,
            scope: RecurrenceScope = RecurrenceScope.SINGLE,
        ):
            try:
                template = self._session_from_payload(payload)
                updated = self.recurrence.apply_edit(session_id, template, scope)
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            for s in updated:
                self.close_controller(s.id)
            return {"updated": [s.id for s in updated]}

        @sessions_router.delete("/{session_id}")
        def delete_session(
            session_id: str, scope: RecurrenceScope = RecurrenceScope.SINGLE
        ):
            try:
                removed = self.recurrence.delete(session_id, scope)
            except NotFoundError as e:
                raise _http_error(e)
            for sid in removed:
                self.close_controller(sid)
            return {"deleted": removed}

        @sessions_router.get("/{session_id}/state")
        def session_state(session_id: str):
            try:
                return self.controller(session_id).snapshot()
            except NotFoundError as e:
                raise _http_error(e)

        @sessions_router.post("/{session_id}/start")
        def start_session(
            session_id: str, mode: ExecutionMode = ExecutionMode.STEP_BY_STEP
        ):
            try:
                ctrl = self.controller(session_id)
                ctrl.start(mode)
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/sets")
        def submit_set(session_id: str, reps: str, weight: str):
            try:
                ctrl = self.controller(session_id)
                ctrl.submit_set(reps, weight)
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/tick")
        def tick(session_id: str):
            try:
                ctrl = self.controller(session_id)
                ctrl.tick()
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/skip_rest")
        def skip_rest(session_id: str):
            try:
                ctrl = self.controller(session_id)
                ctrl.skip_rest()
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/continue")
        def continue_after_rest(session_id: str):
            try:
                ctrl = self.controller(session_id)
                ctrl.continue_after_rest()
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/finish")
        def finish(session_id: str):
            try:
                ctrl = self.controller(session_id)
                session = ctrl.finish()
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            result = ctrl.snapshot()
            result["completed_at"] = session.completed_at.isoformat()
            # reopened from the stored session if it is edited later
            self.close_controller(session_id)
            return result

        @sessions_router.post("/{session_id}/edit")
        def enter_edit(session_id: str):
            try:
                ctrl = self.controller(session_id)
                ctrl.enter_edit()
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/edits")
        def save_edits(session_id: str, edits: Dict[str, List[Any]] = Body(...)):
            try:
                ctrl = self.controller(session_id)
                ctrl.save_edits(_grid_keys(edits))
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/exit_edit")
        def exit_edit(session_id: str):
            try:
                ctrl = self.controller(session_id)
                ctrl.exit_edit()
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/bulk")
        def submit_bulk(
            session_id: str,
            entries: Dict[str, List[Any]] = Body(...),
            partial: bool = False,
        ):
            try:
                ctrl = self.controller(session_id)
                if partial:
                    ctrl.save_bulk_progress(_grid_keys(entries))
                else:
                    ctrl.submit_bulk(_grid_keys(entries))
            except _ENGINE_ERRORS as e:
                raise _http_error(e)
            return ctrl.snapshot()

        @sessions_router.post("/{session_id}/close")
        def close_session(session_id: str):
            self.close_controller(session_id)
            return {"status": "closed"}

        @sessions_router.get("/{session_id}/report")
        def progress_report(session_id: str, trainee_name: str = ""):
            try:
                session = self.sessions.fetch(session_id)
                report = self.progress.build_report(
                    session, trainee_name or session.trainee_id
                )
            except (ValidationError, NotFoundError) as e:
                raise _http_error(e)
            return report.to_dict()

        @history_router.get("/count")
        def history_count():
            return {"count": self.history.history_count()}

        @history_router.delete("")
        def clear_history():
            self.history.clear()
            return {"status": "cleared"}

        @history_router.get("/{trainee_id}")
        def trainee_history(trainee_id: str):
            return [e.to_dict() for e in self.history.query_all(trainee_id)]

        @history_router.get("/{trainee_id}/exercises")
        def trainee_exercises(trainee_id: str):
            return self.history.exercise_names(trainee_id)

        @history_router.get("/{trainee_id}/{exercise_name}")
        def exercise_history(trainee_id: str, exercise_name: str, limit: int = None):
            """Newest first; without ``limit`` the history_limit setting applies, 0 returns all."""
            if limit is None:
                limit = self.settings.get_int("history_limit", 10)
            rows = self.history.query(trainee_id, exercise_name, limit)
            return [e.to_dict() for e in rows]

        @history_router.get("/{trainee_id}/{exercise_name}/stats")
        def exercise_stats(trainee_id: str, exercise_name: str):
            return self.progress.exercise_stats(trainee_id, exercise_name)

        @history_router.get("/{trainee_id}/{exercise_name}/timeline")
        def exercise_timeline(trainee_id: str, exercise_name: str):
            return self.progress.exercise_timeline(trainee_id, exercise_name)

        @self.app.get("/settings/general")
        def get_settings():
            return self.settings.all_settings()

        @self.app.post("/settings/general")
        def update_settings(data: Dict[str, Any] = Body(...)):
            try:
                self.settings.update(data)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"status": "updated"}

        self.app.include_router(sessions_router)
        self.app.include_router(history_router)


api = TrainingAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=api.settings.get_text("log_level", "INFO"))
    uvicorn.run(app)
