from __future__ import annotations
import copy
import datetime
import logging
import uuid
from enum import Enum
from typing import Iterable, List

from db import SessionRepository
from errors import ValidationError
from models import Session

logger = logging.getLogger(__name__)


class RecurrenceScope(str, Enum):
    SINGLE = "single"
    ALL_IN_SERIES = "series"


class RecurrenceService:
    """Fans edits and deletes out across a recurring series of sessions."""

    SHARED_FIELDS = (
        "name",
        "description",
        "exercises",
        "difficulty",
        "estimated_duration",
        "category",
        "notes",
    )

    def __init__(self, session_repo: SessionRepository) -> None:
        self.sessions = session_repo

    @staticmethod
    def resolve_scope(session: Session, requested: RecurrenceScope) -> RecurrenceScope:
        """Non-recurring sessions always resolve to a single-instance scope."""
        if not session.is_recurring:
            return RecurrenceScope.SINGLE
        return RecurrenceScope(requested)

    def _apply_template(self, target: Session, template: Session) -> Session:
        updated = target.copy()
        for name in self.SHARED_FIELDS:
            setattr(updated, name, copy.deepcopy(getattr(template, name)))
        return updated

    def apply_edit(
        self, session_id: str, template: Session, scope: RecurrenceScope
    ) -> List[Session]:
        """Copy the shared fields of ``template`` onto one or all members.

        Each member keeps its own id, scheduled date, recurrence position and
        completion state.
        """
        current = self.sessions.fetch(session_id)
        scope = self.resolve_scope(current, scope)
        if scope is RecurrenceScope.SINGLE:
            members = [current]
        else:
            members = self.sessions.fetch_by_group(current.recurrence_group_id)
        updated = []
        for member in members:
            session = self._apply_template(member, template)
            self.sessions.update(session)
            updated.append(session)
        logger.info(
            "applied edit of %s to %d session(s) (%s)",
            session_id,
            len(updated),
            scope.value,
        )
        return updated

    def delete(self, session_id: str, scope: RecurrenceScope) -> List[str]:
        """Remove one session or its whole series; returns the removed ids."""
        current = self.sessions.fetch(session_id)
        scope = self.resolve_scope(current, scope)
        if scope is RecurrenceScope.SINGLE:
            self.sessions.delete(session_id)
            return [session_id]
        ids = [s.id for s in self.sessions.fetch_by_group(current.recurrence_group_id)]
        self.sessions.delete_bulk(ids)
        logger.info(
            "deleted %d session(s) of series %s", len(ids), current.recurrence_group_id
        )
        return ids

    def create_series(
        self, template: Session, dates: Iterable[datetime.datetime]
    ) -> List[Session]:
        """Schedule one session per date, all sharing a new group id."""
        dates = list(dates)
        if not dates:
            raise ValidationError("a series needs at least one date")
        group_id = str(uuid.uuid4())
        created = []
        for index, date in enumerate(dates):
            session = template.copy()
            session.id = str(uuid.uuid4())
            session.scheduled_date = date
            session.completed = False
            session.completed_at = None
            session.execution_mode = None
            for exercise in session.exercises:
                exercise.performed = []
            session.recurrence_group_id = group_id
            session.recurrence_index = index
            session.total_recurrences = len(dates)
            self.sessions.create(session)
            created.append(session)
        return created
