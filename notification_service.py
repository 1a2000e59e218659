import logging
from typing import Optional

import requests

from models import Session

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Tell the trainer that a trainee submitted a session."""

    def __init__(self, url: Optional[str], timeout: float = 5.0) -> None:
        self.url = url or ""
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @staticmethod
    def payload(session: Session) -> dict:
        return {
            "event": "session_completed",
            "session_id": session.id,
            "session_name": session.name,
            "trainee_id": session.trainee_id,
            "trainer_id": session.trainer_id,
            "completed_at": (
                session.completed_at.isoformat() if session.completed_at else None
            ),
            "exercises": [
                {"name": ex.plan.name, "sets": len(ex.performed), "volume": ex.volume}
                for ex in session.exercises
            ],
        }

    def __call__(self, session: Session) -> None:
        if not self.enabled:
            return
        resp = requests.post(self.url, json=self.payload(session), timeout=self.timeout)
        resp.raise_for_status()
        logger.info("notified trainer %s about session %s", session.trainer_id, session.id)
