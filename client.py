import requests
from typing import Any, Dict, List, Optional


class SessionClient:
    """Simple REST client for the session engine API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs: Any):
        resp = requests.request(
            method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
        )
        resp.raise_for_status()
        return resp.json()

    def create_session(self, payload: Dict[str, Any]) -> str:
        return self._request("POST", "/sessions", json=payload)["id"]

    def create_series(self, payload: Dict[str, Any], dates: List[str]) -> List[str]:
        return self._request("POST", "/sessions/series", json={**payload, "dates": dates})["ids"]

    def list_sessions(self, **params: Any) -> List[dict]:
        return self._request("GET", "/sessions", params=params)

    def get_session(self, session_id: str) -> dict:
        return self._request("GET", f"/sessions/{session_id}")

    def delete_session(self, session_id: str, scope: str = "single") -> List[str]:
        return self._request(
            "DELETE", f"/sessions/{session_id}", params={"scope": scope}
        )["deleted"]

    def state(self, session_id: str) -> dict:
        return self._request("GET", f"/sessions/{session_id}/state")

    def start(self, session_id: str, mode: str = "step_by_step") -> dict:
        return self._request("POST", f"/sessions/{session_id}/start", params={"mode": mode})

    def submit_set(self, session_id: str, reps: Any, weight: Any) -> dict:
        return self._request(
            "POST",
            f"/sessions/{session_id}/sets",
            params={"reps": reps, "weight": weight},
        )

    def skip_rest(self, session_id: str) -> dict:
        return self._request("POST", f"/sessions/{session_id}/skip_rest")

    def continue_after_rest(self, session_id: str) -> dict:
        return self._request("POST", f"/sessions/{session_id}/continue")

    def finish(self, session_id: str) -> dict:
        return self._request("POST", f"/sessions/{session_id}/finish")

    def submit_bulk(self, session_id: str, entries: Dict[str, list], partial: bool = False) -> dict:
        return self._request(
            "POST",
            f"/sessions/{session_id}/bulk",
            params={"partial": partial},
            json=entries,
        )

    def report(self, session_id: str, trainee_name: Optional[str] = None) -> dict:
        params = {"trainee_name": trainee_name} if trainee_name else {}
        return self._request("GET", f"/sessions/{session_id}/report", params=params)

    def exercise_history(self, trainee_id: str, exercise: str, limit: Optional[int] = None) -> List[dict]:
        params = {"limit": limit} if limit is not None else {}
        return self._request("GET", f"/history/{trainee_id}/{exercise}", params=params)
