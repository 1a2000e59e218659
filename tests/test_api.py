import os
import sys
import unittest
from unittest import mock

from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import TrainingAPI


class IdleTimer:
    def __init__(self, callback, interval: float = 1.0) -> None:
        self.callback = callback

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        pass


SESSION = {
    "id": "s1",
    "trainee_id": "t1",
    "trainer_id": "c1",
    "name": "Upper Body",
    "scheduled_date": "2024-06-01T09:00:00",
    "exercises": [
        {"name": "Bench Press", "target_sets": 2, "target_reps": 10, "target_weight": 60, "rest_seconds": 90},
        {"name": "Rows", "target_sets": 1, "target_reps": 12, "target_weight": 40},
    ],
}


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_api.db"
        self.yaml_path = "test_api_settings.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.api = TrainingAPI(
            db_path=self.db_path, yaml_path=self.yaml_path, timer_factory=IdleTimer
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for ctrl in list(self.api.controllers.values()):
            ctrl.dispose()
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def _run_session(self, sid: str, bench: str) -> dict:
        payload = dict(SESSION, id=sid)
        self.assertEqual(self.client.post("/sessions", json=payload).json(), {"id": sid})
        self.assertEqual(self.client.post(f"/sessions/{sid}/start").json()["state"], "active")
        resp = self.client.post(f"/sessions/{sid}/sets", params={"reps": "10", "weight": bench})
        self.assertEqual(resp.json()["state"], "resting")
        self.assertEqual(resp.json()["rest_remaining"], 90)
        self.client.post(f"/sessions/{sid}/skip_rest")
        self.client.post(f"/sessions/{sid}/sets", params={"reps": "10", "weight": bench})
        resp = self.client.post(f"/sessions/{sid}/sets", params={"reps": "12", "weight": "40"})
        self.assertEqual(resp.json()["state"], "completed")
        resp = self.client.post(f"/sessions/{sid}/finish")
        self.assertEqual(resp.status_code, 200)
        return resp.json()

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_full_workflow(self) -> None:
        self._run_session("s1", "60")
        self.assertTrue(self.client.get("/sessions/s1").json()["completed"])
        self.assertNotIn("s1", self.api.controllers)
        self._run_session("s2", "62.5")

        report = self.client.get("/sessions/s2/report", params={"trainee_name": "Sam"}).json()
        self.assertEqual(report["trainee_name"], "Sam")
        self.assertEqual(report["summary"], "Improvement in 1 out of 2 exercises")
        bench = report["comparisons"][0]
        self.assertEqual(bench["description"], "2.5kg weight increase")
        self.assertEqual(bench["weight_progress"], 2.5)

        history = self.client.get("/history/t1/Bench Press").json()
        self.assertEqual([h["session_id"] for h in history], ["s2", "s1"])
        self.assertEqual(self.client.get("/history/t1/exercises").json(), ["Bench Press", "Rows"])
        stats = self.client.get("/history/t1/Bench Press/stats").json()
        self.assertEqual(stats["total_sessions"], 2)
        self.assertEqual(self.client.get("/history/count").json(), {"count": 4})

        resp = self.client.post("/sessions/s2/finish")
        self.assertEqual(resp.status_code, 409)

        self.client.post("/settings/general", json={"history_limit": 1})
        self.assertEqual(len(self.client.get("/history/t1/Bench Press").json()), 1)
        everything = self.client.get("/history/t1/Bench Press", params={"limit": 0}).json()
        self.assertEqual(len(everything), 2)

        self.assertEqual(self.client.delete("/history").json(), {"status": "cleared"})
        self.assertEqual(self.client.get("/history/t1").json(), [])

    def test_error_mapping(self) -> None:
        self.client.post("/sessions", json=SESSION)
        self.assertEqual(self.client.get("/sessions/missing").status_code, 404)
        self.assertEqual(self.client.post("/sessions/s1/sets", params={"reps": "1", "weight": "1"}).status_code, 409)
        self.client.post("/sessions/s1/start")
        resp = self.client.post("/sessions/s1/sets", params={"reps": "", "weight": "60"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"]["message"], "reps must not be blank")
        self.assertEqual(self.client.get("/sessions/s1/state").json()["set_index"], 0)
        self.assertEqual(self.client.get("/sessions/s1/report").status_code, 400)
        self.assertEqual(self.client.post("/sessions", json=SESSION).status_code, 400)

    def test_bulk_and_edit(self) -> None:
        self.client.post("/sessions", json=SESSION)
        bad = self.client.post(
            "/sessions/s1/bulk",
            json={"Bench Press": [[10, 60], ["", 60]], "Rows": [[12, 40]]},
        )
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json()["detail"]["exercise"], "Bench Press")
        self.assertEqual(bad.json()["detail"]["set_index"], 1)

        ok = self.client.post(
            "/sessions/s1/bulk",
            json={"0": [[10, 60], [10, 60]], "Rows": [{"reps": 12, "weight": 40}]},
        )
        self.assertEqual(ok.json()["state"], "completed")
        self.assertEqual(ok.json()["execution_mode"], "bulk")
        self.client.post("/sessions/s1/finish")

        self.assertEqual(self.client.post("/sessions/s1/edit").json()["state"], "editing")
        resp = self.client.post("/sessions/s1/edits", json={"Rows": [[15, 40]]})
        self.assertEqual(resp.json()["state"], "completed")
        stored = self.client.get("/sessions/s1").json()
        self.assertEqual(stored["exercises"][1]["performed"], [{"reps": 15, "weight": 40.0}])

    def test_series_edit_and_delete(self) -> None:
        payload = dict(SESSION)
        payload.pop("id")
        payload["dates"] = ["2024-06-01T09:00:00", "2024-06-08T09:00:00", "2024-06-15T09:00:00"]
        ids = self.client.post("/sessions/series", json=payload).json()["ids"]
        self.assertEqual(len(ids), 3)

        edited = dict(SESSION, name="Upper Body B")
        resp = self.client.put(f"/sessions/{ids[0]}", params={"scope": "series"}, json=edited)
        self.assertEqual(sorted(resp.json()["updated"]), sorted(ids))
        names = {s["name"] for s in self.client.get("/sessions", params={"trainee_id": "t1"}).json()}
        self.assertEqual(names, {"Upper Body B"})

        resp = self.client.delete(f"/sessions/{ids[1]}", params={"scope": "single"})
        self.assertEqual(resp.json()["deleted"], [ids[1]])
        resp = self.client.delete(f"/sessions/{ids[0]}", params={"scope": "series"})
        self.assertEqual(sorted(resp.json()["deleted"]), sorted([ids[0], ids[2]]))

    def test_settings_endpoints(self) -> None:
        resp = self.client.post("/settings/general", json={"rest_auto_continue": True})
        self.assertEqual(resp.json(), {"status": "updated"})
        self.assertIs(self.client.get("/settings/general").json()["rest_auto_continue"], True)
        self.assertEqual(
            self.client.post("/settings/general", json={"history_limit": "lots"}).status_code,
            400,
        )

    def test_webhook_notified_on_finish(self) -> None:
        self.api.settings.set_text("webhook_url", "https://hooks.example/session")
        with mock.patch("notification_service.requests.post") as post:
            self._run_session("s1", "60")
        post.assert_called_once()
        self.assertEqual(post.call_args.kwargs["json"]["session_id"], "s1")


if __name__ == "__main__":
    unittest.main()
