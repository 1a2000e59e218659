import os
import sys
import datetime
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import SessionRepository
from errors import NotFoundError, ValidationError
from models import ExercisePlan, ExerciseProgress, PerformanceRecord, Session
from recurrence_service import RecurrenceScope, RecurrenceService


class RecurrenceServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_recurrence.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.repo = SessionRepository(self.db_path)
        self.service = RecurrenceService(self.repo)
        self.start = datetime.datetime(2024, 4, 1, 7, 0)
        self.template = Session(
            id="template",
            trainee_id="t1",
            trainer_id="c1",
            name="Morning Lift",
            exercises=[ExerciseProgress(ExercisePlan("Deadlift", 3, 5, 120.0, 120))],
            scheduled_date=self.start,
        )
        self.series = self.service.create_series(
            self.template, [self.start + datetime.timedelta(weeks=i) for i in range(3)]
        )

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def _edited(self, name: str) -> Session:
        edited = self.template.copy()
        edited.name = name
        edited.exercises = [ExerciseProgress(ExercisePlan("Deadlift", 4, 4, 125.0, 150))]
        return edited

    def test_create_series(self) -> None:
        group = self.series[0].recurrence_group_id
        self.assertIsNotNone(group)
        stored = self.repo.fetch_by_group(group)
        self.assertEqual([s.recurrence_index for s in stored], [0, 1, 2])
        self.assertEqual({s.total_recurrences for s in stored}, {3})
        self.assertEqual(stored[1].recurrence_display, "2 of 3")
        self.assertEqual(len({s.id for s in stored}), 3)
        with self.assertRaises(ValidationError):
            self.service.create_series(self.template, [])

    def test_edit_single_instance(self) -> None:
        target = self.series[1]
        updated = self.service.apply_edit(
            target.id, self._edited("Heavy Pull"), RecurrenceScope.SINGLE
        )
        self.assertEqual([s.id for s in updated], [target.id])
        names = [s.name for s in self.repo.fetch_by_group(target.recurrence_group_id)]
        self.assertEqual(names, ["Morning Lift", "Heavy Pull", "Morning Lift"])

    def test_edit_whole_series_keeps_member_state(self) -> None:
        done = self.repo.fetch(self.series[0].id)
        done.exercises[0].performed = [PerformanceRecord(5, 120.0)]
        done.mark_completed(self.start)
        self.repo.update(done)

        updated = self.service.apply_edit(
            self.series[2].id, self._edited("Heavy Pull"), RecurrenceScope.ALL_IN_SERIES
        )
        self.assertEqual(len(updated), 3)
        for original, stored in zip(
            self.series, self.repo.fetch_by_group(self.series[0].recurrence_group_id)
        ):
            self.assertEqual(stored.name, "Heavy Pull")
            self.assertEqual(stored.id, original.id)
            self.assertEqual(stored.scheduled_date, original.scheduled_date)
            self.assertEqual(stored.recurrence_index, original.recurrence_index)
            self.assertEqual(stored.exercises[0].plan.target_sets, 4)
        self.assertTrue(self.repo.fetch(self.series[0].id).completed)

    def test_delete_scopes(self) -> None:
        removed = self.service.delete(self.series[0].id, RecurrenceScope.SINGLE)
        self.assertEqual(removed, [self.series[0].id])
        with self.assertRaises(NotFoundError):
            self.repo.fetch(self.series[0].id)

        removed = self.service.delete(self.series[1].id, RecurrenceScope.ALL_IN_SERIES)
        self.assertEqual(sorted(removed), sorted(s.id for s in self.series[1:]))
        self.assertEqual(self.repo.fetch_all_sessions(), [])

    def test_non_recurring_resolves_to_single(self) -> None:
        lone = self.template.copy()
        lone.id = "lone"
        self.repo.create(lone)
        self.assertEqual(
            RecurrenceService.resolve_scope(lone, RecurrenceScope.ALL_IN_SERIES),
            RecurrenceScope.SINGLE,
        )
        self.assertEqual(self.service.delete("lone", RecurrenceScope.ALL_IN_SERIES), ["lone"])
        self.assertEqual(len(self.repo.fetch_all_sessions()), 3)


if __name__ == "__main__":
    unittest.main()
