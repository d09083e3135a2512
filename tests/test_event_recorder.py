from __future__ import annotations

import unittest
import uuid
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from timeflow.models import TimeEvent, TimeEventType
from timeflow.services.events import EventDraft, EventWriteError, is_source_rejection, record_event
from timeflow.services.location import GeofenceResult
from timeflow.services.values import ClockAction, Coordinates, ValidatedPointId

from tests.db_support import FIXED_NOW, make_session, seed_company, seed_worker

NO_GEOFENCE = GeofenceResult(distance_meters=None, is_within_geofence=None, anchor=None)


class EventRecorderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = seed_company(self.db)
        self.worker = seed_worker(self.db, self.company)

    def tearDown(self) -> None:
        self.db.close()

    def _draft(self, **overrides) -> EventDraft:  # type: ignore[no-untyped-def]
        values = {
            "worker_id": self.worker.id,
            "company_id": self.company.id,
            "action": ClockAction.IN,
            "event_time": FIXED_NOW,
            "source": "mobile",
            "device_record_id": None,
            "location": None,
            "geofence": NO_GEOFENCE,
            "point_id": ValidatedPointId(None),
        }
        values.update(overrides)
        return EventDraft(**values)

    def test_event_is_built_from_action_and_geofence(self) -> None:
        point_id = uuid.uuid4()
        draft = self._draft(
            action=ClockAction.BREAK_START,
            location=Coordinates(40.001, -3.0),
            geofence=GeofenceResult(distance_meters=111.2, is_within_geofence=True, anchor=None),
            point_id=ValidatedPointId(point_id),
            notes="coffee",
        )
        event = record_event(self.db, draft, fallback_source="kiosk")
        self.db.commit()

        stored = self.db.scalar(select(TimeEvent).where(TimeEvent.id == event.id))
        self.assertEqual(stored.event_type, TimeEventType.PAUSE_START)
        self.assertEqual(stored.source, "mobile")
        self.assertEqual(stored.point_id, point_id)
        self.assertEqual(stored.latitude, 40.001)
        self.assertTrue(stored.is_within_geofence)
        self.assertEqual(stored.notes, "coffee")

    def test_absent_point_is_stored_as_null(self) -> None:
        event = record_event(self.db, self._draft(), fallback_source="kiosk")
        self.db.commit()
        self.assertIsNone(event.point_id)

    def test_rejected_source_falls_back_once(self) -> None:
        with self.assertLogs("timeflow.events", level="WARNING") as logs:
            event = record_event(self.db, self._draft(source="tablet"), fallback_source="kiosk")
        self.db.commit()

        self.assertEqual(event.source, "kiosk")
        self.assertIn("time_event_source_rejected", logs.output[0])
        rows = self.db.scalars(select(TimeEvent)).all()
        self.assertEqual(len(rows), 1)

    def test_blank_source_is_recorded_as_web(self) -> None:
        event = record_event(self.db, self._draft(source="  "), fallback_source="kiosk")
        self.db.commit()

        self.assertEqual(event.source, "web")
        stored = self.db.scalar(select(TimeEvent).where(TimeEvent.id == event.id))
        self.assertEqual(stored.source, "web")

    def test_other_integrity_errors_are_fatal(self) -> None:
        error = IntegrityError("insert", {}, Exception("FOREIGN KEY constraint failed"))
        with (
            patch("timeflow.services.events._flush_event", side_effect=error),
            self.assertLogs("timeflow.events", level="ERROR"),
        ):
            with self.assertRaises(EventWriteError) as ctx:
                record_event(self.db, self._draft(), fallback_source="kiosk")

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.code, "EVENT_WRITE_FAILED")

    def test_source_rejection_detection(self) -> None:
        pg_error = IntegrityError("insert", {}, Exception("new row violates constraint"))
        pg_error.orig = SimpleNamespace(pgcode="23514")  # type: ignore[assignment]
        self.assertTrue(is_source_rejection(pg_error))
        self.assertTrue(
            is_source_rejection(IntegrityError("insert", {}, Exception("CHECK constraint failed: ck_time_events_source")))
        )
        self.assertFalse(
            is_source_rejection(IntegrityError("insert", {}, Exception("UNIQUE constraint failed: time_events.id")))
        )


if __name__ == "__main__":
    unittest.main()
