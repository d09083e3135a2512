from __future__ import annotations

import unittest
from datetime import timedelta, timezone
from types import SimpleNamespace

from sqlalchemy import func, select

from timeflow.errors import ApiError
from timeflow.models import IncidentType, SessionReviewStatus, SessionStatus, TimeEventType, WorkSession
from timeflow.services.sessions import (
    WorkerStatus,
    auto_close_session,
    close_session,
    derive_worker_status,
    ensure_action_allowed,
    is_session_overrun,
    load_active_session,
    open_session,
    status_after_action,
    sweep_exceeded_sessions,
)
from timeflow.services.values import ClockAction, as_utc

from tests.db_support import FIXED_NOW, make_session, seed_company, seed_session, seed_worker


class SessionStateMachineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = seed_company(self.db, max_shift_hours=8)
        self.worker = seed_worker(self.db, self.company)

    def tearDown(self) -> None:
        self.db.close()

    def _active_count(self) -> int:
        return self.db.scalar(
            select(func.count(WorkSession.id)).where(
                WorkSession.user_id == self.worker.id,
                WorkSession.is_active.is_(True),
            )
        )

    def test_auto_close_caps_clock_out_at_max_shift_hours(self) -> None:
        clock_in = FIXED_NOW - timedelta(hours=9)
        session = seed_session(self.db, worker=self.worker, company=self.company, clock_in_time=clock_in)
        self.assertTrue(is_session_overrun(session, max_shift_hours=8, now_utc=FIXED_NOW))

        result = auto_close_session(self.db, session, max_shift_hours=8, now_utc=FIXED_NOW, tz=timezone.utc)

        self.assertIsNotNone(result)
        self.assertEqual(result.clock_out_time - result.clock_in_time, timedelta(hours=8))
        self.assertEqual(result.incident.incident_type, IncidentType.MISSING_CHECKOUT)
        stored = self.db.get(WorkSession, session.id)
        self.assertEqual(stored.status, SessionStatus.AUTO_CLOSED)
        self.assertEqual(stored.review_status, SessionReviewStatus.EXCEEDED_LIMIT)
        self.assertFalse(stored.is_active)
        self.assertEqual(as_utc(stored.clock_out_time), clock_in + timedelta(hours=8))
        self.assertIsNone(load_active_session(self.db, worker_id=self.worker.id, company_id=self.company.id))

    def test_auto_close_is_a_no_op_when_already_closed(self) -> None:
        session = seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=FIXED_NOW - timedelta(hours=9),
        )
        auto_close_session(self.db, session, max_shift_hours=8, now_utc=FIXED_NOW, tz=timezone.utc)
        self.assertIsNone(
            auto_close_session(self.db, session, max_shift_hours=8, now_utc=FIXED_NOW, tz=timezone.utc)
        )

    def test_session_within_cap_is_not_overrun(self) -> None:
        session = seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=FIXED_NOW - timedelta(hours=8),
        )
        self.assertFalse(is_session_overrun(session, max_shift_hours=8, now_utc=FIXED_NOW))
        self.assertFalse(is_session_overrun(session, max_shift_hours=None, now_utc=FIXED_NOW))

    def test_second_open_session_violates_exclusivity(self) -> None:
        open_session(
            self.db,
            worker_id=self.worker.id,
            company_id=self.company.id,
            clock_in_time=FIXED_NOW,
            point_id=None,
        )
        self.db.commit()

        with self.assertRaises(ApiError) as ctx:
            open_session(
                self.db,
                worker_id=self.worker.id,
                company_id=self.company.id,
                clock_in_time=FIXED_NOW + timedelta(seconds=1),
                point_id=None,
            )
        self.assertEqual(ctx.exception.code, "SESSION_ALREADY_ACTIVE")
        self.assertEqual(self._active_count(), 1)

    def test_closing_twice_reports_no_active_session(self) -> None:
        session = seed_session(self.db, worker=self.worker, company=self.company, clock_in_time=FIXED_NOW)
        close_session(self.db, session_id=session.id, clock_out_time=FIXED_NOW + timedelta(hours=1))
        self.db.commit()

        with self.assertRaises(ApiError) as ctx:
            close_session(self.db, session_id=session.id, clock_out_time=FIXED_NOW + timedelta(hours=2))
        self.assertEqual(ctx.exception.code, "NO_ACTIVE_SESSION")
        self.assertEqual(self._active_count(), 0)

    def test_action_legality(self) -> None:
        session = SimpleNamespace(id="s-1")
        with self.assertRaises(ApiError) as already:
            ensure_action_allowed(action=ClockAction.IN, active_session=session, auto_closed=None)  # type: ignore[arg-type]
        self.assertEqual(already.exception.code, "SESSION_ALREADY_ACTIVE")

        for action in (ClockAction.OUT, ClockAction.BREAK_START, ClockAction.BREAK_END):
            with self.assertRaises(ApiError) as missing:
                ensure_action_allowed(action=action, active_session=None, auto_closed=None)
            self.assertEqual(missing.exception.code, "NO_ACTIVE_SESSION")
            self.assertIsNone(missing.exception.reason)

        with self.assertRaises(ApiError) as exceeded:
            ensure_action_allowed(action=ClockAction.OUT, active_session=None, auto_closed=object())  # type: ignore[arg-type]
        self.assertEqual(exceeded.exception.reason, "shift_exceeded_max_hours")

    def test_status_after_action(self) -> None:
        self.assertEqual(status_after_action(ClockAction.IN), WorkerStatus.WORKING)
        self.assertEqual(status_after_action(ClockAction.BREAK_START), WorkerStatus.PAUSED)
        self.assertEqual(status_after_action(ClockAction.BREAK_END), WorkerStatus.WORKING)
        self.assertEqual(status_after_action(ClockAction.OUT), WorkerStatus.OFF)

    def test_derived_status(self) -> None:
        session = SimpleNamespace(id="s-1")
        paused = SimpleNamespace(event_type=TimeEventType.PAUSE_START)
        resumed = SimpleNamespace(event_type=TimeEventType.PAUSE_END)
        self.assertEqual(derive_worker_status(None, paused), WorkerStatus.OFF)  # type: ignore[arg-type]
        self.assertEqual(derive_worker_status(session, paused), WorkerStatus.PAUSED)  # type: ignore[arg-type]
        self.assertEqual(derive_worker_status(session, resumed), WorkerStatus.WORKING)  # type: ignore[arg-type]
        self.assertEqual(derive_worker_status(session, None), WorkerStatus.WORKING)  # type: ignore[arg-type]


class SweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()

    def tearDown(self) -> None:
        self.db.close()

    def test_sweep_uses_company_cap_or_fallback(self) -> None:
        capped = seed_company(self.db, name="Capped", max_shift_hours=8)
        uncapped = seed_company(self.db, name="Uncapped", max_shift_hours=None)
        first = seed_worker(self.db, capped)
        second = seed_worker(self.db, uncapped)
        third = seed_worker(self.db, uncapped)
        seed_session(self.db, worker=first, company=capped, clock_in_time=FIXED_NOW - timedelta(hours=9))
        seed_session(self.db, worker=second, company=uncapped, clock_in_time=FIXED_NOW - timedelta(hours=9))
        seed_session(self.db, worker=third, company=uncapped, clock_in_time=FIXED_NOW - timedelta(hours=30))

        closed = sweep_exceeded_sessions(
            self.db,
            company_id=None,
            max_shift_hours_by_company={capped.id: 8.0, uncapped.id: None},
            fallback_hours=24.0,
            now_utc=FIXED_NOW,
            tz=timezone.utc,
        )

        closed_workers = {item.incident.worker_id for item in closed}
        self.assertEqual(closed_workers, {first.id, third.id})


if __name__ == "__main__":
    unittest.main()
