from __future__ import annotations

import unittest
import uuid
from datetime import date, datetime, time, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from timeflow.errors import ApiError
from timeflow.models import Company, CompanyStatus, PublicHoliday, TimeEventType
from timeflow.services.values import (
    ClockAction,
    Coordinates,
    ValidatedPointId,
    as_utc,
    parse_hhmm,
    soft_read,
)

from tests.db_support import make_session


class ClockActionTests(unittest.TestCase):
    def test_every_action_maps_to_an_event_type(self) -> None:
        expected = {
            ClockAction.IN: TimeEventType.CLOCK_IN,
            ClockAction.OUT: TimeEventType.CLOCK_OUT,
            ClockAction.BREAK_START: TimeEventType.PAUSE_START,
            ClockAction.BREAK_END: TimeEventType.PAUSE_END,
        }
        for action in ClockAction:
            self.assertEqual(action.event_type, expected[action])
            self.assertTrue(action.label)

    def test_only_clock_in_runs_without_session(self) -> None:
        self.assertFalse(ClockAction.IN.requires_active_session)
        self.assertTrue(ClockAction.BREAK_END.requires_active_session)


class ValidatedPointIdTests(unittest.TestCase):
    def test_blank_values_mean_no_point(self) -> None:
        for raw in (None, "", "   "):
            self.assertFalse(ValidatedPointId.parse(raw).is_present)

    def test_valid_uuid_is_kept(self) -> None:
        raw = uuid.uuid4()
        parsed = ValidatedPointId.parse(f"  {raw}  ")
        self.assertEqual(parsed.value, raw)

    def test_malformed_identifier_is_rejected(self) -> None:
        for raw in ("not-a-uuid", "1234", "{" + str(uuid.uuid4()) + "}"):
            with self.assertRaises(ApiError) as ctx:
                ValidatedPointId.parse(raw)
            self.assertEqual(ctx.exception.code, "POINT_INVALID")
            self.assertEqual(ctx.exception.status_code, 400)


class CoordinatesTests(unittest.TestCase):
    def test_requires_both_numbers(self) -> None:
        self.assertIsNone(Coordinates.from_pair(40.0, None))
        self.assertIsNone(Coordinates.from_pair("40", -3.0))
        self.assertIsNone(Coordinates.from_pair(True, -3.0))
        self.assertIsNone(Coordinates.from_pair(float("nan"), -3.0))
        self.assertEqual(Coordinates.from_pair(40, -3.5), Coordinates(40.0, -3.5))


class TimeHelperTests(unittest.TestCase):
    def test_parse_hhmm(self) -> None:
        self.assertEqual(parse_hhmm("09:30"), 570)
        self.assertEqual(parse_hhmm("23:59:59"), 1439)
        self.assertEqual(parse_hhmm(time(7, 5)), 425)
        self.assertIsNone(parse_hhmm("24:00"))
        self.assertIsNone(parse_hhmm("nine"))
        self.assertIsNone(parse_hhmm(None))

    def test_as_utc_treats_naive_values_as_utc(self) -> None:
        naive = datetime(2026, 10, 14, 8, 0)
        self.assertEqual(as_utc(naive), datetime(2026, 10, 14, 8, 0, tzinfo=timezone.utc))


class SoftReadTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()

    def tearDown(self) -> None:
        self.db.close()

    def test_found_value(self) -> None:
        value, found = soft_read(self.db, "lookup", lambda: "row")
        self.assertEqual(value, "row")
        self.assertTrue(found)

    def test_missing_value_uses_default(self) -> None:
        value, found = soft_read(self.db, "lookup", lambda: None, default="fallback")
        self.assertEqual(value, "fallback")
        self.assertFalse(found)

    def test_storage_error_is_logged_and_degrades(self) -> None:
        def _boom():  # type: ignore[no-untyped-def]
            raise OperationalError("select 1", {}, Exception("connection lost"))

        with self.assertLogs("timeflow.lookups", level="WARNING") as logs:
            value, found = soft_read(self.db, "company_day_rules", _boom, company_id="c-1")

        self.assertIsNone(value)
        self.assertFalse(found)
        self.assertIn("soft_read_failed", logs.output[0])

    def test_failed_lookup_leaves_the_transaction_usable(self) -> None:
        company = Company(name="Acme", status=CompanyStatus.ACTIVE)
        self.db.add(company)
        self.db.flush()

        def _partial_write_then_fail():  # type: ignore[no-untyped-def]
            self.db.add(PublicHoliday(company_id=company.id, date=date(2026, 10, 12), name="Fiesta"))
            self.db.flush()
            raise OperationalError("select 1", {}, Exception("statement aborted"))

        with self.assertLogs("timeflow.lookups", level="WARNING"):
            _, found = soft_read(self.db, "public_holidays", _partial_write_then_fail)
        self.assertFalse(found)

        name, found = soft_read(
            self.db,
            "companies",
            lambda: self.db.scalar(select(Company.name).where(Company.id == company.id)),
        )
        self.assertTrue(found)
        self.assertEqual(name, "Acme")
        self.assertEqual(self.db.scalar(select(func.count()).select_from(PublicHoliday)), 0)

        self.db.commit()
        self.assertEqual(self.db.scalar(select(func.count()).select_from(Company)), 1)


if __name__ == "__main__":
    unittest.main()
