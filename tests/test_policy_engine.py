from __future__ import annotations

import unittest
from datetime import date, datetime, time, timedelta, timezone

from timeflow.errors import ApiError
from timeflow.models import (
    CompanyDayRules,
    CompanySpecialDay,
    ComplianceSettings,
    HolidayClockPolicy,
    PublicHoliday,
    ScheduledShift,
    SpecialDayPolicy,
    WorkerDayRules,
)
from timeflow.services.policy import (
    CompliancePolicy,
    ShiftWindow,
    ensure_day_allowed,
    ensure_hour_limits,
    ensure_within_allowed_window,
    ensure_within_schedule_margins,
    load_compliance_policy,
    load_day_context,
    load_scheduled_shift,
    merge_day_rules,
    resolve_policy_date,
)
from timeflow.services.tenant import resolve_tenant
from timeflow.services.values import ClockAction

from tests.db_support import FIXED_NOW, make_session, seed_company, seed_session, seed_worker

HOLIDAY = date(2026, 10, 12)
SUNDAY = date(2026, 10, 18)


def _window(start: int | None, end: int | None, *, allow_outside: bool = False) -> CompliancePolicy:
    return CompliancePolicy(
        max_week_hours=None,
        max_month_hours=None,
        min_hours_between_shifts=None,
        window_start_minutes=start,
        window_end_minutes=end,
        allow_outside_schedule=allow_outside,
    )


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 10, 14, hour, minute, tzinfo=timezone.utc)


class PolicyFixture(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.company = seed_company(self.db)
        self.worker = seed_worker(self.db, self.company)
        self.tenant = resolve_tenant(self.db, subject_id=self.worker.id, kiosk_worker_id=None, company_id=None)

    def tearDown(self) -> None:
        self.db.close()


class DayRuleTests(PolicyFixture):
    def test_worker_override_allows_holiday_blocked_by_company(self) -> None:
        self.db.add(PublicHoliday(company_id=None, date=HOLIDAY, name="National day"))
        self.db.add(CompanyDayRules(company_id=self.company.id, holiday_clock_policy=HolidayClockPolicy.BLOCK))
        self.db.add(
            WorkerDayRules(
                company_id=self.company.id,
                user_id=self.worker.id,
                holiday_clock_policy=HolidayClockPolicy.ALLOW,
            )
        )
        self.db.commit()

        day = load_day_context(self.db, tenant=self.tenant, policy_date=HOLIDAY)

        self.assertTrue(day.is_holiday)
        self.assertEqual(day.rules.holiday_clock_policy, HolidayClockPolicy.ALLOW)
        ensure_day_allowed(day, justification=None)

    def test_company_block_applies_without_override(self) -> None:
        self.db.add(PublicHoliday(company_id=self.company.id, date=HOLIDAY, name="Local fair"))
        self.db.add(CompanyDayRules(company_id=self.company.id, holiday_clock_policy=HolidayClockPolicy.BLOCK))
        self.db.commit()

        day = load_day_context(self.db, tenant=self.tenant, policy_date=HOLIDAY)
        with self.assertRaises(ApiError) as ctx:
            ensure_day_allowed(day, justification="inventory")
        self.assertEqual(ctx.exception.code, "DAY_POLICY_VIOLATION")
        self.assertEqual(ctx.exception.reason, "holiday_blocked")

    def test_holiday_reason_must_have_three_characters(self) -> None:
        self.db.add(PublicHoliday(company_id=None, date=HOLIDAY))
        self.db.add(
            CompanyDayRules(company_id=self.company.id, holiday_clock_policy=HolidayClockPolicy.REQUIRE_REASON)
        )
        self.db.commit()
        day = load_day_context(self.db, tenant=self.tenant, policy_date=HOLIDAY)

        with self.assertRaises(ApiError) as ctx:
            ensure_day_allowed(day, justification="  ok ")
        self.assertEqual(ctx.exception.reason, "holiday_requires_reason")
        ensure_day_allowed(day, justification="Year-end inventory")

    def test_sunday_block_and_special_day_restriction(self) -> None:
        self.db.add(
            CompanyDayRules(
                company_id=self.company.id,
                allow_sunday_clock=False,
                special_day_policy=SpecialDayPolicy.RESTRICT,
            )
        )
        self.db.add(CompanySpecialDay(company_id=self.company.id, date=HOLIDAY, name="Closure"))
        self.db.commit()

        with self.assertRaises(ApiError) as sunday:
            ensure_day_allowed(load_day_context(self.db, tenant=self.tenant, policy_date=SUNDAY), justification=None)
        self.assertEqual(sunday.exception.reason, "sunday_blocked")

        with self.assertRaises(ApiError) as special:
            ensure_day_allowed(load_day_context(self.db, tenant=self.tenant, policy_date=HOLIDAY), justification=None)
        self.assertEqual(special.exception.reason, "special_day_restricted")

    def test_other_company_holiday_is_ignored(self) -> None:
        other = seed_company(self.db, name="Other")
        self.db.add(PublicHoliday(company_id=other.id, date=HOLIDAY))
        self.db.commit()

        day = load_day_context(self.db, tenant=self.tenant, policy_date=HOLIDAY)
        self.assertFalse(day.is_holiday)

    def test_merge_defaults_when_no_rules(self) -> None:
        rules = merge_day_rules(None, None)
        self.assertTrue(rules.allow_sunday_clock)
        self.assertEqual(rules.holiday_clock_policy, HolidayClockPolicy.ALLOW)
        self.assertEqual(rules.special_day_policy, SpecialDayPolicy.ALLOW)

    def test_policy_date_follows_open_session_start(self) -> None:
        session = seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=datetime(2026, 10, 13, 22, 0, tzinfo=timezone.utc),
        )
        now = datetime(2026, 10, 14, 2, 0, tzinfo=timezone.utc)

        self.assertEqual(
            resolve_policy_date(action=ClockAction.OUT, active_session=session, now_utc=now, tz=timezone.utc),
            date(2026, 10, 13),
        )
        self.assertEqual(
            resolve_policy_date(action=ClockAction.IN, active_session=None, now_utc=now, tz=timezone.utc),
            date(2026, 10, 14),
        )


class AllowedWindowTests(unittest.TestCase):
    def test_outside_window_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            ensure_within_allowed_window(_window(9 * 60, 17 * 60), local_now=_at(8))
        self.assertEqual(ctx.exception.code, "LEGAL_RESTRICTION")
        self.assertEqual(ctx.exception.reason, "outside_allowed_hours")
        ensure_within_allowed_window(_window(9 * 60, 17 * 60), local_now=_at(12))

    def test_midnight_window_means_disabled(self) -> None:
        ensure_within_allowed_window(_window(0, 0), local_now=_at(3))

    def test_allow_outside_schedule_disables_window(self) -> None:
        ensure_within_allowed_window(_window(9 * 60, 17 * 60, allow_outside=True), local_now=_at(3))

    def test_window_wrapping_midnight(self) -> None:
        night = _window(22 * 60, 6 * 60)
        ensure_within_allowed_window(night, local_now=_at(23))
        ensure_within_allowed_window(night, local_now=_at(5, 30))
        with self.assertRaises(ApiError):
            ensure_within_allowed_window(night, local_now=_at(12))


class ComplianceLoadTests(PolicyFixture):
    def test_defaults_without_settings(self) -> None:
        policy = load_compliance_policy(self.db, company_id=self.company.id, allow_outside_schedule_default=False)
        self.assertFalse(policy.has_limits)
        self.assertFalse(policy.window_enforced)
        self.assertFalse(policy.allow_outside_schedule)

    def test_unset_flag_falls_back_to_default(self) -> None:
        self.db.add(
            ComplianceSettings(
                company_id=self.company.id,
                allowed_checkin_start=time(7, 0),
                allowed_checkin_end=time(20, 0),
                allow_outside_schedule=None,
            )
        )
        self.db.commit()

        policy = load_compliance_policy(self.db, company_id=self.company.id, allow_outside_schedule_default=True)
        self.assertTrue(policy.allow_outside_schedule)
        self.assertEqual(policy.window_start_minutes, 420)
        self.assertEqual(policy.window_end_minutes, 1200)


class ScheduleMarginTests(PolicyFixture):
    def setUp(self) -> None:
        super().setUp()
        self.shift = ShiftWindow(start_minutes=9 * 60, end_minutes=17 * 60, expected_hours=8)

    def _check(self, action: ClockAction, local_now: datetime, *, allow_outside: bool = False) -> None:
        ensure_within_schedule_margins(
            action=action,
            shift=self.shift,
            tenant=self.tenant,
            allow_outside_schedule=allow_outside,
            local_now=local_now,
        )

    def test_clock_in_margins(self) -> None:
        self._check(ClockAction.IN, _at(8, 50))
        self._check(ClockAction.IN, _at(9, 15))
        with self.assertRaises(ApiError) as early:
            self._check(ClockAction.IN, _at(8, 40))
        self.assertEqual(early.exception.code, "SCHEDULE_WINDOW_VIOLATION")
        self.assertEqual(early.exception.reason, "too_early")
        with self.assertRaises(ApiError) as late:
            self._check(ClockAction.IN, _at(9, 20))
        self.assertEqual(late.exception.reason, "too_late")

    def test_clock_out_margins(self) -> None:
        self._check(ClockAction.OUT, _at(16, 55))
        with self.assertRaises(ApiError):
            self._check(ClockAction.OUT, _at(16, 30))
        with self.assertRaises(ApiError):
            self._check(ClockAction.OUT, _at(17, 30))

    def test_breaks_and_allow_outside_are_not_checked(self) -> None:
        self._check(ClockAction.BREAK_START, _at(3))
        self._check(ClockAction.IN, _at(3), allow_outside=True)

    def test_shift_without_expected_hours_is_not_enforced(self) -> None:
        self.db.add(
            ScheduledShift(
                user_id=self.worker.id,
                company_id=self.company.id,
                date=date(2026, 10, 14),
                start_time=time(9, 0),
                end_time=time(17, 0),
                expected_hours=0,
            )
        )
        self.db.commit()
        self.assertIsNone(load_scheduled_shift(self.db, tenant=self.tenant, shift_date=date(2026, 10, 14)))


class HourLimitTests(PolicyFixture):
    def _policy(self, **overrides) -> CompliancePolicy:  # type: ignore[no-untyped-def]
        values = {
            "max_week_hours": None,
            "max_month_hours": None,
            "min_hours_between_shifts": None,
            "window_start_minutes": None,
            "window_end_minutes": None,
            "allow_outside_schedule": False,
        }
        values.update(overrides)
        return CompliancePolicy(**values)

    def test_weekly_cap_reached(self) -> None:
        monday = datetime(2026, 10, 12, 6, 0, tzinfo=timezone.utc)
        seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=monday,
            clock_out_time=monday + timedelta(hours=10),
        )
        with self.assertRaises(ApiError) as ctx:
            ensure_hour_limits(
                self.db,
                policy=self._policy(max_week_hours=10),
                tenant=self.tenant,
                now_utc=FIXED_NOW,
                tz=timezone.utc,
            )
        self.assertEqual(ctx.exception.reason, "exceeded_week_hours")

    def test_previous_week_does_not_count(self) -> None:
        last_week = datetime(2026, 10, 9, 6, 0, tzinfo=timezone.utc)
        seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=last_week,
            clock_out_time=last_week + timedelta(hours=12),
        )
        ensure_hour_limits(
            self.db,
            policy=self._policy(max_week_hours=10),
            tenant=self.tenant,
            now_utc=FIXED_NOW,
            tz=timezone.utc,
        )

    def test_monthly_cap_reached(self) -> None:
        start = datetime(2026, 10, 2, 6, 0, tzinfo=timezone.utc)
        seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=start,
            clock_out_time=start + timedelta(hours=20),
        )
        with self.assertRaises(ApiError) as ctx:
            ensure_hour_limits(
                self.db,
                policy=self._policy(max_month_hours=20),
                tenant=self.tenant,
                now_utc=FIXED_NOW,
                tz=timezone.utc,
            )
        self.assertEqual(ctx.exception.reason, "exceeded_month_hours")

    def test_minimum_rest_between_shifts(self) -> None:
        seed_session(
            self.db,
            worker=self.worker,
            company=self.company,
            clock_in_time=FIXED_NOW - timedelta(hours=14),
            clock_out_time=FIXED_NOW - timedelta(hours=6),
        )
        with self.assertRaises(ApiError) as ctx:
            ensure_hour_limits(
                self.db,
                policy=self._policy(min_hours_between_shifts=12),
                tenant=self.tenant,
                now_utc=FIXED_NOW,
                tz=timezone.utc,
            )
        self.assertEqual(ctx.exception.reason, "too_soon_between_shifts")

        ensure_hour_limits(
            self.db,
            policy=self._policy(min_hours_between_shifts=6),
            tenant=self.tenant,
            now_utc=FIXED_NOW,
            tz=timezone.utc,
        )


if __name__ == "__main__":
    unittest.main()
