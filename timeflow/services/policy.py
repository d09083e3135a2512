from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

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
    WorkSession,
)
from timeflow.services.tenant import TenantContext
from timeflow.services.values import ClockAction, as_utc, minutes_of_day, parse_hhmm, soft_read

logger = logging.getLogger("timeflow.policy")

SUNDAY_WEEKDAY = 6


def ensure_company_active(tenant: TenantContext) -> None:
    if tenant.is_suspended:
        raise ApiError(
            status_code=403,
            code="COMPANY_SUSPENDED",
            message="Company suspended. Contact your administrator.",
        )


@dataclass(frozen=True, slots=True)
class CompliancePolicy:
    max_week_hours: float | None
    max_month_hours: float | None
    min_hours_between_shifts: float | None
    window_start_minutes: int | None
    window_end_minutes: int | None
    allow_outside_schedule: bool

    @property
    def has_limits(self) -> bool:
        return bool(self.max_week_hours or self.max_month_hours or self.min_hours_between_shifts)

    @property
    def window_enforced(self) -> bool:
        if self.allow_outside_schedule:
            return False
        if self.window_start_minutes is None or self.window_end_minutes is None:
            return False
        # 00:00-00:00 means the window is switched off.
        return not (self.window_start_minutes == 0 and self.window_end_minutes == 0)


def load_compliance_policy(
    db: Session,
    *,
    company_id: uuid.UUID,
    allow_outside_schedule_default: bool,
) -> CompliancePolicy:
    settings = db.scalar(select(ComplianceSettings).where(ComplianceSettings.company_id == company_id))
    if settings is None:
        return CompliancePolicy(
            max_week_hours=None,
            max_month_hours=None,
            min_hours_between_shifts=None,
            window_start_minutes=None,
            window_end_minutes=None,
            allow_outside_schedule=allow_outside_schedule_default,
        )

    allow_outside = settings.allow_outside_schedule
    return CompliancePolicy(
        max_week_hours=settings.max_week_hours,
        max_month_hours=settings.max_month_hours,
        min_hours_between_shifts=settings.min_hours_between_shifts,
        window_start_minutes=parse_hhmm(settings.allowed_checkin_start),
        window_end_minutes=parse_hhmm(settings.allowed_checkin_end),
        allow_outside_schedule=allow_outside if isinstance(allow_outside, bool) else allow_outside_schedule_default,
    )


def _inside_window(current: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= current <= end
    # Window wraps past midnight, e.g. 22:00-06:00.
    return current >= start or current <= end


def ensure_within_allowed_window(policy: CompliancePolicy, *, local_now: datetime) -> None:
    if not policy.window_enforced:
        return
    current = minutes_of_day(local_now)
    if not _inside_window(current, policy.window_start_minutes, policy.window_end_minutes):  # type: ignore[arg-type]
        raise ApiError(
            status_code=400,
            code="LEGAL_RESTRICTION",
            message="Clocking is not allowed at this time of day.",
            reason="outside_allowed_hours",
        )


@dataclass(frozen=True, slots=True)
class EffectiveDayRules:
    allow_sunday_clock: bool = True
    holiday_clock_policy: HolidayClockPolicy = HolidayClockPolicy.ALLOW
    special_day_policy: SpecialDayPolicy = SpecialDayPolicy.ALLOW


def merge_day_rules(
    company_rules: CompanyDayRules | None,
    worker_rules: WorkerDayRules | None,
) -> EffectiveDayRules:
    """Worker override first, then the company rule, then the system default."""
    defaults = EffectiveDayRules()

    allow_sunday = defaults.allow_sunday_clock
    holiday_policy = defaults.holiday_clock_policy
    special_policy = defaults.special_day_policy

    if company_rules is not None:
        if company_rules.allow_sunday_clock is not None:
            allow_sunday = bool(company_rules.allow_sunday_clock)
        if company_rules.holiday_clock_policy is not None:
            holiday_policy = HolidayClockPolicy(company_rules.holiday_clock_policy)
        if company_rules.special_day_policy is not None:
            special_policy = SpecialDayPolicy(company_rules.special_day_policy)

    if worker_rules is not None:
        if worker_rules.allow_sunday_clock is not None:
            allow_sunday = bool(worker_rules.allow_sunday_clock)
        if worker_rules.holiday_clock_policy is not None:
            holiday_policy = HolidayClockPolicy(worker_rules.holiday_clock_policy)
        if worker_rules.special_day_policy is not None:
            special_policy = SpecialDayPolicy(worker_rules.special_day_policy)

    return EffectiveDayRules(
        allow_sunday_clock=allow_sunday,
        holiday_clock_policy=holiday_policy,
        special_day_policy=special_policy,
    )


def resolve_policy_date(
    *,
    action: ClockAction,
    active_session: WorkSession | None,
    now_utc: datetime,
    tz: tzinfo,
) -> date:
    # Non-"in" actions belong to the day the open session started, so night
    # shifts crossing midnight are judged by their start date.
    if action is not ClockAction.IN and active_session is not None:
        return as_utc(active_session.clock_in_time).astimezone(tz).date()
    return as_utc(now_utc).astimezone(tz).date()


@dataclass(frozen=True, slots=True)
class DayContext:
    policy_date: date
    rules: EffectiveDayRules
    is_holiday: bool
    is_special_day: bool

    @property
    def is_sunday(self) -> bool:
        return self.policy_date.weekday() == SUNDAY_WEEKDAY


def load_day_context(
    db: Session,
    *,
    tenant: TenantContext,
    policy_date: date,
) -> DayContext:
    company_rules, _ = soft_read(
        db,
        "company_day_rules",
        lambda: db.scalar(select(CompanyDayRules).where(CompanyDayRules.company_id == tenant.company_id)),
        company_id=tenant.company_id,
    )
    worker_rules, _ = soft_read(
        db,
        "worker_day_rules",
        lambda: db.scalar(
            select(WorkerDayRules).where(
                WorkerDayRules.company_id == tenant.company_id,
                WorkerDayRules.user_id == tenant.worker_id,
            )
        ),
        company_id=tenant.company_id,
        worker_id=tenant.worker_id,
    )
    _, is_holiday = soft_read(
        db,
        "public_holidays",
        lambda: db.scalar(
            select(PublicHoliday.id)
            .where(
                PublicHoliday.date == policy_date,
                or_(PublicHoliday.company_id.is_(None), PublicHoliday.company_id == tenant.company_id),
            )
            .limit(1)
        ),
        company_id=tenant.company_id,
        policy_date=policy_date,
    )
    _, is_special_day = soft_read(
        db,
        "company_special_days",
        lambda: db.scalar(
            select(CompanySpecialDay.id)
            .where(
                CompanySpecialDay.company_id == tenant.company_id,
                CompanySpecialDay.date == policy_date,
            )
            .limit(1)
        ),
        company_id=tenant.company_id,
        policy_date=policy_date,
    )
    return DayContext(
        policy_date=policy_date,
        rules=merge_day_rules(company_rules, worker_rules),
        is_holiday=is_holiday,
        is_special_day=is_special_day,
    )


def _day_violation(reason: str, message: str) -> ApiError:
    return ApiError(status_code=400, code="DAY_POLICY_VIOLATION", message=message, reason=reason)


def ensure_day_allowed(
    day: DayContext,
    *,
    justification: str | None,
    min_reason_length: int = 3,
) -> None:
    if day.is_sunday and not day.rules.allow_sunday_clock:
        raise _day_violation("sunday_blocked", "Clocking on Sundays is not allowed.")

    if day.is_holiday:
        if day.rules.holiday_clock_policy == HolidayClockPolicy.BLOCK:
            raise _day_violation("holiday_blocked", "Clocking on public holidays is not allowed.")
        if day.rules.holiday_clock_policy == HolidayClockPolicy.REQUIRE_REASON:
            reason_text = (justification or "").strip()
            if len(reason_text) < min_reason_length:
                raise _day_violation(
                    "holiday_requires_reason",
                    "A reason is required to clock on a public holiday.",
                )

    if day.is_special_day and day.rules.special_day_policy == SpecialDayPolicy.RESTRICT:
        raise _day_violation("special_day_restricted", "Clocking is restricted on this special day.")


@dataclass(frozen=True, slots=True)
class ShiftWindow:
    start_minutes: int
    end_minutes: int
    expected_hours: float

    @classmethod
    def from_shift(cls, shift: ScheduledShift | None) -> ShiftWindow | None:
        if shift is None:
            return None
        start = parse_hhmm(shift.start_time)
        end = parse_hhmm(shift.end_time)
        try:
            expected = float(shift.expected_hours or 0)
        except (TypeError, ValueError):
            expected = 0.0
        if start is None or end is None or expected <= 0:
            return None
        return cls(start_minutes=start, end_minutes=end, expected_hours=expected)

    def contains(self, minutes: int) -> bool:
        return self.start_minutes <= minutes <= self.end_minutes


def load_scheduled_shift(
    db: Session,
    *,
    tenant: TenantContext,
    shift_date: date,
) -> ShiftWindow | None:
    shift, _ = soft_read(
        db,
        "scheduled_shifts",
        lambda: db.scalar(
            select(ScheduledShift).where(
                ScheduledShift.user_id == tenant.worker_id,
                ScheduledShift.company_id == tenant.company_id,
                ScheduledShift.date == shift_date,
            )
        ),
        company_id=tenant.company_id,
        worker_id=tenant.worker_id,
        shift_date=shift_date,
    )
    return ShiftWindow.from_shift(shift)


def ensure_within_schedule_margins(
    *,
    action: ClockAction,
    shift: ShiftWindow | None,
    tenant: TenantContext,
    allow_outside_schedule: bool,
    local_now: datetime,
) -> None:
    if allow_outside_schedule or shift is None:
        return

    current = minutes_of_day(local_now)
    if action is ClockAction.IN:
        earliest = shift.start_minutes - tenant.entry_early_minutes
        latest = shift.start_minutes + tenant.entry_late_minutes
    elif action is ClockAction.OUT:
        earliest = shift.end_minutes - tenant.exit_early_minutes
        latest = shift.end_minutes + tenant.exit_late_minutes
    else:
        return

    if current < earliest:
        raise ApiError(
            status_code=400,
            code="SCHEDULE_WINDOW_VIOLATION",
            message="Too early: you cannot clock yet for your scheduled shift.",
            reason="too_early",
        )
    if current > latest:
        raise ApiError(
            status_code=400,
            code="SCHEDULE_WINDOW_VIOLATION",
            message="Too late: the clocking margin for your scheduled shift has passed.",
            reason="too_late",
        )


def _week_start_utc(now_utc: datetime, tz: tzinfo) -> datetime:
    local_day = as_utc(now_utc).astimezone(tz).date()
    monday = local_day - timedelta(days=local_day.weekday())
    return datetime.combine(monday, time.min, tzinfo=tz).astimezone(timezone.utc)


def _month_start_utc(now_utc: datetime, tz: tzinfo) -> datetime:
    local_day = as_utc(now_utc).astimezone(tz).date()
    first = local_day.replace(day=1)
    return datetime.combine(first, time.min, tzinfo=tz).astimezone(timezone.utc)


def closed_session_hours(
    db: Session,
    *,
    tenant: TenantContext,
    since_utc: datetime,
    now_utc: datetime,
) -> float:
    sessions = db.scalars(
        select(WorkSession).where(
            WorkSession.user_id == tenant.worker_id,
            WorkSession.company_id == tenant.company_id,
            WorkSession.is_active.is_(False),
            WorkSession.clock_in_time >= since_utc,
            WorkSession.clock_in_time <= now_utc,
        )
    ).all()
    total = 0.0
    for session in sessions:
        if session.clock_out_time is None:
            continue
        started = as_utc(session.clock_in_time)
        ended = as_utc(session.clock_out_time)
        if ended > started:
            total += (ended - started).total_seconds() / 3600
    return total


def _last_clock_out(db: Session, *, tenant: TenantContext) -> datetime | None:
    return db.scalar(
        select(WorkSession.clock_out_time)
        .where(
            WorkSession.user_id == tenant.worker_id,
            WorkSession.company_id == tenant.company_id,
            WorkSession.is_active.is_(False),
            WorkSession.clock_out_time.is_not(None),
        )
        .order_by(WorkSession.clock_out_time.desc())
        .limit(1)
    )


def _legal_restriction(reason: str, message: str) -> ApiError:
    return ApiError(status_code=400, code="LEGAL_RESTRICTION", message=message, reason=reason)


def ensure_hour_limits(
    db: Session,
    *,
    policy: CompliancePolicy,
    tenant: TenantContext,
    now_utc: datetime,
    tz: tzinfo,
) -> None:
    if not policy.has_limits:
        return
    now_utc = as_utc(now_utc)

    if policy.max_week_hours:
        week_hours = closed_session_hours(
            db,
            tenant=tenant,
            since_utc=_week_start_utc(now_utc, tz),
            now_utc=now_utc,
        )
        if week_hours >= policy.max_week_hours:
            raise _legal_restriction("exceeded_week_hours", "Weekly hour limit reached.")

    if policy.max_month_hours:
        month_hours = closed_session_hours(
            db,
            tenant=tenant,
            since_utc=_month_start_utc(now_utc, tz),
            now_utc=now_utc,
        )
        if month_hours >= policy.max_month_hours:
            raise _legal_restriction("exceeded_month_hours", "Monthly hour limit reached.")

    if policy.min_hours_between_shifts:
        last_out = _last_clock_out(db, tenant=tenant)
        if last_out is not None:
            rest_hours = (now_utc - as_utc(last_out)).total_seconds() / 3600
            if rest_hours < policy.min_hours_between_shifts:
                logger.info(
                    "insufficient_rest_between_shifts",
                    extra={
                        "worker_id": str(tenant.worker_id),
                        "company_id": str(tenant.company_id),
                        "rest_hours": round(rest_hours, 2),
                        "required_hours": policy.min_hours_between_shifts,
                    },
                )
                raise _legal_restriction("too_soon_between_shifts", "Minimum rest between shifts not reached.")
