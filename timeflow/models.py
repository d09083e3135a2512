from __future__ import annotations

import datetime as dt
import enum
import uuid
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeflow.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

ACCEPTED_EVENT_SOURCES: tuple[str, ...] = ("mobile", "web", "kiosk", "fastclock")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CompanyStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class MembershipRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    WORKER = "worker"


ADMIN_ROLES: tuple[MembershipRole, ...] = (
    MembershipRole.OWNER,
    MembershipRole.ADMIN,
    MembershipRole.MANAGER,
)


class HolidayClockPolicy(str, enum.Enum):
    ALLOW = "allow"
    REQUIRE_REASON = "require_reason"
    BLOCK = "block"


class SpecialDayPolicy(str, enum.Enum):
    ALLOW = "allow"
    RESTRICT = "restrict"


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    AUTO_CLOSED = "auto_closed"


class SessionReviewStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    EXCEEDED_LIMIT = "exceeded_limit"


class TimeEventType(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    PAUSE_START = "pause_start"
    PAUSE_END = "pause_end"


class IncidentType(str, enum.Enum):
    LATE_ARRIVAL = "late_arrival"
    EARLY_DEPARTURE = "early_departure"
    MISSING_CHECKOUT = "missing_checkout"
    MISSING_CHECKIN = "missing_checkin"
    OTHER = "other"


class NotificationSeverity(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    memberships: Mapped[list[Membership]] = relationship(back_populates="worker")


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[CompanyStatus] = mapped_column(
        Enum(CompanyStatus, name="company_status", values_callable=_enum_values),
        nullable=False,
        default=CompanyStatus.ACTIVE,
    )
    hq_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    hq_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_shift_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    entry_early_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True, default=10)
    entry_late_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True, default=15)
    exit_early_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True, default=10)
    exit_late_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True, default=15)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    memberships: Mapped[list[Membership]] = relationship(back_populates="company")
    clock_points: Mapped[list[ClockPoint]] = relationship(back_populates="company")


class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_memberships_user_company"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[MembershipRole] = mapped_column(
        Enum(MembershipRole, name="membership_role", values_callable=_enum_values),
        nullable=False,
        default=MembershipRole.WORKER,
    )

    worker: Mapped[Worker] = relationship(back_populates="memberships")
    company: Mapped[Company] = relationship(back_populates="memberships")


class ClockPoint(Base):
    __tablename__ = "clock_points"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    radius_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    company: Mapped[Company] = relationship(back_populates="clock_points")


class WorkerDevice(Base):
    """Physical device bound to a worker inside one company."""

    __tablename__ = "worker_devices"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", "device_id", name="uq_worker_devices_user_company_device"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    point_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("clock_points.id", ondelete="SET NULL"),
        nullable=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class DeviceRecord(Base):
    """Company-scoped device registry used only to attribute time events."""

    __tablename__ = "devices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="kiosk")
    meta: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ComplianceSettings(Base):
    __tablename__ = "company_compliance_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    max_week_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_month_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_hours_between_shifts: Mapped[float | None] = mapped_column(Float, nullable=True)
    allowed_checkin_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    allowed_checkin_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    allow_outside_schedule: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class CompanyDayRules(Base):
    __tablename__ = "company_day_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    allow_sunday_clock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    holiday_clock_policy: Mapped[HolidayClockPolicy] = mapped_column(
        Enum(HolidayClockPolicy, name="holiday_clock_policy", values_callable=_enum_values),
        nullable=False,
        default=HolidayClockPolicy.ALLOW,
    )
    special_day_policy: Mapped[SpecialDayPolicy] = mapped_column(
        Enum(SpecialDayPolicy, name="special_day_policy", values_callable=_enum_values),
        nullable=False,
        default=SpecialDayPolicy.ALLOW,
    )


class WorkerDayRules(Base):
    __tablename__ = "worker_day_rules"
    __table_args__ = (
        UniqueConstraint("company_id", "user_id", name="uq_worker_day_rules_company_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    allow_sunday_clock: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    holiday_clock_policy: Mapped[HolidayClockPolicy | None] = mapped_column(
        Enum(HolidayClockPolicy, name="holiday_clock_policy", values_callable=_enum_values),
        nullable=True,
    )
    special_day_policy: Mapped[SpecialDayPolicy | None] = mapped_column(
        Enum(SpecialDayPolicy, name="special_day_policy", values_callable=_enum_values),
        nullable=True,
    )


class PublicHoliday(Base):
    __tablename__ = "public_holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class CompanySpecialDay(Base):
    __tablename__ = "company_special_days"
    __table_args__ = (
        UniqueConstraint("company_id", "date", name="uq_company_special_days_company_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class ScheduledShift(Base):
    __tablename__ = "scheduled_shifts"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", "date", name="uq_scheduled_shifts_user_company_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    expected_hours: Mapped[float | None] = mapped_column(Float, nullable=True)


class WorkSession(Base):
    __tablename__ = "work_sessions"
    __table_args__ = (
        Index(
            "uq_work_sessions_one_active",
            "user_id",
            "company_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_work_sessions_user_company_clock_in", "user_id", "company_id", "clock_in_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    clock_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, name="work_session_status", values_callable=_enum_values),
        nullable=False,
        default=SessionStatus.OPEN,
    )
    review_status: Mapped[SessionReviewStatus | None] = mapped_column(
        Enum(SessionReviewStatus, name="work_session_review_status", values_callable=_enum_values),
        nullable=True,
    )
    point_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TimeEvent(Base):
    __tablename__ = "time_events"
    __table_args__ = (
        CheckConstraint(
            "source IN ('mobile', 'web', 'kiosk', 'fastclock')",
            name="ck_time_events_source",
        ),
        Index("ix_time_events_user_company_time", "user_id", "company_id", "event_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[TimeEventType] = mapped_column(
        Enum(TimeEventType, name="time_event_type", values_callable=_enum_values),
        nullable=False,
    )
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="web")
    device_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("devices.id", ondelete="SET NULL"),
        nullable=True,
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_within_geofence: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    point_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Incident(Base):
    __tablename__ = "incidents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    incident_type: Mapped[IncidentType] = mapped_column(
        Enum(IncidentType, name="incident_type", values_callable=_enum_values),
        nullable=False,
    )
    incident_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_entity", "company_id", "entity_type", "entity_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationSeverity] = mapped_column(
        Enum(NotificationSeverity, name="notification_severity", values_callable=_enum_values),
        nullable=False,
        default=NotificationSeverity.INFO,
    )
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
