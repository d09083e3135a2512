"""Initial attendance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


company_status = sa.Enum("active", "suspended", name="company_status")
membership_role = sa.Enum("owner", "admin", "manager", "worker", name="membership_role")
holiday_clock_policy = sa.Enum("allow", "require_reason", "block", name="holiday_clock_policy")
holiday_clock_policy_ref = postgresql.ENUM(
    "allow",
    "require_reason",
    "block",
    name="holiday_clock_policy",
    create_type=False,
)
special_day_policy = sa.Enum("allow", "restrict", name="special_day_policy")
special_day_policy_ref = postgresql.ENUM("allow", "restrict", name="special_day_policy", create_type=False)
work_session_status = sa.Enum("open", "closed", "auto_closed", name="work_session_status")
work_session_review_status = sa.Enum("pending_review", "exceeded_limit", name="work_session_review_status")
time_event_type = sa.Enum("clock_in", "clock_out", "pause_start", "pause_end", name="time_event_type")
incident_type = sa.Enum(
    "late_arrival",
    "early_departure",
    "missing_checkout",
    "missing_checkin",
    "other",
    name="incident_type",
)
notification_severity = sa.Enum("info", "success", "warning", "error", name="notification_severity")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "workers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_workers_email"),
    )

    op.create_table(
        "companies",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", company_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("hq_lat", sa.Float(), nullable=True),
        sa.Column("hq_lng", sa.Float(), nullable=True),
        sa.Column("max_shift_hours", sa.Float(), nullable=True),
        sa.Column("entry_early_minutes", sa.Integer(), nullable=True, server_default=sa.text("10")),
        sa.Column("entry_late_minutes", sa.Integer(), nullable=True, server_default=sa.text("15")),
        sa.Column("exit_early_minutes", sa.Integer(), nullable=True, server_default=sa.text("10")),
        sa.Column("exit_late_minutes", sa.Integer(), nullable=True, server_default=sa.text("15")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("role", membership_role, nullable=False, server_default=sa.text("'worker'")),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "company_id", name="uq_memberships_user_company"),
    )
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"], unique=False)
    op.create_index("ix_memberships_company_id", "memberships", ["company_id"], unique=False)

    op.create_table(
        "clock_points",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("radius_meters", sa.Float(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_clock_points_company_id", "clock_points", ["company_id"], unique=False)

    op.create_table(
        "worker_devices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=False),
        sa.Column("point_id", sa.Uuid(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["point_id"], ["clock_points.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "company_id", "device_id", name="uq_worker_devices_user_company_device"),
    )
    op.create_index("ix_worker_devices_user_id", "worker_devices", ["user_id"], unique=False)
    op.create_index("ix_worker_devices_company_id", "worker_devices", ["company_id"], unique=False)

    op.create_table(
        "devices",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False, server_default=sa.text("'kiosk'")),
        sa.Column(
            "meta",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_devices_company_id", "devices", ["company_id"], unique=False)
    op.create_index(
        "ix_devices_company_local_device_id",
        "devices",
        ["company_id", sa.text("(meta ->> 'local_device_id')")],
        unique=False,
    )

    op.create_table(
        "company_compliance_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("max_week_hours", sa.Float(), nullable=True),
        sa.Column("max_month_hours", sa.Float(), nullable=True),
        sa.Column("min_hours_between_shifts", sa.Float(), nullable=True),
        sa.Column("allowed_checkin_start", sa.Time(), nullable=True),
        sa.Column("allowed_checkin_end", sa.Time(), nullable=True),
        sa.Column("allow_outside_schedule", sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", name="uq_company_compliance_settings_company"),
    )

    op.create_table(
        "company_day_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("allow_sunday_clock", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("holiday_clock_policy", holiday_clock_policy, nullable=False, server_default=sa.text("'allow'")),
        sa.Column("special_day_policy", special_day_policy, nullable=False, server_default=sa.text("'allow'")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", name="uq_company_day_rules_company"),
    )

    op.create_table(
        "worker_day_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("allow_sunday_clock", sa.Boolean(), nullable=True),
        sa.Column("holiday_clock_policy", holiday_clock_policy_ref, nullable=True),
        sa.Column("special_day_policy", special_day_policy_ref, nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "user_id", name="uq_worker_day_rules_company_user"),
    )

    op.create_table(
        "public_holidays",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_public_holidays_company_id", "public_holidays", ["company_id"], unique=False)
    op.create_index("ix_public_holidays_date", "public_holidays", ["date"], unique=False)

    op.create_table(
        "company_special_days",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "date", name="uq_company_special_days_company_date"),
    )

    op.create_table(
        "scheduled_shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("expected_hours", sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "company_id", "date", name="uq_scheduled_shifts_user_company_date"),
    )

    op.create_table(
        "work_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("clock_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("status", work_session_status, nullable=False, server_default=sa.text("'open'")),
        sa.Column("review_status", work_session_review_status, nullable=True),
        sa.Column("point_id", sa.Uuid(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_work_sessions_one_active",
        "work_sessions",
        ["user_id", "company_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_work_sessions_user_company_clock_in",
        "work_sessions",
        ["user_id", "company_id", "clock_in_time"],
        unique=False,
    )

    op.create_table(
        "time_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", time_event_type, nullable=False),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False, server_default=sa.text("'web'")),
        sa.Column("device_id", sa.Uuid(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("distance_meters", sa.Float(), nullable=True),
        sa.Column("is_within_geofence", sa.Boolean(), nullable=True),
        sa.Column("photo_url", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("point_id", sa.Uuid(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "source IN ('mobile', 'web', 'kiosk', 'fastclock')",
            name="ck_time_events_source",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_time_events_user_company_time",
        "time_events",
        ["user_id", "company_id", "event_time"],
        unique=False,
    )

    op.create_table(
        "incidents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("incident_type", incident_type, nullable=False),
        sa.Column("incident_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'open'")),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_incidents_user_id", "incidents", ["user_id"], unique=False)
    op.create_index("ix_incidents_company_id", "incidents", ["company_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", notification_severity, nullable=False, server_default=sa.text("'info'")),
        sa.Column("entity_type", sa.String(length=64), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["workers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notifications_entity",
        "notifications",
        ["company_id", "entity_type", "entity_id", "user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_entity", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_incidents_company_id", table_name="incidents")
    op.drop_index("ix_incidents_user_id", table_name="incidents")
    op.drop_table("incidents")
    op.drop_index("ix_time_events_user_company_time", table_name="time_events")
    op.drop_table("time_events")
    op.drop_index("ix_work_sessions_user_company_clock_in", table_name="work_sessions")
    op.drop_index("uq_work_sessions_one_active", table_name="work_sessions")
    op.drop_table("work_sessions")
    op.drop_table("scheduled_shifts")
    op.drop_table("company_special_days")
    op.drop_index("ix_public_holidays_date", table_name="public_holidays")
    op.drop_index("ix_public_holidays_company_id", table_name="public_holidays")
    op.drop_table("public_holidays")
    op.drop_table("worker_day_rules")
    op.drop_table("company_day_rules")
    op.drop_table("company_compliance_settings")
    op.drop_index("ix_devices_company_local_device_id", table_name="devices")
    op.drop_index("ix_devices_company_id", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_worker_devices_company_id", table_name="worker_devices")
    op.drop_index("ix_worker_devices_user_id", table_name="worker_devices")
    op.drop_table("worker_devices")
    op.drop_index("ix_clock_points_company_id", table_name="clock_points")
    op.drop_table("clock_points")
    op.drop_index("ix_memberships_company_id", table_name="memberships")
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("companies")
    op.drop_table("workers")

    bind = op.get_bind()
    for enum_type in (
        notification_severity,
        incident_type,
        time_event_type,
        work_session_review_status,
        work_session_status,
        special_day_policy,
        holiday_clock_policy,
        membership_role,
        company_status,
    ):
        enum_type.drop(bind, checkfirst=True)
