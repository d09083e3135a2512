from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "companies": {"id", "status", "hq_lat", "hq_lng", "max_shift_hours"},
    "memberships": {"user_id", "company_id", "role"},
    "worker_devices": {"user_id", "company_id", "device_id", "active"},
    "work_sessions": {"id", "user_id", "company_id", "clock_in_time", "is_active", "status", "review_status"},
    "time_events": {"id", "event_type", "event_time", "source", "device_id", "point_id"},
    "notifications": {"company_id", "user_id", "entity_type", "entity_id"},
    "alembic_version": {"version_num"},
}

ONE_ACTIVE_SESSION_INDEX = ("work_sessions", "uq_work_sessions_one_active")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    table_name, index_name = ONE_ACTIVE_SESSION_INDEX
    try:
        indexes = inspector.get_indexes(table_name) or []
    except Exception as exc:  # pragma: no cover
        warnings.append(f"INDEX_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
        indexes = None

    if indexes is not None:
        match = next((item for item in indexes if item.get("name") == index_name), None)
        if match is None:
            issues.append(f"MISSING_INDEX:{table_name}:{index_name}")
        elif not match.get("unique"):
            issues.append(f"INDEX_NOT_UNIQUE:{table_name}:{index_name}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
