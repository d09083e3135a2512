#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_HEAD = "0001_initial"

REQUIRED_TABLES = (
    "workers",
    "companies",
    "memberships",
    "clock_points",
    "worker_devices",
    "devices",
    "company_compliance_settings",
    "company_day_rules",
    "worker_day_rules",
    "public_holidays",
    "company_special_days",
    "scheduled_shifts",
    "work_sessions",
    "time_events",
    "incidents",
    "notifications",
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def collect_report(engine: Engine) -> dict:
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
    add("required_tables", "fail" if missing_tables else "ok", {"missing": missing_tables})

    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        if "work_sessions" in tables:
            duplicate_active_sessions = conn.execute(
                text(
                    """
                    select user_id, company_id, count(*)
                    from work_sessions
                    where is_active = true
                    group by user_id, company_id
                    having count(*) > 1
                    """
                )
            ).fetchall()
            add(
                "duplicate_active_sessions",
                "fail" if duplicate_active_sessions else "ok",
                {"rows": [[str(item) for item in row] for row in duplicate_active_sessions]},
            )

        if "time_events" in tables and "devices" in tables:
            orphan_devices = conn.execute(
                text(
                    """
                    select e.id
                    from time_events e
                    left join devices d on d.id = e.device_id
                    where e.device_id is not null and d.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "time_event_orphan_device",
                "fail" if orphan_devices else "ok",
                {"sample_ids": [str(row[0]) for row in orphan_devices]},
            )

    return report


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    report = collect_report(create_engine(database_url))
    report["database_url"] = database_url
    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
