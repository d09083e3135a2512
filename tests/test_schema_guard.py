from __future__ import annotations

import unittest
from unittest.mock import patch

from timeflow.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], indexes: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._indexes = indexes

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_indexes(self, _table_name: str):  # type: ignore[no-untyped-def]
        return self._indexes


def _complete_columns() -> dict[str, set[str]]:
    return {table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()}


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=_complete_columns(),
            indexes=[{"name": "uq_work_sessions_one_active", "unique": True}],
        )
        fake_engine = _FakeEngine("0001_initial")

        with patch("timeflow.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = _complete_columns()
        columns["time_events"] = {"id", "event_type", "event_time"}
        columns["work_sessions"].discard("is_active")
        fake_inspector = _FakeInspector(columns_by_table=columns, indexes=[])
        fake_engine = _FakeEngine("")

        with patch("timeflow.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:time_events:device_id,point_id,source", result.issues)
        self.assertIn("MISSING_COLUMNS:work_sessions:is_active", result.issues)
        self.assertIn("MISSING_INDEX:work_sessions:uq_work_sessions_one_active", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_non_unique_active_session_index_is_an_issue(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=_complete_columns(),
            indexes=[{"name": "uq_work_sessions_one_active", "unique": False}],
        )

        with patch("timeflow.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertEqual(result.issues, ["INDEX_NOT_UNIQUE:work_sessions:uq_work_sessions_one_active"])
        self.assertEqual(result.to_dict()["issue_count"], 1)


if __name__ == "__main__":
    unittest.main()
