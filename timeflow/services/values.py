from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timeflow.errors import ApiError
from timeflow.models import TimeEventType

logger = logging.getLogger("timeflow.lookups")

T = TypeVar("T")


class ClockAction(str, enum.Enum):
    IN = "in"
    OUT = "out"
    BREAK_START = "break_start"
    BREAK_END = "break_end"

    @property
    def event_type(self) -> TimeEventType:
        if self is ClockAction.IN:
            return TimeEventType.CLOCK_IN
        if self is ClockAction.OUT:
            return TimeEventType.CLOCK_OUT
        if self is ClockAction.BREAK_START:
            return TimeEventType.PAUSE_START
        if self is ClockAction.BREAK_END:
            return TimeEventType.PAUSE_END
        raise ValueError(f"Unhandled clock action: {self!r}")

    @property
    def label(self) -> str:
        if self is ClockAction.IN:
            return "a clock-in"
        if self is ClockAction.OUT:
            return "a clock-out"
        if self is ClockAction.BREAK_START:
            return "a break start"
        if self is ClockAction.BREAK_END:
            return "a break end"
        raise ValueError(f"Unhandled clock action: {self!r}")

    @property
    def requires_active_session(self) -> bool:
        return self is not ClockAction.IN


@dataclass(frozen=True, slots=True)
class ValidatedPointId:
    value: uuid.UUID | None = None

    @classmethod
    def parse(cls, raw: str | None) -> ValidatedPointId:
        normalized = raw.strip() if isinstance(raw, str) else ""
        if not normalized:
            return cls(None)
        try:
            parsed = uuid.UUID(normalized)
        except ValueError:
            raise ApiError(
                status_code=400,
                code="POINT_INVALID",
                message="The clock point link is invalid or incomplete.",
            ) from None
        # uuid.UUID also accepts braces, urn prefixes and bare hex.
        if str(parsed) != normalized.lower():
            raise ApiError(
                status_code=400,
                code="POINT_INVALID",
                message="The clock point link is invalid or incomplete.",
            )
        return cls(parsed)

    @property
    def is_present(self) -> bool:
        return self.value is not None


@dataclass(frozen=True, slots=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def from_pair(cls, latitude: Any, longitude: Any) -> Coordinates | None:
        if not _is_number(latitude) or not _is_number(longitude):
            return None
        return cls(float(latitude), float(longitude))


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return value == value


def as_utc(ts: datetime | None) -> datetime:
    if ts is None:
        return datetime.now(timezone.utc)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def minutes_of_day(value: time | datetime) -> int:
    return value.hour * 60 + value.minute


def parse_hhmm(raw: str | time | None) -> int | None:
    """Minutes since midnight for ``HH:MM`` / ``HH:MM:SS`` values, ``None`` when unparsable."""
    if raw is None:
        return None
    if isinstance(raw, time):
        return minutes_of_day(raw)
    parts = str(raw).strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def soft_read(
    db: Session,
    label: str,
    reader: Callable[[], T | None],
    *,
    default: T | None = None,
    **context: Any,
) -> tuple[T | None, bool]:
    """Run an optional lookup; storage errors are logged and read as "not found".

    The lookup runs inside a SAVEPOINT so a failed statement does not abort
    the surrounding transaction.
    """
    try:
        with db.begin_nested():
            value = reader()
    except SQLAlchemyError:
        logger.warning(
            "soft_read_failed",
            exc_info=True,
            extra={"lookup": label, **{key: str(item) for key, item in context.items()}},
        )
        return default, False
    if value is None:
        return default, False
    return value, True


def local_date(ts: datetime, tz: tzinfo) -> date:
    return as_utc(ts).astimezone(tz).date()
