from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeflow.models import TimeEvent, TimeEventType
from timeflow.services.sessions import derive_worker_status, load_active_session, load_last_event
from timeflow.services.values import as_utc


@dataclass(frozen=True, slots=True)
class WorkedSpan:
    clock_in: datetime
    clock_out: datetime
    paused: timedelta

    @property
    def worked(self) -> timedelta:
        total = self.clock_out - self.clock_in - self.paused
        return total if total > timedelta(0) else timedelta(0)

    @property
    def worked_minutes(self) -> int:
        return int(self.worked.total_seconds() // 60)


def compute_worked_durations(events: Iterable[TimeEvent]) -> list[WorkedSpan]:
    """Pair clock_in/clock_out events into worked spans net of pauses.

    A pause still open at clock_out is counted up to the clock_out.
    Events are processed in ``event_time`` order.
    """
    ordered = sorted(events, key=lambda item: as_utc(item.event_time))
    spans: list[WorkedSpan] = []
    started: datetime | None = None
    pause_started: datetime | None = None
    paused = timedelta(0)

    for event in ordered:
        at = as_utc(event.event_time)
        if event.event_type == TimeEventType.CLOCK_IN:
            started = at
            pause_started = None
            paused = timedelta(0)
        elif event.event_type == TimeEventType.PAUSE_START:
            if started is not None and pause_started is None:
                pause_started = at
        elif event.event_type == TimeEventType.PAUSE_END:
            if pause_started is not None:
                paused += at - pause_started
                pause_started = None
        elif event.event_type == TimeEventType.CLOCK_OUT:
            if started is None:
                continue
            if pause_started is not None:
                paused += at - pause_started
            spans.append(WorkedSpan(clock_in=started, clock_out=at, paused=paused))
            started = None
            pause_started = None
            paused = timedelta(0)

    return spans


def _local_day_bounds(now_utc: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    local_day = as_utc(now_utc).astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, start + timedelta(days=1)


def worked_minutes_today(
    db: Session,
    *,
    worker_id: uuid.UUID,
    company_id: uuid.UUID,
    now_utc: datetime,
    tz: tzinfo,
) -> int:
    day_start, day_end = _local_day_bounds(now_utc, tz)
    events = db.scalars(
        select(TimeEvent).where(
            TimeEvent.user_id == worker_id,
            TimeEvent.company_id == company_id,
            TimeEvent.event_time >= day_start,
            TimeEvent.event_time < day_end,
        )
    ).all()
    return sum(span.worked_minutes for span in compute_worked_durations(events))


def build_worker_status(
    db: Session,
    *,
    worker_id: uuid.UUID,
    company_id: uuid.UUID,
    now_utc: datetime,
    tz: tzinfo,
) -> dict[str, Any]:
    active_session = load_active_session(db, worker_id=worker_id, company_id=company_id)
    last_event = load_last_event(db, worker_id=worker_id, company_id=company_id)
    status = derive_worker_status(active_session, last_event)
    return {
        "status": status.value,
        "company_id": company_id,
        "session_started_at": as_utc(active_session.clock_in_time) if active_session is not None else None,
        "last_event_type": last_event.event_type.value if last_event is not None else None,
        "last_event_at": as_utc(last_event.event_time) if last_event is not None else None,
        "worked_minutes_today": worked_minutes_today(
            db,
            worker_id=worker_id,
            company_id=company_id,
            now_utc=now_utc,
            tz=tz,
        ),
    }
