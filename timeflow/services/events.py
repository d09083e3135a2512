from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from timeflow.errors import ApiError
from timeflow.models import TimeEvent
from timeflow.services.location import GeofenceResult
from timeflow.services.values import ClockAction, Coordinates, ValidatedPointId, as_utc

logger = logging.getLogger("timeflow.events")

CHECK_VIOLATION_SQLSTATE = "23514"


@dataclass(frozen=True, slots=True)
class EventDraft:
    worker_id: uuid.UUID
    company_id: uuid.UUID
    action: ClockAction
    event_time: datetime
    source: str
    device_record_id: uuid.UUID | None
    location: Coordinates | None
    geofence: GeofenceResult
    point_id: ValidatedPointId
    photo_url: str | None = None
    notes: str | None = None


class EventWriteError(ApiError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=500,
            code="EVENT_WRITE_FAILED",
            message="The clock event could not be recorded.",
        )
        self.detail = detail


def _build_event(draft: EventDraft, source: str) -> TimeEvent:
    event = TimeEvent(
        user_id=draft.worker_id,
        company_id=draft.company_id,
        event_type=draft.action.event_type,
        event_time=as_utc(draft.event_time),
        source=source,
        device_id=draft.device_record_id,
        latitude=draft.location.latitude if draft.location is not None else None,
        longitude=draft.location.longitude if draft.location is not None else None,
        distance_meters=draft.geofence.distance_meters,
        is_within_geofence=draft.geofence.is_within_geofence,
        photo_url=draft.photo_url or None,
        notes=draft.notes or None,
    )
    if draft.point_id.is_present:
        event.point_id = draft.point_id.value
    return event


def is_source_rejection(exc: IntegrityError) -> bool:
    """True when the store refused the row because of a value check on the channel."""
    original = exc.orig
    sqlstate = getattr(original, "pgcode", None) or getattr(original, "sqlstate", None)
    if sqlstate == CHECK_VIOLATION_SQLSTATE:
        return True
    text = str(original).lower()
    return "check constraint" in text or "source" in text


def _flush_event(db: Session, event: TimeEvent) -> None:
    db.add(event)
    db.flush()


def record_event(
    db: Session,
    draft: EventDraft,
    *,
    fallback_source: str,
    default_source: str = "web",
) -> TimeEvent:
    """Stage the time event in the current unit of work.

    The caller commits together with the session mutation. A channel rejected
    by the store is retried once with ``fallback_source``; any other failure
    raises ``EventWriteError``. A blank channel is recorded as ``default_source``.
    """
    source = (draft.source or "").strip().lower() or default_source
    event = _build_event(draft, source)
    try:
        _flush_event(db, event)
        return event
    except IntegrityError as exc:
        db.rollback()
        if source == fallback_source or not is_source_rejection(exc):
            logger.exception(
                "time_event_insert_failed",
                extra={
                    "worker_id": str(draft.worker_id),
                    "company_id": str(draft.company_id),
                    "action": draft.action.value,
                    "source": source,
                },
            )
            raise EventWriteError(str(exc.orig)) from exc
        logger.warning(
            "time_event_source_rejected",
            extra={
                "worker_id": str(draft.worker_id),
                "company_id": str(draft.company_id),
                "rejected_source": source,
                "fallback_source": fallback_source,
            },
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "time_event_insert_failed",
            extra={
                "worker_id": str(draft.worker_id),
                "company_id": str(draft.company_id),
                "action": draft.action.value,
                "source": source,
            },
        )
        raise EventWriteError(str(exc)) from exc

    retry = _build_event(draft, fallback_source)
    try:
        _flush_event(db, retry)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "time_event_fallback_insert_failed",
            extra={
                "worker_id": str(draft.worker_id),
                "company_id": str(draft.company_id),
                "action": draft.action.value,
                "source": fallback_source,
            },
        )
        raise EventWriteError(str(exc)) from exc
    return retry
