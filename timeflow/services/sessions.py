from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from timeflow.errors import ApiError
from timeflow.models import (
    Company,
    IncidentType,
    SessionReviewStatus,
    SessionStatus,
    TimeEvent,
    TimeEventType,
    WorkSession,
)
from timeflow.services.incidents import IncidentDraft
from timeflow.services.values import ClockAction, as_utc, local_date

logger = logging.getLogger("timeflow.sessions")


class WorkerStatus(str, enum.Enum):
    WORKING = "working"
    PAUSED = "paused"
    OFF = "off"


@dataclass(frozen=True, slots=True)
class AutoCloseResult:
    session_id: uuid.UUID
    clock_in_time: datetime
    clock_out_time: datetime
    incident: IncidentDraft


def load_active_session(
    db: Session,
    *,
    worker_id: uuid.UUID,
    company_id: uuid.UUID,
    for_update: bool = False,
) -> WorkSession | None:
    statement = select(WorkSession).where(
        WorkSession.user_id == worker_id,
        WorkSession.company_id == company_id,
        WorkSession.is_active.is_(True),
    )
    if for_update:
        statement = statement.with_for_update()
    return db.scalar(statement)


def is_session_overrun(session: WorkSession, *, max_shift_hours: float | None, now_utc: datetime) -> bool:
    if max_shift_hours is None:
        return False
    elapsed = as_utc(now_utc) - as_utc(session.clock_in_time)
    return elapsed > timedelta(hours=max_shift_hours)


def auto_close_session(
    db: Session,
    session: WorkSession,
    *,
    max_shift_hours: float,
    now_utc: datetime,
    tz: tzinfo,
) -> AutoCloseResult | None:
    """Administratively close an overrun session at ``clock_in + max_shift_hours``.

    Returns ``None`` when the session was already closed by someone else.
    """
    session_id = session.id
    worker_id = session.user_id
    company_id = session.company_id
    clock_in = as_utc(session.clock_in_time)
    capped_out = clock_in + timedelta(hours=max_shift_hours)
    result = db.execute(
        update(WorkSession)
        .where(WorkSession.id == session_id, WorkSession.is_active.is_(True))
        .values(
            clock_out_time=capped_out,
            is_active=False,
            status=SessionStatus.AUTO_CLOSED,
            review_status=SessionReviewStatus.EXCEEDED_LIMIT,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    db.expire(session)

    logger.warning(
        "session_auto_closed",
        extra={
            "session_id": str(session_id),
            "worker_id": str(worker_id),
            "company_id": str(company_id),
            "clock_in_time": clock_in.isoformat(),
            "capped_clock_out_time": capped_out.isoformat(),
            "max_shift_hours": max_shift_hours,
        },
    )
    return AutoCloseResult(
        session_id=session_id,
        clock_in_time=clock_in,
        clock_out_time=capped_out,
        incident=IncidentDraft(
            worker_id=worker_id,
            company_id=company_id,
            incident_type=IncidentType.MISSING_CHECKOUT,
            incident_date=local_date(now_utc, tz),
            description="Session exceeded the maximum allowed hours and was flagged for review.",
            notify_message="A session exceeded the configured hour limit. Review and adjust the hours.",
        ),
    )


def ensure_action_allowed(
    *,
    action: ClockAction,
    active_session: WorkSession | None,
    auto_closed: AutoCloseResult | None,
) -> None:
    if action is ClockAction.IN:
        if active_session is not None:
            raise ApiError(
                status_code=400,
                code="SESSION_ALREADY_ACTIVE",
                message="You already have an active session.",
            )
        return

    if active_session is None:
        if auto_closed is not None:
            raise ApiError(
                status_code=400,
                code="NO_ACTIVE_SESSION",
                message="Your previous session exceeded the maximum shift hours and was closed.",
                reason="shift_exceeded_max_hours",
            )
        raise ApiError(
            status_code=400,
            code="NO_ACTIVE_SESSION",
            message="You have no active session.",
        )


def open_session(
    db: Session,
    *,
    worker_id: uuid.UUID,
    company_id: uuid.UUID,
    clock_in_time: datetime,
    point_id: uuid.UUID | None,
) -> WorkSession:
    """Add the new open session to the current unit of work.

    The partial unique index on active sessions turns a concurrent second
    opening into ``SESSION_ALREADY_ACTIVE``.
    """
    session = WorkSession(
        user_id=worker_id,
        company_id=company_id,
        clock_in_time=as_utc(clock_in_time),
        is_active=True,
        status=SessionStatus.OPEN,
        point_id=point_id,
    )
    db.add(session)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning(
            "concurrent_session_open_rejected",
            extra={"worker_id": str(worker_id), "company_id": str(company_id)},
        )
        raise ApiError(
            status_code=400,
            code="SESSION_ALREADY_ACTIVE",
            message="You already have an active session.",
        ) from None
    return session


def close_session(
    db: Session,
    *,
    session_id: uuid.UUID,
    clock_out_time: datetime,
) -> None:
    result = db.execute(
        update(WorkSession)
        .where(WorkSession.id == session_id, WorkSession.is_active.is_(True))
        .values(
            clock_out_time=as_utc(clock_out_time),
            is_active=False,
            status=SessionStatus.CLOSED,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ApiError(
            status_code=400,
            code="NO_ACTIVE_SESSION",
            message="You have no active session.",
        )


def status_after_action(action: ClockAction) -> WorkerStatus:
    if action is ClockAction.OUT:
        return WorkerStatus.OFF
    if action is ClockAction.BREAK_START:
        return WorkerStatus.PAUSED
    # break_end without an open break leaves the worker working.
    return WorkerStatus.WORKING


def derive_worker_status(
    active_session: WorkSession | None,
    last_event: TimeEvent | None,
) -> WorkerStatus:
    if active_session is None:
        return WorkerStatus.OFF
    if last_event is not None and last_event.event_type == TimeEventType.PAUSE_START:
        return WorkerStatus.PAUSED
    return WorkerStatus.WORKING


def load_last_event(
    db: Session,
    *,
    worker_id: uuid.UUID,
    company_id: uuid.UUID,
) -> TimeEvent | None:
    return db.scalar(
        select(TimeEvent)
        .where(TimeEvent.user_id == worker_id, TimeEvent.company_id == company_id)
        .order_by(TimeEvent.event_time.desc(), TimeEvent.created_at.desc())
        .limit(1)
    )


def load_company_shift_caps(db: Session) -> dict[uuid.UUID, float | None]:
    rows = db.execute(select(Company.id, Company.max_shift_hours)).all()
    return {company_id: hours for company_id, hours in rows}


def sweep_exceeded_sessions(
    db: Session,
    *,
    company_id: uuid.UUID | None,
    max_shift_hours_by_company: dict[uuid.UUID, float | None],
    fallback_hours: float,
    now_utc: datetime,
    tz: tzinfo,
) -> list[AutoCloseResult]:
    """Auto-close every active session that overran its company cap.

    Companies without ``max_shift_hours`` use ``fallback_hours``.
    """
    statement = select(WorkSession).where(WorkSession.is_active.is_(True))
    if company_id is not None:
        statement = statement.where(WorkSession.company_id == company_id)
    statement = statement.order_by(WorkSession.clock_in_time.asc())

    try:
        candidates = list(db.scalars(statement).all())
    except SQLAlchemyError:
        db.rollback()
        logger.exception("session_sweep_load_failed", extra={"company_id": str(company_id) if company_id else None})
        raise

    closed: list[AutoCloseResult] = []
    for session in candidates:
        cap = max_shift_hours_by_company.get(session.company_id)
        if cap is None:
            cap = fallback_hours
        if not is_session_overrun(session, max_shift_hours=cap, now_utc=now_utc):
            continue
        result = auto_close_session(db, session, max_shift_hours=cap, now_utc=now_utc, tz=tz)
        if result is not None:
            closed.append(result)

    logger.info(
        "session_sweep_complete",
        extra={
            "company_id": str(company_id) if company_id else None,
            "candidates": len(candidates),
            "closed": len(closed),
        },
    )
    return closed
