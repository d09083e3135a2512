from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timeflow.errors import ApiError
from timeflow.models import IncidentType, NotificationSeverity, TimeEventType
from timeflow.services.clock_points import resolve_clock_point
from timeflow.services.devices import bind_device, normalize_device_id, resolve_device_record
from timeflow.services.events import EventDraft, EventWriteError, record_event
from timeflow.services.incidents import (
    IncidentDraft,
    notify_geofence_violation,
    notify_schedule_deviation,
    report_incident,
)
from timeflow.services.location import GeofenceResult, evaluate_geofence
from timeflow.services.policy import (
    ShiftWindow,
    ensure_company_active,
    ensure_day_allowed,
    ensure_hour_limits,
    ensure_within_allowed_window,
    ensure_within_schedule_margins,
    load_compliance_policy,
    load_day_context,
    load_scheduled_shift,
    resolve_policy_date,
)
from timeflow.services.sessions import (
    AutoCloseResult,
    WorkerStatus,
    auto_close_session,
    close_session,
    ensure_action_allowed,
    is_session_overrun,
    load_active_session,
    open_session,
    status_after_action,
)
from timeflow.services.tenant import TenantContext, resolve_tenant
from timeflow.services.values import ClockAction, Coordinates, ValidatedPointId, as_utc, minutes_of_day
from timeflow.settings import ClockConfig

logger = logging.getLogger("timeflow.clock")


@dataclass(frozen=True, slots=True)
class ClockCommand:
    action: ClockAction
    device_id: str | None
    latitude: float | None = None
    longitude: float | None = None
    photo_url: str | None = None
    source: str | None = None
    point_id: str | None = None
    worker_id: uuid.UUID | None = None
    company_id: uuid.UUID | None = None
    notes: str | None = None
    reason: str | None = None

    @property
    def justification(self) -> str | None:
        for candidate in (self.notes, self.reason):
            if candidate and candidate.strip():
                return candidate
        return None


@dataclass(frozen=True, slots=True)
class ClockOutcome:
    worker_id: uuid.UUID
    company_id: uuid.UUID
    status: WorkerStatus
    event_id: uuid.UUID
    event_type: TimeEventType
    timestamp: datetime
    distance_meters: float | None
    is_within_geofence: bool | None
    session_id: uuid.UUID | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "status": self.status.value,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "distance_meters": self.distance_meters,
            "is_within_geofence": self.is_within_geofence,
        }


@dataclass(slots=True)
class _RequestState:
    now_utc: datetime
    tenant: TenantContext | None = None
    incidents: list[IncidentDraft] = field(default_factory=list)

    def queue_incident(
        self,
        incident_type: IncidentType,
        *,
        description: str,
        notify_message: str,
        severity: NotificationSeverity = NotificationSeverity.WARNING,
        config: ClockConfig,
    ) -> None:
        if self.tenant is None:
            return
        self.incidents.append(
            IncidentDraft(
                worker_id=self.tenant.worker_id,
                company_id=self.tenant.company_id,
                incident_type=incident_type,
                incident_date=self.now_utc.astimezone(config.timezone).date(),
                description=description,
                notify_message=notify_message,
                severity=severity,
            )
        )


class ClockProcessor:
    """Runs one clock action from tenant resolution to the committed time event.

    Incidents raised along the way are dispatched after the request settles,
    whether it succeeded or was rejected.
    """

    def __init__(self, db: Session, config: ClockConfig) -> None:
        self.db = db
        self.config = config

    def process(
        self,
        command: ClockCommand,
        *,
        subject_id: uuid.UUID | None,
        now: datetime | None = None,
    ) -> ClockOutcome:
        state = _RequestState(now_utc=as_utc(now) if now is not None else datetime.now(timezone.utc))
        try:
            outcome = self._run(command, subject_id=subject_id, state=state)
        except ApiError as exc:
            logger.info(
                "clock_action_rejected",
                extra={
                    "action": command.action.value,
                    "worker_id": str(state.tenant.worker_id) if state.tenant else None,
                    "company_id": str(state.tenant.company_id) if state.tenant else None,
                    "error": exc.code,
                    "reason": exc.reason,
                },
            )
            raise
        finally:
            self._dispatch_incidents(state.incidents)
        return outcome

    def _run(
        self,
        command: ClockCommand,
        *,
        subject_id: uuid.UUID | None,
        state: _RequestState,
    ) -> ClockOutcome:
        db = self.db
        config = self.config
        now_utc = state.now_utc
        local_now = now_utc.astimezone(config.timezone)
        action = command.action

        tenant = resolve_tenant(
            db,
            subject_id=subject_id,
            kiosk_worker_id=command.worker_id,
            company_id=command.company_id,
        )
        state.tenant = tenant

        try:
            ensure_company_active(tenant)
        except ApiError:
            state.queue_incident(
                IncidentType.OTHER,
                description="Clock attempt rejected because the company is suspended.",
                notify_message="A worker tried to clock while the company is suspended.",
                severity=NotificationSeverity.ERROR,
                config=config,
            )
            raise

        point_id = ValidatedPointId.parse(command.point_id)
        point = resolve_clock_point(db, point_id=point_id, company_id=tenant.company_id)

        device_id = normalize_device_id(command.device_id)
        bind_device(
            db,
            worker_id=tenant.worker_id,
            company_id=tenant.company_id,
            device_id=device_id,
            point_id=point_id.value,
            max_devices=config.max_devices_per_worker,
            now_utc=now_utc,
        )
        device_record_id = resolve_device_record(
            db,
            company_id=tenant.company_id,
            device_id=device_id,
            source=(command.source or "").strip().lower(),
            point_id=point_id.value,
            now_utc=now_utc,
        )

        policy = load_compliance_policy(
            db,
            company_id=tenant.company_id,
            allow_outside_schedule_default=config.allow_outside_schedule_default,
        )
        ensure_within_allowed_window(policy, local_now=local_now)

        active_session = load_active_session(db, worker_id=tenant.worker_id, company_id=tenant.company_id)
        auto_closed: AutoCloseResult | None = None
        if active_session is not None and is_session_overrun(
            active_session,
            max_shift_hours=tenant.max_shift_hours,
            now_utc=now_utc,
        ):
            auto_closed = auto_close_session(
                db,
                active_session,
                max_shift_hours=tenant.max_shift_hours,  # type: ignore[arg-type]
                now_utc=now_utc,
                tz=config.timezone,
            )
            if auto_closed is not None:
                state.incidents.append(auto_closed.incident)
            active_session = load_active_session(db, worker_id=tenant.worker_id, company_id=tenant.company_id)

        policy_date = resolve_policy_date(
            action=action,
            active_session=active_session,
            now_utc=now_utc,
            tz=config.timezone,
        )
        day = load_day_context(db, tenant=tenant, policy_date=policy_date)
        ensure_day_allowed(
            day,
            justification=command.justification,
            min_reason_length=config.holiday_reason_min_length,
        )

        shift = load_scheduled_shift(db, tenant=tenant, shift_date=local_now.date())

        try:
            ensure_action_allowed(action=action, active_session=active_session, auto_closed=auto_closed)
        except ApiError:
            if action is ClockAction.IN:
                state.queue_incident(
                    IncidentType.MISSING_CHECKOUT,
                    description="Clock-in attempted while a previous session was still open.",
                    notify_message="A previous session was left open and a new clock-in was blocked.",
                    config=config,
                )
            elif auto_closed is None:
                state.queue_incident(
                    IncidentType.MISSING_CHECKIN,
                    description=f"Attempted {action.value} without an open session.",
                    notify_message="A clock action without a previous clock-in was detected.",
                    config=config,
                )
            raise

        ensure_within_schedule_margins(
            action=action,
            shift=shift,
            tenant=tenant,
            allow_outside_schedule=policy.allow_outside_schedule,
            local_now=local_now,
        )

        if action is ClockAction.IN:
            ensure_hour_limits(db, policy=policy, tenant=tenant, now_utc=now_utc, tz=config.timezone)

        location = Coordinates.from_pair(command.latitude, command.longitude)
        geofence = evaluate_geofence(
            location=location,
            point=point,
            tenant=tenant,
            default_radius_m=config.default_geofence_radius_m,
        )

        draft = EventDraft(
            worker_id=tenant.worker_id,
            company_id=tenant.company_id,
            action=action,
            event_time=now_utc,
            source=command.source or "",
            device_record_id=device_record_id,
            location=location,
            geofence=geofence,
            point_id=point_id,
            photo_url=command.photo_url,
            notes=command.notes,
        )
        try:
            event = record_event(
                db,
                draft,
                fallback_source=config.fallback_event_source,
                default_source=config.default_event_source,
            )
        except EventWriteError as exc:
            state.queue_incident(
                IncidentType.OTHER,
                description=f"Clock event could not be stored: {exc.detail}",
                notify_message="A clock action failed to save. Review the worker's records.",
                severity=NotificationSeverity.ERROR,
                config=config,
            )
            raise
        event_id = event.id

        session_id = self._apply_session_transition(
            action,
            tenant=tenant,
            active_session_id=active_session.id if active_session is not None else None,
            point_id=point_id,
            state=state,
        )

        logger.info(
            "clock_action_recorded",
            extra={
                "event_id": str(event_id),
                "action": action.value,
                "worker_id": str(tenant.worker_id),
                "company_id": str(tenant.company_id),
                "distance_meters": geofence.distance_meters,
                "is_within_geofence": geofence.is_within_geofence,
            },
        )

        self._notify_after_commit(
            action,
            tenant=tenant,
            event_id=event_id,
            geofence=geofence,
            location=location,
            shift=shift,
            local_now=local_now,
        )

        return ClockOutcome(
            worker_id=tenant.worker_id,
            company_id=tenant.company_id,
            status=status_after_action(action),
            event_id=event_id,
            event_type=action.event_type,
            timestamp=now_utc,
            distance_meters=geofence.distance_meters,
            is_within_geofence=geofence.is_within_geofence,
            session_id=session_id,
        )

    def _apply_session_transition(
        self,
        action: ClockAction,
        *,
        tenant: TenantContext,
        active_session_id: uuid.UUID | None,
        point_id: ValidatedPointId,
        state: _RequestState,
    ) -> uuid.UUID | None:
        db = self.db
        session_id = active_session_id
        try:
            if action is ClockAction.IN:
                session = open_session(
                    db,
                    worker_id=tenant.worker_id,
                    company_id=tenant.company_id,
                    clock_in_time=state.now_utc,
                    point_id=point_id.value,
                )
                session_id = session.id
            elif action is ClockAction.OUT and active_session_id is not None:
                close_session(db, session_id=active_session_id, clock_out_time=state.now_utc)
            db.commit()
        except ApiError as exc:
            if exc.code == "SESSION_ALREADY_ACTIVE":
                state.queue_incident(
                    IncidentType.MISSING_CHECKOUT,
                    description="Concurrent clock-in rejected because another session was opened first.",
                    notify_message="A previous session was left open and a new clock-in was blocked.",
                    config=self.config,
                )
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception(
                "work_session_write_failed",
                extra={
                    "action": action.value,
                    "worker_id": str(tenant.worker_id),
                    "company_id": str(tenant.company_id),
                    "session_id": str(active_session_id) if active_session_id else None,
                },
            )
            state.queue_incident(
                IncidentType.OTHER,
                description=f"Session update failed after {action.value}: {exc.__class__.__name__}",
                notify_message="A clock action could not update the work session. Review the worker's records.",
                severity=NotificationSeverity.ERROR,
                config=self.config,
            )
            raise ApiError(
                status_code=500,
                code="SESSION_WRITE_FAILED",
                message="The work session could not be updated.",
            ) from exc
        return session_id

    def _notify_after_commit(
        self,
        action: ClockAction,
        *,
        tenant: TenantContext,
        event_id: uuid.UUID,
        geofence: GeofenceResult,
        location: Coordinates | None,
        shift: ShiftWindow | None,
        local_now: datetime,
    ) -> None:
        if geofence.is_within_geofence is False:
            notify_geofence_violation(
                self.db,
                company_id=tenant.company_id,
                worker_id=tenant.worker_id,
                event_id=event_id,
                action_label=action.label,
                distance_meters=geofence.distance_meters,
                latitude=location.latitude if location is not None else None,
                longitude=location.longitude if location is not None else None,
            )

        if action is ClockAction.IN and shift is not None and not shift.contains(minutes_of_day(local_now)):
            notify_schedule_deviation(
                self.db,
                company_id=tenant.company_id,
                worker_id=tenant.worker_id,
                local_day=local_now.date(),
                action_value=action.value,
            )

    def _dispatch_incidents(self, incidents: list[IncidentDraft]) -> None:
        for draft in incidents:
            report_incident(self.db, draft)
