from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeflow.models import (
    Incident,
    IncidentType,
    Notification,
    NotificationSeverity,
    Worker,
)
from timeflow.services.tenant import list_admin_recipient_ids

logger = logging.getLogger("timeflow.incidents")

INCIDENT_NOTIFICATION_TITLE = "Clock incident"
GEOFENCE_NOTIFICATION_TITLE = "Clock action outside the zone"
SCHEDULE_NOTIFICATION_TITLE = "Clock action outside schedule"
ENTITY_TYPE_TIME_EVENT = "time_event"
ENTITY_TYPE_WORK_SESSION = "work_session"
ENTITY_TYPE_INCIDENT = "incident"


@dataclass(frozen=True, slots=True)
class IncidentDraft:
    worker_id: uuid.UUID
    company_id: uuid.UUID
    incident_type: IncidentType
    incident_date: date
    description: str
    notify_message: str
    severity: NotificationSeverity = NotificationSeverity.WARNING


@dataclass(frozen=True, slots=True)
class NotificationDraft:
    company_id: uuid.UUID
    title: str
    message: str
    severity: NotificationSeverity
    entity_type: str | None = None
    entity_id: str | None = None


def notify_users(
    db: Session,
    recipient_ids: Iterable[uuid.UUID],
    payload: NotificationDraft,
    *,
    deduplicate_by_entity: bool = False,
) -> list[uuid.UUID]:
    """Insert one notification per distinct recipient and return who was notified.

    With ``deduplicate_by_entity`` recipients that already hold a notification
    for the same (company, entity_type, entity_id) are skipped. Failures are
    logged and never propagate.
    """
    targets = list(dict.fromkeys(recipient_ids))
    if not targets:
        return []

    try:
        if deduplicate_by_entity and payload.entity_type and payload.entity_id:
            already_notified = set(
                db.scalars(
                    select(Notification.user_id).where(
                        Notification.company_id == payload.company_id,
                        Notification.entity_type == payload.entity_type,
                        Notification.entity_id == payload.entity_id,
                        Notification.user_id.in_(targets),
                    )
                ).all()
            )
            targets = [item for item in targets if item not in already_notified]

        if not targets:
            return []

        for user_id in targets:
            db.add(
                Notification(
                    company_id=payload.company_id,
                    user_id=user_id,
                    title=payload.title,
                    message=payload.message,
                    type=payload.severity,
                    entity_type=payload.entity_type,
                    entity_id=payload.entity_id,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "notification_write_failed",
            extra={
                "company_id": str(payload.company_id),
                "entity_type": payload.entity_type,
                "entity_id": payload.entity_id,
            },
        )
        return []
    return targets


def report_incident(db: Session, draft: IncidentDraft) -> Incident | None:
    try:
        incident = Incident(
            user_id=draft.worker_id,
            company_id=draft.company_id,
            incident_type=draft.incident_type,
            incident_date=draft.incident_date,
            description=draft.description,
        )
        db.add(incident)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "incident_write_failed",
            extra={
                "worker_id": str(draft.worker_id),
                "company_id": str(draft.company_id),
                "incident_type": draft.incident_type.value,
            },
        )
        return None

    try:
        recipients = list_admin_recipient_ids(db, company_id=draft.company_id)
    except Exception:
        db.rollback()
        logger.exception("incident_recipient_lookup_failed", extra={"incident_id": str(incident.id)})
        recipients = []
    recipients.append(draft.worker_id)

    entity_type = (
        ENTITY_TYPE_WORK_SESSION if draft.incident_type == IncidentType.MISSING_CHECKOUT else ENTITY_TYPE_INCIDENT
    )
    notified = notify_users(
        db,
        recipients,
        NotificationDraft(
            company_id=draft.company_id,
            title=INCIDENT_NOTIFICATION_TITLE,
            message=draft.notify_message,
            severity=draft.severity,
            entity_type=entity_type,
            entity_id=str(incident.id),
        ),
    )
    logger.info(
        "incident_reported",
        extra={
            "incident_id": str(incident.id),
            "incident_type": draft.incident_type.value,
            "worker_id": str(draft.worker_id),
            "company_id": str(draft.company_id),
            "recipients": [str(item) for item in notified],
        },
    )
    return incident


def _worker_label(db: Session, worker_id: uuid.UUID) -> str:
    try:
        worker = db.get(Worker, worker_id)
    except Exception:
        db.rollback()
        logger.warning("worker_label_lookup_failed", exc_info=True, extra={"worker_id": str(worker_id)})
        return "Worker"
    if worker is None:
        return "Worker"
    return worker.full_name or worker.email or "Worker"


def notify_geofence_violation(
    db: Session,
    *,
    company_id: uuid.UUID,
    worker_id: uuid.UUID,
    event_id: uuid.UUID,
    action_label: str,
    distance_meters: float | None,
    latitude: float | None,
    longitude: float | None,
) -> list[uuid.UUID]:
    try:
        recipients = list_admin_recipient_ids(db, company_id=company_id)
    except Exception:
        db.rollback()
        logger.exception("geofence_recipient_lookup_failed", extra={"company_id": str(company_id)})
        return []

    distance_label = f"{round(distance_meters)} m" if distance_meters is not None else "distance unavailable"
    if latitude is not None and longitude is not None:
        coordinates_label = f"({latitude:.5f}, {longitude:.5f})"
    else:
        coordinates_label = "no coordinates"
    worker_label = _worker_label(db, worker_id)

    return notify_users(
        db,
        recipients,
        NotificationDraft(
            company_id=company_id,
            title=GEOFENCE_NOTIFICATION_TITLE,
            message=(
                f"{worker_label} recorded {action_label} outside the configured zone "
                f"({distance_label} from the center). Reported location: {coordinates_label}."
            ),
            severity=NotificationSeverity.WARNING,
            entity_type=ENTITY_TYPE_TIME_EVENT,
            entity_id=str(event_id),
        ),
        deduplicate_by_entity=True,
    )


def schedule_deviation_entity_id(worker_id: uuid.UUID, local_day: date) -> str:
    return f"{worker_id}-{local_day.isoformat()}-schedule-out-of-hours"


def notify_schedule_deviation(
    db: Session,
    *,
    company_id: uuid.UUID,
    worker_id: uuid.UUID,
    local_day: date,
    action_value: str,
) -> list[uuid.UUID]:
    try:
        recipients = list_admin_recipient_ids(db, company_id=company_id)
    except Exception:
        db.rollback()
        logger.exception("schedule_recipient_lookup_failed", extra={"company_id": str(company_id)})
        return []

    worker_label = _worker_label(db, worker_id)
    return notify_users(
        db,
        recipients,
        NotificationDraft(
            company_id=company_id,
            title=SCHEDULE_NOTIFICATION_TITLE,
            message=f"{worker_label} clocked ({action_value}) outside today's scheduled hours.",
            severity=NotificationSeverity.WARNING,
            entity_type=ENTITY_TYPE_TIME_EVENT,
            entity_id=schedule_deviation_entity_id(worker_id, local_day),
        ),
        deduplicate_by_entity=True,
    )
