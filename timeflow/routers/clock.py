import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from timeflow.db import get_db
from timeflow.schemas import ClockRequest, ClockResponse, ClockStatusResponse
from timeflow.security import get_optional_worker_subject
from timeflow.services.clock import ClockCommand, ClockProcessor
from timeflow.services.reports import build_worker_status
from timeflow.services.tenant import resolve_tenant
from timeflow.services.values import ClockAction
from timeflow.settings import ClockConfig, get_clock_config

router = APIRouter(tags=["clock"])


@router.post("/api/clock", response_model=ClockResponse)
def clock(
    payload: ClockRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: ClockConfig = Depends(get_clock_config),
    subject_id: uuid.UUID | None = Depends(get_optional_worker_subject),
) -> ClockResponse:
    if subject_id is None:
        request.state.actor = "kiosk"
    command = ClockCommand(
        action=ClockAction(payload.action),
        device_id=payload.device_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        photo_url=payload.photo_url,
        source=payload.source,
        point_id=payload.point_id,
        worker_id=payload.worker_id,
        company_id=payload.company_id,
        notes=payload.notes,
        reason=payload.reason,
    )
    outcome = ClockProcessor(db, config).process(command, subject_id=subject_id)

    request.state.worker_id = str(outcome.worker_id)
    request.state.company_id = str(outcome.company_id)
    request.state.event_id = str(outcome.event_id)
    request.state.clock_action = payload.action
    request.state.within_geofence = outcome.is_within_geofence
    return ClockResponse(**outcome.to_payload())


@router.get("/api/clock/status", response_model=ClockStatusResponse)
def clock_status(
    request: Request,
    company_id: uuid.UUID | None = None,
    worker_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
    config: ClockConfig = Depends(get_clock_config),
    subject_id: uuid.UUID | None = Depends(get_optional_worker_subject),
) -> ClockStatusResponse:
    tenant = resolve_tenant(db, subject_id=subject_id, kiosk_worker_id=worker_id, company_id=company_id)
    request.state.worker_id = str(tenant.worker_id)
    request.state.company_id = str(tenant.company_id)
    payload = build_worker_status(
        db,
        worker_id=tenant.worker_id,
        company_id=tenant.company_id,
        now_utc=datetime.now(timezone.utc),
        tz=config.timezone,
    )
    return ClockStatusResponse(**payload)
