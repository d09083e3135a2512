import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from timeflow.db import get_db
from timeflow.schemas import AutoCloseSessionRead, AutoCloseSweepResponse
from timeflow.security import get_optional_worker_subject
from timeflow.services.incidents import report_incident
from timeflow.services.sessions import sweep_exceeded_sessions
from timeflow.services.tenant import require_company_admin
from timeflow.settings import ClockConfig, get_clock_config

router = APIRouter(tags=["admin"])
logger = logging.getLogger("timeflow.admin")


@router.post(
    "/api/admin/companies/{company_id}/sessions/auto-close",
    response_model=AutoCloseSweepResponse,
)
def auto_close_company_sessions(
    company_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    config: ClockConfig = Depends(get_clock_config),
    subject_id: uuid.UUID | None = Depends(get_optional_worker_subject),
) -> AutoCloseSweepResponse:
    admin = require_company_admin(db, subject_id=subject_id, company_id=company_id)
    request.state.actor = admin.role.value
    request.state.company_id = str(company_id)

    cap = admin.max_shift_hours if admin.max_shift_hours is not None else config.stale_session_hours
    closed = sweep_exceeded_sessions(
        db,
        company_id=company_id,
        max_shift_hours_by_company={company_id: admin.max_shift_hours},
        fallback_hours=config.stale_session_hours,
        now_utc=datetime.now(timezone.utc),
        tz=config.timezone,
    )
    for item in closed:
        report_incident(db, item.incident)

    logger.info(
        "admin_auto_close_sweep",
        extra={
            "company_id": str(company_id),
            "actor_id": str(admin.worker_id),
            "closed_count": len(closed),
        },
    )
    return AutoCloseSweepResponse(
        company_id=company_id,
        max_shift_hours=cap,
        closed_count=len(closed),
        sessions=[
            AutoCloseSessionRead(
                session_id=item.session_id,
                clock_in_time=item.clock_in_time,
                clock_out_time=item.clock_out_time,
            )
            for item in closed
        ],
    )
