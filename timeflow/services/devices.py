from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timeflow.errors import ApiError
from timeflow.models import DeviceRecord, WorkerDevice

logger = logging.getLogger("timeflow.devices")


def normalize_device_id(raw: str | None) -> str:
    normalized = raw.strip() if isinstance(raw, str) else ""
    if not normalized:
        raise ApiError(
            status_code=400,
            code="DEVICE_REQUIRED",
            message="A device identifier is required to clock.",
        )
    return normalized


def _count_active_bindings(db: Session, *, worker_id: uuid.UUID, company_id: uuid.UUID) -> int:
    count = db.scalar(
        select(func.count(WorkerDevice.id)).where(
            WorkerDevice.user_id == worker_id,
            WorkerDevice.company_id == company_id,
            WorkerDevice.active.is_(True),
        )
    )
    return int(count or 0)


def bind_device(
    db: Session,
    *,
    worker_id: uuid.UUID,
    company_id: uuid.UUID,
    device_id: str,
    point_id: uuid.UUID | None,
    max_devices: int,
    now_utc: datetime,
) -> WorkerDevice:
    """Touch an existing binding or create a new one within the per-worker cap.

    The binding change is committed on its own; it does not depend on the
    outcome of the clock action.
    """
    binding = db.scalar(
        select(WorkerDevice).where(
            WorkerDevice.user_id == worker_id,
            WorkerDevice.company_id == company_id,
            WorkerDevice.device_id == device_id,
        )
    )

    if binding is not None:
        if not binding.active:
            raise ApiError(
                status_code=403,
                code="DEVICE_REVOKED",
                message="This device has been revoked for the worker.",
            )
        binding.last_used_at = now_utc
        if point_id is not None and binding.point_id != point_id:
            binding.point_id = point_id
        db.commit()
        return binding

    active_count = _count_active_bindings(db, worker_id=worker_id, company_id=company_id)
    if max_devices > 0 and active_count >= max_devices:
        logger.info(
            "device_limit_exceeded",
            extra={
                "worker_id": str(worker_id),
                "company_id": str(company_id),
                "active_count": active_count,
                "max_devices": max_devices,
            },
        )
        raise ApiError(
            status_code=403,
            code="DEVICE_LIMIT_EXCEEDED",
            message="Maximum number of bound devices reached.",
        )

    binding = WorkerDevice(
        user_id=worker_id,
        company_id=company_id,
        device_id=device_id,
        point_id=point_id,
        active=True,
        last_used_at=now_utc,
    )
    db.add(binding)
    db.commit()
    logger.info(
        "device_bound",
        extra={
            "worker_id": str(worker_id),
            "company_id": str(company_id),
            "active_count": active_count + 1,
        },
    )
    return binding


def _device_label(device_id: str) -> str:
    return f"FastClock {device_id[:8]}"


def resolve_device_record(
    db: Session,
    *,
    company_id: uuid.UUID,
    device_id: str,
    source: str,
    point_id: uuid.UUID | None,
    now_utc: datetime,
) -> uuid.UUID | None:
    """Find or lazily register the company device used to attribute the event.

    Failures only cost the attribution: they are logged and ``None`` is returned.
    """
    try:
        record = db.scalar(
            select(DeviceRecord)
            .where(
                DeviceRecord.company_id == company_id,
                DeviceRecord.meta["local_device_id"].as_string() == device_id,
            )
            .limit(1)
        )
        if record is None:
            record = DeviceRecord(
                company_id=company_id,
                name=_device_label(device_id),
                type="kiosk",
                meta={
                    "local_device_id": device_id,
                    "source": source or "fastclock",
                    "point_id": str(point_id) if point_id is not None else None,
                },
                last_seen_at=now_utc,
            )
            db.add(record)
        else:
            record.last_seen_at = now_utc
        db.commit()
        return record.id
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "device_record_resolution_failed",
            exc_info=True,
            extra={"company_id": str(company_id), "device_id": device_id},
        )
        return None
