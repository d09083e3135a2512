from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from timeflow.errors import ApiError
from timeflow.models import Company, CompanyStatus, Membership, MembershipRole

logger = logging.getLogger("timeflow.tenant")

DEFAULT_ENTRY_EARLY_MINUTES = 10
DEFAULT_ENTRY_LATE_MINUTES = 15
DEFAULT_EXIT_EARLY_MINUTES = 10
DEFAULT_EXIT_LATE_MINUTES = 15


@dataclass(frozen=True, slots=True)
class TenantContext:
    """Snapshot of the acting worker and the company policy attributes."""

    worker_id: uuid.UUID
    company_id: uuid.UUID
    company_name: str
    role: MembershipRole
    status: CompanyStatus
    hq_lat: float | None
    hq_lng: float | None
    max_shift_hours: float | None
    entry_early_minutes: int
    entry_late_minutes: int
    exit_early_minutes: int
    exit_late_minutes: int

    @property
    def is_suspended(self) -> bool:
        return self.status == CompanyStatus.SUSPENDED

    @property
    def has_headquarters(self) -> bool:
        return self.hq_lat is not None and self.hq_lng is not None


def _minutes_or_default(value: int | None, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _positive_hours(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return None
    if hours != hours:
        return None
    return hours


def build_tenant_context(membership: Membership) -> TenantContext:
    company: Company = membership.company
    return TenantContext(
        worker_id=membership.user_id,
        company_id=membership.company_id,
        company_name=company.name,
        role=membership.role,
        status=company.status,
        hq_lat=company.hq_lat,
        hq_lng=company.hq_lng,
        max_shift_hours=_positive_hours(company.max_shift_hours),
        entry_early_minutes=_minutes_or_default(company.entry_early_minutes, DEFAULT_ENTRY_EARLY_MINUTES),
        entry_late_minutes=_minutes_or_default(company.entry_late_minutes, DEFAULT_ENTRY_LATE_MINUTES),
        exit_early_minutes=_minutes_or_default(company.exit_early_minutes, DEFAULT_EXIT_EARLY_MINUTES),
        exit_late_minutes=_minutes_or_default(company.exit_late_minutes, DEFAULT_EXIT_LATE_MINUTES),
    )


def resolve_actor_id(
    *,
    subject_id: uuid.UUID | None,
    kiosk_worker_id: uuid.UUID | None,
) -> uuid.UUID:
    if subject_id is not None:
        return subject_id
    if kiosk_worker_id is not None:
        return kiosk_worker_id
    raise ApiError(
        status_code=401,
        code="NOT_AUTHENTICATED",
        message="Not authenticated and no worker_id provided.",
    )


def resolve_tenant(
    db: Session,
    *,
    subject_id: uuid.UUID | None,
    kiosk_worker_id: uuid.UUID | None,
    company_id: uuid.UUID | None,
) -> TenantContext:
    worker_id = resolve_actor_id(subject_id=subject_id, kiosk_worker_id=kiosk_worker_id)

    # The company row is joined in so policy attributes come back in the same round trip.
    memberships = list(
        db.scalars(
            select(Membership)
            .options(joinedload(Membership.company))
            .where(Membership.user_id == worker_id)
            .order_by(Membership.id.asc())
        )
        .unique()
        .all()
    )
    if not memberships:
        raise ApiError(
            status_code=400,
            code="NO_COMPANY",
            message="Worker has no company assigned.",
        )

    if company_id is None:
        if len(memberships) > 1:
            raise ApiError(
                status_code=400,
                code="COMPANY_SELECTION_REQUIRED",
                message="Select a company before clocking.",
            )
        selected = memberships[0]
    else:
        selected = next((item for item in memberships if item.company_id == company_id), None)
        if selected is None:
            raise ApiError(
                status_code=400,
                code="NO_COMPANY",
                message="Worker is not a member of the selected company.",
            )

    context = build_tenant_context(selected)
    logger.debug(
        "tenant_resolved",
        extra={
            "worker_id": str(context.worker_id),
            "company_id": str(context.company_id),
            "membership_count": len(memberships),
        },
    )
    return context


def list_admin_recipient_ids(db: Session, *, company_id: uuid.UUID) -> list[uuid.UUID]:
    rows = db.scalars(
        select(Membership.user_id).where(
            Membership.company_id == company_id,
            Membership.role.in_([MembershipRole.OWNER, MembershipRole.ADMIN, MembershipRole.MANAGER]),
        )
    ).all()
    return list(dict.fromkeys(rows))


def require_company_admin(db: Session, *, subject_id: uuid.UUID | None, company_id: uuid.UUID) -> TenantContext:
    if subject_id is None:
        raise ApiError(status_code=401, code="NOT_AUTHENTICATED", message="Authentication required.")
    context = resolve_tenant(db, subject_id=subject_id, kiosk_worker_id=None, company_id=company_id)
    if context.role not in (MembershipRole.OWNER, MembershipRole.ADMIN, MembershipRole.MANAGER):
        raise ApiError(status_code=403, code="FORBIDDEN", message="Company administrator role required.")
    return context
