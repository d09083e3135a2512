from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from timeflow.errors import ApiError
from timeflow.models import ClockPoint
from timeflow.services.values import ValidatedPointId


@dataclass(frozen=True, slots=True)
class ResolvedClockPoint:
    id: uuid.UUID
    name: str
    latitude: float | None
    longitude: float | None
    radius_meters: float | None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def resolve_clock_point(
    db: Session,
    *,
    point_id: ValidatedPointId,
    company_id: uuid.UUID,
) -> ResolvedClockPoint | None:
    if not point_id.is_present:
        return None

    point = db.get(ClockPoint, point_id.value)
    if point is None or point.company_id != company_id or not point.active:
        raise ApiError(
            status_code=404,
            code="POINT_NOT_FOUND",
            message="Clock point not found. Scan a valid code.",
        )
    return ResolvedClockPoint(
        id=point.id,
        name=point.name,
        latitude=point.latitude,
        longitude=point.longitude,
        radius_meters=point.radius_meters,
    )
