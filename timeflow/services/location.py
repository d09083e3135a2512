from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

from timeflow.errors import ApiError
from timeflow.services.clock_points import ResolvedClockPoint
from timeflow.services.tenant import TenantContext
from timeflow.services.values import Coordinates

EARTH_RADIUS_M = 6371000.0


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


@dataclass(frozen=True, slots=True)
class GeofenceAnchor:
    latitude: float
    longitude: float
    radius_m: float
    kind: str


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    distance_meters: float | None
    is_within_geofence: bool | None
    anchor: GeofenceAnchor | None

    @property
    def enforced(self) -> bool:
        return self.is_within_geofence is not None


def resolve_anchor(
    *,
    point: ResolvedClockPoint | None,
    tenant: TenantContext,
    default_radius_m: float,
) -> GeofenceAnchor | None:
    if point is not None and point.has_coordinates:
        radius = point.radius_meters if point.radius_meters is not None else default_radius_m
        return GeofenceAnchor(
            latitude=float(point.latitude),  # type: ignore[arg-type]
            longitude=float(point.longitude),  # type: ignore[arg-type]
            radius_m=float(radius),
            kind="point",
        )
    if tenant.has_headquarters:
        return GeofenceAnchor(
            latitude=float(tenant.hq_lat),  # type: ignore[arg-type]
            longitude=float(tenant.hq_lng),  # type: ignore[arg-type]
            radius_m=float(default_radius_m),
            kind="headquarters",
        )
    return None


def evaluate_geofence(
    *,
    location: Coordinates | None,
    point: ResolvedClockPoint | None,
    tenant: TenantContext,
    default_radius_m: float,
) -> GeofenceResult:
    if point is not None and point.has_coordinates and location is None:
        raise ApiError(
            status_code=400,
            code="LOCATION_REQUIRED",
            message="Location is required to clock at this point.",
        )

    anchor = resolve_anchor(point=point, tenant=tenant, default_radius_m=default_radius_m)
    if anchor is None or location is None:
        # Nothing to compare against: geofence is not enforced for this action.
        return GeofenceResult(distance_meters=None, is_within_geofence=None, anchor=anchor)

    distance_value = distance_m(location.latitude, location.longitude, anchor.latitude, anchor.longitude)
    return GeofenceResult(
        distance_meters=distance_value,
        is_within_geofence=distance_value <= anchor.radius_m,
        anchor=anchor,
    )
