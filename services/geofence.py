from __future__ import annotations

import math
from typing import Iterable, Optional

from schemas.loan import GeoPoint
from services.gatekeeper import REASON_LOCATION_MISMATCH

EARTH_RADIUS_METERS = 6_371_000.0
DEFAULT_RADIUS_METERS = 200.0


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def find_location_mismatch(
    point: GeoPoint,
    recorded: Iterable[GeoPoint],
    radius_meters: float = DEFAULT_RADIUS_METERS,
) -> Optional[str]:
    """
    Compare an incoming asset location with every recorded asset location.
    Returns a rejection reason for the first one farther than the radius.
    """
    for other in recorded:
        distance = haversine_meters(point, other)
        if distance > radius_meters:
            return (
                f"{REASON_LOCATION_MISMATCH}: {distance:.0f}m from a recorded asset "
                f"(limit {radius_meters:g}m)"
            )
    return None
