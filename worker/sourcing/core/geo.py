"""Geographic helpers."""

import math

from sourcing.models import Position

EARTH_RADIUS_KM = 6371.0


def distance_km(a: Position, b: Position) -> float:
    """Great-circle (haversine) distance between two positions, in kilometers."""
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lon - a.lon)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))
