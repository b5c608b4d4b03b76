"""Great-circle distance between coordinates.

Uses the Haversine formula on a spherical Earth, which is accurate to well
under a meter at classroom scale and stable for antipodal points.
"""

import math

from classroom_checkin.domain.models import Coordinates

EARTH_RADIUS_M = 6_371_000.0


def distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the distance in meters between two points given in degrees.

    Example:
        >>> round(distance(40.7128, -74.0060, 34.0522, -118.2437) / 1000)
        3936
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push a slightly outside [0, 1] for antipodal pairs.
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Coordinates, b: Coordinates) -> float:
    """Return the distance in meters between two coordinate pairs."""
    return distance(a.lat, a.lng, b.lat, b.lng)


def within_radius(point: Coordinates, center: Coordinates, radius_meters: float) -> bool:
    """Return whether ``point`` lies within ``radius_meters`` of ``center``."""
    return distance_between(point, center) <= radius_meters


def is_valid_coordinates(lat: object, lng: object) -> bool:
    """Return whether the values form a usable latitude/longitude pair."""
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, int | float) or not isinstance(lng, int | float):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180
