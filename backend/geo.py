"""
Distance between two geographic points, in meters.

Separations under a few tens of meters go through a local planar
(equirectangular) projection; Haversine's small-angle terms lose precision
there. Everything else uses Haversine on the mean-radius sphere. Both paths
share the same sphere so results agree where the regimes meet.
"""

import math
from numbers import Real

from backend.errors import InvalidCoordinateError
from backend.models import GeoPoint

EARTH_MEAN_RADIUS_M = 6_371_008.8
METERS_PER_DEGREE = EARTH_MEAN_RADIUS_M * math.pi / 180.0

# Coarse classifier only; not used for the returned distance.
COARSE_METERS_PER_DEGREE = 111_000.0
SHORT_RANGE_CUTOFF_METERS = 30.0

DISTANCE_DECIMALS = 3


def _coerce_degree(value, *, name: str, limit: float) -> float:
    if value is None:
        raise InvalidCoordinateError(f"{name} is required.")
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidCoordinateError(f"{name} must be a number.")
    degrees = float(value)
    if not math.isfinite(degrees) or degrees < -limit or degrees > limit:
        raise InvalidCoordinateError(f"{name} must be between {-limit:g} and {limit:g}.")
    return degrees


def validate_point(point: GeoPoint | None) -> GeoPoint:
    if point is None:
        raise InvalidCoordinateError("Coordinates are required.")
    latitude = _coerce_degree(point.latitude, name="Latitude", limit=90.0)
    longitude = _coerce_degree(point.longitude, name="Longitude", limit=180.0)
    return GeoPoint(latitude=latitude, longitude=longitude)


def _wrapped_longitude_delta(lon1: float, lon2: float) -> float:
    delta = lon2 - lon1
    if delta > 180.0:
        delta -= 360.0
    elif delta < -180.0:
        delta += 360.0
    return delta


def coarse_estimate_m(a: GeoPoint, b: GeoPoint) -> float:
    dlat = abs(b.latitude - a.latitude)
    dlon = abs(_wrapped_longitude_delta(a.longitude, b.longitude))
    return (dlat + dlon) * COARSE_METERS_PER_DEGREE


def equirectangular_m(a: GeoPoint, b: GeoPoint) -> float:
    mean_lat = math.radians((a.latitude + b.latitude) / 2.0)
    dx = _wrapped_longitude_delta(a.longitude, b.longitude) * math.cos(mean_lat) * METERS_PER_DEGREE
    dy = (b.latitude - a.latitude) * METERS_PER_DEGREE
    return math.hypot(dx, dy)


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_MEAN_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_short_range(a: GeoPoint, b: GeoPoint) -> bool:
    return coarse_estimate_m(a, b) < SHORT_RANGE_CUTOFF_METERS


def distance(anchor: GeoPoint, point: GeoPoint) -> float:
    """Meters between `anchor` and `point`, rounded to the millimeter.

    Raises InvalidCoordinateError for missing or out-of-range input.
    """
    a = validate_point(anchor)
    b = validate_point(point)
    if a == b:
        return 0.0

    if is_short_range(a, b):
        meters = equirectangular_m(a, b)
    else:
        meters = haversine_m(a, b)
    return round(meters, DISTANCE_DECIMALS)
