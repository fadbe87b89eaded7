"""
Great-circle geometry for geofence checks.

Pure functions only: Haversine distance, inclusive containment, and the
initial bearing used to tell a worker which way the job site lies.
"""
import math
from dataclasses import dataclass
from typing import Optional

from fieldclock.core.errors import InvalidInput

EARTH_RADIUS_M = 6371000.0

DEFAULT_RADIUS_M = 100.0
MIN_RADIUS_M = 75.0
MAX_RADIUS_M = 250.0
MIN_ACCURACY_BUFFER_M = 15.0

_COMPASS_POINTS = (
    "north", "north-east", "east", "south-east",
    "south", "south-west", "west", "north-west",
)


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


def _check_finite(name: str, value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid {name}: not a number") from exc
    if math.isnan(v) or math.isinf(v):
        raise InvalidInput(f"Invalid {name}: not a finite number")
    return v


def validate_coordinate(point: Coordinate) -> Coordinate:
    lat = _check_finite("latitude", point.lat)
    lng = _check_finite("longitude", point.lng)
    if lat < -90 or lat > 90:
        raise InvalidInput("Invalid latitude: must be between -90 and 90")
    if lng < -180 or lng > 180:
        raise InvalidInput("Invalid longitude: must be between -180 and 180")
    return Coordinate(lat=lat, lng=lng)


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    a = validate_coordinate(a)
    b = validate_coordinate(b)

    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    delta_phi = math.radians(b.lat - a.lat)
    delta_lambda = math.radians(b.lng - a.lng)

    h = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(1.0, h)
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def is_within_geofence(point: Coordinate, center: Coordinate, radius_meters: float) -> bool:
    """Inclusive: a point exactly on the boundary is inside."""
    radius = _check_finite("radius", radius_meters)
    if radius < 0:
        raise InvalidInput("Invalid radius: must not be negative")
    return distance_meters(point, center) <= radius


def initial_bearing(a: Coordinate, b: Coordinate) -> float:
    """Bearing in degrees [0, 360) to travel from a toward b."""
    a = validate_coordinate(a)
    b = validate_coordinate(b)

    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    delta_lambda = math.radians(b.lng - a.lng)

    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def compass_direction(bearing_degrees: float) -> str:
    index = int(((bearing_degrees % 360.0) + 22.5) // 45.0) % 8
    return _COMPASS_POINTS[index]


def base_radius(job_radius_m: Optional[float]) -> float:
    radius = DEFAULT_RADIUS_M if job_radius_m is None else float(job_radius_m)
    return max(MIN_RADIUS_M, min(radius, MAX_RADIUS_M))


def effective_radius(job_radius_m: Optional[float], accuracy_m: Optional[float]) -> float:
    return base_radius(job_radius_m) + max(float(accuracy_m or 0.0), MIN_ACCURACY_BUFFER_M)
