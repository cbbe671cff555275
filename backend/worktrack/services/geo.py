"""Spherical geometry helpers used by the geofence evaluator.

All functions are pure. Distances are metres on a sphere of radius
6,371 km; square fences use the flat 111 km-per-degree approximation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from worktrack.core.errors import InvalidGeometry

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE = 111_000.0
MIN_SQUARE_SIZE_M = 50.0
MAX_SQUARE_SIZE_M = 1000.0


@dataclass(frozen=True)
class Point:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east


def wrap_longitude(lon: float) -> float:
    """Fold a longitude into [-180, 180)."""
    return (lon + 180.0) % 360.0 - 180.0


def validate_point(latitude: float, longitude: float) -> Point:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise InvalidGeometry("Coordinates must be numeric") from exc
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidGeometry("Coordinates must be finite")
    if not -90.0 <= lat <= 90.0:
        raise InvalidGeometry(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise InvalidGeometry(f"Longitude {lon} outside [-180, 180]")
    return Point(lat, lon)


def distance(a: Point, b: Point) -> float:
    """Great-circle distance in metres (haversine)."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def square_bounds(center: Point, size_m: float) -> Bounds:
    validate_point(center.latitude, center.longitude)
    try:
        size = float(size_m)
    except (TypeError, ValueError) as exc:
        raise InvalidGeometry("Square size must be numeric") from exc
    if not (math.isfinite(size) and MIN_SQUARE_SIZE_M <= size <= MAX_SQUARE_SIZE_M):
        raise InvalidGeometry(
            f"Square size must be between {MIN_SQUARE_SIZE_M:g} and {MAX_SQUARE_SIZE_M:g} metres"
        )

    cos_lat = math.cos(math.radians(center.latitude))
    if cos_lat <= 1e-12:
        raise InvalidGeometry("Square fences cannot be centred on a pole")

    half = size / 2
    lat_delta = half / METERS_PER_DEGREE
    lon_delta = half / (METERS_PER_DEGREE * cos_lat)
    return Bounds(
        north=center.latitude + lat_delta,
        south=center.latitude - lat_delta,
        east=wrap_longitude(center.longitude + lon_delta),
        west=wrap_longitude(center.longitude - lon_delta),
    )


def point_in_bounds(point: Point, bounds: Bounds) -> bool:
    if not bounds.south <= point.latitude <= bounds.north:
        return False
    if bounds.crosses_antimeridian:
        return point.longitude >= bounds.west or point.longitude <= bounds.east
    return bounds.west <= point.longitude <= bounds.east


def point_in_circle(point: Point, center: Point, radius_m: float) -> bool:
    return distance(point, center) <= radius_m
