"""geo.py – distance, bearing and reciprocity tests over lat/lon pairs.

Pure math; the only canonical copy of these helpers in the package.
"""

from __future__ import annotations

from math import atan2, cos, degrees, radians, sin, sqrt
from typing import Optional, Tuple

from .models import Coordinates, Measurement

Coord = Tuple[float, float]              # (lat, lon) helper alias
EARTH_R = 6371000                        # metres

FLOAT_TOLERANCE = 0.01                   # absolute, for near-zero distances / heights
DISTANCE_TOLERANCE_PERCENT = 0.05        # 5 % relative
ANGLE_TOLERANCE_DEGREES = 5.0
DIRECTION_MATCH_THRESHOLD = 0.8

COORD_PRECISION = 5                      # ~1.1 m
COORD_SCALE = 100000                     # degrees → 1e-5 degree units


def _as_coord(point: Coordinates | Coord) -> Coord:
    if isinstance(point, Coordinates):
        return point.as_tuple()
    return point


def haversine_m(p1: Coordinates | Coord, p2: Coordinates | Coord) -> float:
    """Great-circle distance between two points in metres."""
    lat1, lon1 = map(radians, _as_coord(p1))
    lat2, lon2 = map(radians, _as_coord(p2))
    dlat, dlon = lat2 - lat1, lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_R * atan2(sqrt(a), sqrt(1 - a))


def squared_coordinate_distance(p1: Coordinates | Coord, p2: Coordinates | Coord) -> float:
    """Cheap squared lat/lon delta used for pole-level KMZ matching.

    Coordinates are rounded to 5 decimal places to damp float noise and the
    deltas are scaled to 1e-5 degree units, so 5000 is roughly 70 units
    (~75 m) of separation.
    """
    lat1, lon1 = (round(v, COORD_PRECISION) for v in _as_coord(p1))
    lat2, lon2 = (round(v, COORD_PRECISION) for v in _as_coord(p2))
    lat_diff = abs(lat1 - lat2) * COORD_SCALE
    lon_diff = abs(lon1 - lon2) * COORD_SCALE
    return lat_diff * lat_diff + lon_diff * lon_diff


def bearing_degrees(start: Coordinates | Coord, end: Coordinates | Coord) -> float:
    """Initial bearing from *start* to *end*, 0 = north, clockwise, [0, 360)."""
    lat1, lon1 = map(radians, _as_coord(start))
    lat2, lon2 = map(radians, _as_coord(end))
    y = sin(lon2 - lon1) * cos(lat2)
    x = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(lon2 - lon1)
    return (degrees(atan2(y, x)) + 360) % 360


def direction_similarity(bearing1: float, bearing2: float) -> float:
    """1.0 for identical bearings, 0.0 for opposite ones."""
    diff = abs(bearing1 - bearing2) % 360
    if diff > 180:
        diff = 360 - diff
    return 1 - diff / 180


def is_point_along_direction(origin: Coordinates | None, target: Coordinates | None,
                             point: Coordinates | None) -> Tuple[bool, float]:
    """Is *point* roughly on the heading from *origin* towards *target*?"""
    if origin is None or target is None or point is None:
        return False, 0.0
    similarity = direction_similarity(bearing_degrees(origin, target), bearing_degrees(origin, point))
    return similarity >= DIRECTION_MATCH_THRESHOLD, similarity


def midpoint(p1: Coordinates, p2: Coordinates) -> Coordinates:
    """Arithmetic mean of two coordinates (fine at span lengths)."""
    return Coordinates(
        latitude=(p1.latitude + p2.latitude) / 2,
        longitude=(p1.longitude + p2.longitude) / 2,
    )


def are_angles_opposite(angle1: float, angle2: float,
                        tolerance: float = ANGLE_TOLERANCE_DEGREES) -> bool:
    """True when two bearings point ~180° apart, handling the 0/360 wrap."""
    diff = abs(angle1 - angle2) % 360
    wrapped = min(diff, 360 - diff)
    return abs(wrapped - 180) <= tolerance


def are_distances_close(dist1: Optional[Measurement], dist2: Optional[Measurement],
                        tolerance_percent: float = DISTANCE_TOLERANCE_PERCENT) -> bool:
    """Relative distance comparison; differing units cannot be compared."""
    if dist1 is None or dist2 is None or dist1.unit != dist2.unit:
        return False
    diff = abs(dist1.value - dist2.value)
    average = (dist1.value + dist2.value) / 2
    if average < FLOAT_TOLERANCE:
        return diff < FLOAT_TOLERANCE
    return diff / average <= tolerance_percent
