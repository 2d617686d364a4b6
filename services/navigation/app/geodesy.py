"""Distance and bearing helpers on a spherical Earth.

Pure functions, no project imports beyond the coordinate type.
"""

from __future__ import annotations

import math
from typing import Sequence

from .route import Coordinate

EARTH_RADIUS_M = 6_371_000.0


def degrees_to_radians(degrees: float) -> float:
    return degrees * math.pi / 180.0


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates using the Haversine formula."""

    lat1 = degrees_to_radians(a.lat)
    lat2 = degrees_to_radians(b.lat)
    dlat = lat2 - lat1
    dlon = degrees_to_radians(b.lon - a.lon)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    # Rounding can push h a hair above 1 for antipodal points.
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Initial bearing from ``a`` to ``b`` in degrees within [0, 360)."""

    lat1 = degrees_to_radians(a.lat)
    lat2 = degrees_to_radians(b.lat)
    dlon = degrees_to_radians(b.lon - a.lon)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(
        dlon
    )
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def distance_to_segment_meters(
    point: Coordinate, seg_start: Coordinate, seg_end: Coordinate
) -> float:
    """Shortest distance from ``point`` to the segment ``seg_start``-``seg_end``.

    The segment is projected onto a local equirectangular plane centred on its
    start, which is accurate for the few-hundred-metre segments a route step is
    made of. The projection parameter is clamped to the segment, and the
    final distance is measured with the Haversine formula between the point
    and its projection.
    """

    lat_a = degrees_to_radians(seg_start.lat)
    lat_b = degrees_to_radians(seg_end.lat)
    cos_lat = math.cos((lat_a + lat_b) / 2)

    x_b = degrees_to_radians(seg_end.lon - seg_start.lon) * cos_lat
    y_b = lat_b - lat_a
    x_p = degrees_to_radians(point.lon - seg_start.lon) * cos_lat
    y_p = degrees_to_radians(point.lat) - lat_a

    length_sq = x_b * x_b + y_b * y_b
    if length_sq == 0:
        return distance_meters(point, seg_start)

    t = (x_p * x_b + y_p * y_b) / length_sq
    t = max(0.0, min(1.0, t))
    projected = Coordinate(
        lat=seg_start.lat + t * (seg_end.lat - seg_start.lat),
        lon=seg_start.lon + t * (seg_end.lon - seg_start.lon),
    )
    return distance_meters(point, projected)


def distance_to_path_meters(point: Coordinate, path: Sequence[Coordinate]) -> float:
    """Nearest distance from ``point`` to a polyline."""

    if not path:
        raise ValueError("path must contain at least one coordinate")
    if len(path) == 1:
        return distance_meters(point, path[0])
    return min(
        distance_to_segment_meters(point, start, end)
        for start, end in zip(path, path[1:])
    )
