"""Great-circle distance, bearing and point-to-segment distance."""

import math
from typing import Sequence

from shapely.geometry import LineString, Point

from ridenav.core.models import Coordinate

EARTH_RADIUS_M = 6_371_000.0


def distance_m(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters."""
    dlat = math.radians(b.lat - a.lat)
    dlon = math.radians(b.lon - a.lon)
    h = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(min(1.0, h)))


def bearing_deg(origin: Coordinate, target: Coordinate) -> float:
    """Initial bearing from origin to target in degrees [0, 360)."""
    lat1, lat2 = math.radians(origin.lat), math.radians(target.lat)
    dlon = math.radians(target.lon - origin.lon)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return math.degrees(math.atan2(y, x)) % 360.0


def point_to_segment_distance_m(p: Coordinate, seg_start: Coordinate, seg_end: Coordinate) -> float:
    """Distance from p to the segment, in meters.

    The foot point is found by planar projection in lat/lon space (fine at
    the scale of one polyline segment); the distance to it is geodesic.
    """
    if seg_start == seg_end:
        return distance_m(p, seg_start)
    # Shapely uses (x, y) = (lon, lat)
    segment = LineString([(seg_start.lon, seg_start.lat), (seg_end.lon, seg_end.lat)])
    foot = segment.interpolate(segment.project(Point(p.lon, p.lat)))
    return distance_m(p, Coordinate(foot.y, foot.x))


def min_distance_to_polyline_m(p: Coordinate, polyline: Sequence[Coordinate]) -> float:
    """Smallest segment distance from p to the polyline (inf when empty)."""
    if not polyline:
        return math.inf
    if len(polyline) == 1:
        return distance_m(p, polyline[0])
    best = math.inf
    for i in range(len(polyline) - 1):
        d = point_to_segment_distance_m(p, polyline[i], polyline[i + 1])
        if d < best:
            best = d
    return best


def polyline_length_m(polyline: Sequence[Coordinate]) -> float:
    total = 0.0
    for i in range(1, len(polyline)):
        total += distance_m(polyline[i - 1], polyline[i])
    return total
