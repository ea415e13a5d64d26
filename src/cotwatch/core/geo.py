"""
Geospatial helpers.

We keep a small spherical-earth geometry layer here so every component measures distance
the same way (no mixing of approximation methods between a filter test and a reported value):
- distance / bearing / destination point / midpoint on a sphere
- polygon containment (even-odd ray casting), centroid, bounding box
- circle and north-aligned rectangle construction
- unit conversion from meters

Coordinates are decimal degrees; rings are sequences of `GeoPoint`.
"""

from __future__ import annotations

from dataclasses import dataclass
from math import asin, atan2, cos, degrees, radians, sin, sqrt
from typing import Iterable, Literal, Sequence

EARTH_RADIUS_M = 6_371_008.8

DistanceUnits = Literal["meters", "kilometers", "miles", "nauticalmiles"]

_UNIT_FACTORS: dict[str, float] = {
    "meters": 1.0,
    "kilometers": 0.001,
    "miles": 0.000621371,
    "nauticalmiles": 0.000539957,
}

_COMPASS_POINTS = (
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
)


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


BBox = tuple[float, float, float, float]


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(min(1.0, sqrt(h)))


def initial_bearing_deg(a: GeoPoint, b: GeoPoint) -> float:
    """Forward azimuth from `a` to `b` in degrees, normalized to [0, 360)."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlon = radians(b.lon - a.lon)

    y = sin(dlon) * cos(lat2)
    x = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlon)
    return (degrees(atan2(y, x)) + 360.0) % 360.0


def back_bearing_deg(bearing: float) -> float:
    return (float(bearing) + 180.0) % 360.0


def destination_point(origin: GeoPoint, distance_m: float, bearing_deg: float) -> GeoPoint:
    """Project `distance_m` from `origin` along `bearing_deg` (spherical direct problem)."""
    delta = float(distance_m) / EARTH_RADIUS_M
    theta = radians(bearing_deg)
    lat1 = radians(origin.lat)
    lon1 = radians(origin.lon)

    lat2 = asin(sin(lat1) * cos(delta) + cos(lat1) * sin(delta) * cos(theta))
    lon2 = lon1 + atan2(sin(theta) * sin(delta) * cos(lat1), cos(delta) - sin(lat1) * sin(lat2))
    lon_deg = (degrees(lon2) + 540.0) % 360.0 - 180.0
    return GeoPoint(lat=degrees(lat2), lon=lon_deg)


def midpoint(a: GeoPoint, b: GeoPoint) -> GeoPoint:
    """Great-circle midpoint between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    dlon = radians(b.lon - a.lon)

    bx = cos(lat2) * cos(dlon)
    by = cos(lat2) * sin(dlon)
    lat_m = atan2(sin(lat1) + sin(lat2), sqrt((cos(lat1) + bx) ** 2 + by**2))
    lon_m = lon1 + atan2(by, cos(lat1) + bx)
    return GeoPoint(lat=degrees(lat_m), lon=(degrees(lon_m) + 540.0) % 360.0 - 180.0)


def close_ring(vertices: Sequence[GeoPoint]) -> list[GeoPoint]:
    """Return `vertices` as a closed ring (first vertex repeated at the end)."""
    ring = list(vertices)
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def _open_ring(vertices: Sequence[GeoPoint]) -> list[GeoPoint]:
    ring = list(vertices)
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    return ring


def _on_segment(p: GeoPoint, a: GeoPoint, b: GeoPoint, eps: float = 1e-12) -> bool:
    cross = (b.lon - a.lon) * (p.lat - a.lat) - (b.lat - a.lat) * (p.lon - a.lon)
    if abs(cross) > eps:
        return False
    return (
        min(a.lon, b.lon) - eps <= p.lon <= max(a.lon, b.lon) + eps
        and min(a.lat, b.lat) - eps <= p.lat <= max(a.lat, b.lat) + eps
    )


def point_in_polygon(point: GeoPoint, ring: Sequence[GeoPoint]) -> bool:
    """Even-odd ray casting in lon/lat space; boundary points count as inside.

    Accepts an open or closed ring.
    """
    closed = close_ring(ring)
    if len(closed) < 4:
        return False

    inside = False
    for a, b in zip(closed, closed[1:]):
        if _on_segment(point, a, b):
            return True
        if (a.lat > point.lat) != (b.lat > point.lat):
            x_cross = a.lon + (point.lat - a.lat) * (b.lon - a.lon) / (b.lat - a.lat)
            if point.lon < x_cross:
                inside = not inside
    return inside


def centroid(points: Sequence[GeoPoint]) -> GeoPoint:
    """Vertex mean (the closing duplicate of a ring is ignored)."""
    pts = _open_ring(points)
    if not pts:
        raise ValueError("centroid requires at least one point")
    return GeoPoint(
        lat=sum(p.lat for p in pts) / len(pts),
        lon=sum(p.lon for p in pts) / len(pts),
    )


def bbox(points: Iterable[GeoPoint]) -> BBox | None:
    """Return `(min_lon, min_lat, max_lon, max_lat)`, or None for no points."""
    pts = list(points)
    if not pts:
        return None
    lons = [p.lon for p in pts]
    lats = [p.lat for p in pts]
    return (min(lons), min(lats), max(lons), max(lats))


def in_bbox(point: GeoPoint, box: BBox) -> bool:
    min_lon, min_lat, max_lon, max_lat = box
    return min_lon <= point.lon <= max_lon and min_lat <= point.lat <= max_lat


def circle_polygon(center: GeoPoint, radius_m: float, steps: int = 64) -> list[GeoPoint]:
    """Closed ring approximating a circle (used for map overlays, not containment)."""
    ring = [destination_point(center, radius_m, i * 360.0 / steps) for i in range(steps)]
    return close_ring(ring)


def rectangle_ring(center: GeoPoint, width_m: float, height_m: float) -> list[GeoPoint]:
    """North-aligned rectangle corners around `center` as a closed ring.

    Corners are derived in the local tangent frame: move north/south by half the height,
    then east/west by half the width.
    """
    half_w = float(width_m) / 2
    half_h = float(height_m) / 2
    north = destination_point(center, half_h, 0.0)
    south = destination_point(center, half_h, 180.0)

    top_left = destination_point(north, half_w, 270.0)
    top_right = destination_point(north, half_w, 90.0)
    bottom_right = destination_point(south, half_w, 90.0)
    bottom_left = destination_point(south, half_w, 270.0)
    return [top_left, top_right, bottom_right, bottom_left, top_left]


def path_length_m(points: Sequence[GeoPoint]) -> float:
    return sum(haversine_m(a, b) for a, b in zip(points, points[1:]))


def polygon_area_m2(ring: Sequence[GeoPoint]) -> float:
    """Approximate area of a simple polygon on the sphere (spherical excess)."""
    closed = close_ring(ring)
    if len(closed) < 4:
        return 0.0
    total = 0.0
    for a, b in zip(closed, closed[1:]):
        lon1 = radians(a.lon)
        lon2 = radians(b.lon)
        lat1 = radians(a.lat)
        lat2 = radians(b.lat)
        total += (lon2 - lon1) * (2 + sin(lat1) + sin(lat2))
    return abs(total * EARTH_RADIUS_M**2 / 2.0)


def convert_distance(meters: float, units: str = "meters") -> float:
    """Convert meters into `units` (linear factors)."""
    try:
        factor = _UNIT_FACTORS[units]
    except KeyError as e:
        raise ValueError(f"Unsupported distance units: {units!r}") from e
    return float(meters) * factor


def compass_direction(bearing: float) -> str:
    """Map a bearing in degrees onto one of 16 compass points."""
    index = round(((float(bearing) % 360.0) + 360.0) % 360.0 / 22.5)
    return _COMPASS_POINTS[index % 16]


def normalize_heading_delta(delta: float) -> float:
    """Normalize a heading change into (-180, 180]."""
    d = float(delta) % 360.0
    if d > 180.0:
        d -= 360.0
    return d


def is_valid_coordinate(lat: float, lon: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

