"""
Geofence construction, containment, and map-overlay serialization.

- `build_geofence()` validates a `GeofenceRequest` (degenerate shapes are rejected, never
  defaulted), precomputes the rectangle ring, and attaches area/perimeter stats.
- `contains()` dispatches by shape: circles use the same great-circle distance as the spatial
  query engine; polygons and rectangles use ray casting over the stored ring.
- `overlay_descriptor()` renders the geofence as a CoT drawing event a wire client can relay.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta
from typing import Any

from cotwatch.config.settings import GeofenceSettings
from cotwatch.core import geo
from cotwatch.core.geo import GeoPoint as CoreGeoPoint
from cotwatch.core.time import utcnow
from cotwatch.domain.errors import ValidationFailure
from cotwatch.domain.models import (
    CircleShape,
    Geofence,
    GeofenceRequest,
    GeofenceStats,
    GeoPoint,
    PolygonShape,
    RectangleShape,
)

_FILL_COLORS = {
    "critical": "FF0000",
    "high": "FFA500",
    "medium": "FFFF00",
    "low": "00FF00",
}


def _core(p: GeoPoint) -> CoreGeoPoint:
    return CoreGeoPoint(lat=p.lat, lon=p.lon)


def _model(p: CoreGeoPoint) -> GeoPoint:
    return GeoPoint(lat=p.lat, lon=p.lon)


def _validate_shape(shape: CircleShape | PolygonShape | RectangleShape):
    if isinstance(shape, CircleShape):
        if not shape.radius_m > 0:
            raise ValidationFailure("Circle geofence requires radius_m > 0", field="shape.radius_m")
        return shape
    if isinstance(shape, PolygonShape):
        distinct = {(v.lat, v.lon) for v in shape.vertices}
        if len(distinct) < 3:
            raise ValidationFailure(
                "Polygon geofence requires at least 3 distinct vertices", field="shape.vertices"
            )
        return shape
    if not shape.width_m > 0:
        raise ValidationFailure("Rectangle geofence requires width_m > 0", field="shape.width_m")
    if not shape.height_m > 0:
        raise ValidationFailure("Rectangle geofence requires height_m > 0", field="shape.height_m")
    ring = geo.rectangle_ring(_core(shape.center), shape.width_m, shape.height_m)
    return shape.model_copy(update={"ring": [_model(p) for p in ring]})


def _stats(shape: CircleShape | PolygonShape | RectangleShape) -> GeofenceStats:
    if isinstance(shape, CircleShape):
        r = float(shape.radius_m)
        return GeofenceStats(area_m2=round(math.pi * r * r), perimeter_m=round(2 * math.pi * r))
    if isinstance(shape, RectangleShape):
        w, h = float(shape.width_m), float(shape.height_m)
        return GeofenceStats(area_m2=round(w * h), perimeter_m=round(2 * (w + h)))
    ring = geo.close_ring([_core(v) for v in shape.vertices])
    return GeofenceStats(area_m2=round(geo.polygon_area_m2(ring)), perimeter_m=round(geo.path_length_m(ring)))


def build_geofence(request: GeofenceRequest, *, now: datetime | None = None) -> Geofence:
    """Validate `request` and return a ready-to-evaluate `Geofence`."""
    shape = _validate_shape(request.shape)
    patterns = [p.strip() for p in request.monitored_kind_patterns if p and p.strip()]
    if not patterns:
        raise ValidationFailure("monitored_kind_patterns must not be empty", field="monitored_kind_patterns")
    return Geofence(
        id=f"geofence-{uuid.uuid4()}",
        name=request.name,
        shape=shape,
        monitored_kind_patterns=patterns,
        triggers=request.triggers,
        severity=request.severity,
        active=request.active,
        created_at=now or utcnow(),
        stats=_stats(shape),
    )


def ring_of(geofence: Geofence) -> list[CoreGeoPoint] | None:
    """Closed containment ring for polygon/rectangle fences (None for circles)."""
    shape = geofence.shape
    if isinstance(shape, PolygonShape):
        return geo.close_ring([_core(v) for v in shape.vertices])
    if isinstance(shape, RectangleShape):
        return [_core(v) for v in shape.ring]
    return None


def contains(geofence: Geofence, point: CoreGeoPoint) -> bool:
    shape = geofence.shape
    if isinstance(shape, CircleShape):
        return geo.haversine_m(_core(shape.center), point) <= shape.radius_m
    ring = ring_of(geofence)
    return geo.point_in_polygon(point, ring or [])


def center_of(geofence: Geofence) -> CoreGeoPoint:
    shape = geofence.shape
    if isinstance(shape, (CircleShape, RectangleShape)):
        return _core(shape.center)
    return geo.centroid([_core(v) for v in shape.vertices])


def overlay_descriptor(
    geofence: Geofence, *, now: datetime | None = None, settings: GeofenceSettings | None = None
) -> dict[str, Any]:
    """Serialize `geofence` as a CoT drawing event (`u-d-f`) for relay as a map overlay."""
    cfg = settings or GeofenceSettings()
    now = now or utcnow()
    shape = geofence.shape
    if isinstance(shape, CircleShape):
        ring = geo.circle_polygon(_core(shape.center), shape.radius_m, steps=cfg.overlay_circle_steps)
    else:
        ring = ring_of(geofence) or []
    center = center_of(geofence)

    return {
        "uid": geofence.id,
        "type": "u-d-f",
        "how": "m-g",
        "time": now.isoformat(),
        "start": now.isoformat(),
        "stale": (now + timedelta(hours=cfg.overlay_stale_hours)).isoformat(),
        "point": {"lat": center.lat, "lon": center.lon, "hae": 0, "ce": 10, "le": 10},
        "detail": {
            "shape": {
                "type": "Polygon",
                "coordinates": [[[p.lon, p.lat] for p in ring]],
            },
            "fillColor": _FILL_COLORS[geofence.severity],
            "strokeColor": "000000",
            "strokeWidth": 2,
            "labels_on": geofence.name,
            "remarks": f"Geofence: {geofence.name}",
            "contact": {"callsign": geofence.name},
        },
    }
