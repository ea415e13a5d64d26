"""
Emergency alerts.

Builds the outbound CoT emergency event (`b-a-o-*`) for a location given as coordinates or an
entity id, and lists nearby units that should be notified. Nearby units are found with the
spatial engine's great-circle distance, never a flat-earth shortcut.

This module only builds descriptors; delivery is the wire client's job.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from cotwatch.config.settings import AlertSettings
from cotwatch.core.time import utcnow
from cotwatch.domain.models import EmergencyAlert, EmergencyRequest, EntityFilter, GeoPoint, NearbyUnit
from cotwatch.spatial.query import SpatialQueryEngine

logger = logging.getLogger(__name__)

EMERGENCY_KINDS: dict[str, str] = {
    "911": "b-a-o-tbl",
    "panic": "b-a-o-pan",
    "medical": "b-a-o-med",
    "fire": "b-a-o-fir",
    "hostile": "b-a-o-can",
    "breakdown": "b-a-o-veh",
    "custom": "b-a-o-oth",
}


def _outbound(
    *, uid: str, kind: str, request: EmergencyRequest, location: GeoPoint, callsign: str, now: datetime, stale_hours: float
) -> dict[str, Any]:
    return {
        "uid": uid,
        "type": kind,
        "how": "m-g",
        "time": now.isoformat(),
        "start": now.isoformat(),
        "stale": (now + timedelta(hours=stale_hours)).isoformat(),
        "point": {"lat": location.lat, "lon": location.lon, "hae": 0, "ce": 10, "le": 10},
        "detail": {
            "emergency": {"type": request.type, "alert": True, "cancel": False},
            "contact": {"callsign": callsign, "phone": "911"},
            "remarks": request.message,
            "status": {"text": request.message},
            "color": {"value": -65536},
        },
    }


def build_emergency(
    request: EmergencyRequest,
    engine: SpatialQueryEngine,
    *,
    settings: AlertSettings | None = None,
    now: datetime | None = None,
) -> EmergencyAlert:
    cfg = settings or AlertSettings()
    now = now or utcnow()
    point = engine.resolve(request.location)
    location = GeoPoint(lat=point.lat, lon=point.lon)

    callsign = request.callsign
    if not callsign and request.location.entity_id:
        source = engine.store.get(request.location.entity_id)
        callsign = source.callsign if source else None
    callsign = callsign or "EMERGENCY"

    nearby: list[NearbyUnit] = []
    if request.notify_radius_m > 0:
        exclude = [request.location.entity_id] if request.location.entity_id else []
        found = engine.within_radius(location, request.notify_radius_m, EntityFilter(exclude_ids=exclude, now=now))
        nearby = [
            NearbyUnit(id=e.id, callsign=e.callsign, team=e.team, distance_m=round(e.distance_m or 0.0))
            for e in found.results
        ]

    uid = f"emergency-{uuid.uuid4()}"
    kind = EMERGENCY_KINDS.get(request.type, "b-a-o-oth")
    logger.warning("EMERGENCY ALERT: %s - %s at (%.5f, %.5f)", request.type, request.message, location.lat, location.lon)
    return EmergencyAlert(
        id=uid,
        type=request.type,
        kind=kind,
        message=request.message,
        severity=request.severity,
        location=location,
        created_at=now,
        notified_units=len(nearby),
        nearby_units=nearby[: cfg.emergency_max_listed_units],
        outbound=_outbound(
            uid=uid,
            kind=kind,
            request=request,
            location=location,
            callsign=callsign,
            now=now,
            stale_hours=cfg.emergency_stale_hours,
        ),
    )
