"""
API routes.

Endpoints:
- GET  `/api/entities`: current entity state (filterable) + summary.
- POST `/api/entities/ingest`: push decoded CoT events through the engine.
- POST `/api/spatial/{radius,polygon,nearest,distance,distance/batch}`: spatial queries.
- POST/GET `/api/geofences`, DELETE `/api/geofences/{id}`: geofence management.
- GET  `/api/alerts`, POST `/api/alerts/{id}/ack`: alert log.
- POST `/api/emergency`: build an emergency alert + outbound descriptor.
- POST `/api/movement/analyze`: movement analysis over an entity's track history.

Error mapping:
- `ValidationFailure` / `ValueError` -> 400 `{"code": "VALIDATION_ERROR", ...}`
- `EntityNotFound` / `AlertNotFound` -> 404 `{"code": "NOT_FOUND", ...}`
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any, Iterator

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from cotwatch.config.settings import get_settings
from cotwatch.core.time import ensure_tz
from cotwatch.domain.errors import AlertNotFound, EntityNotFound, ValidationFailure
from cotwatch.domain.models import (
    AnalysisType,
    BatchDistanceResult,
    DistanceResult,
    EmergencyAlert,
    EmergencyRequest,
    EntityFilter,
    GeofenceAlert,
    GeofenceCreated,
    GeofenceRequest,
    GeoPoint,
    MovementAnalysis,
    NearestResult,
    PointRef,
    Severity,
    SpatialQueryResult,
    Transition,
)
from cotwatch.spatial.summary import summarize_entities
from cotwatch.state.context import EngineContext

router = APIRouter()


@lru_cache
def _engine() -> EngineContext:
    return EngineContext(get_settings())


@contextmanager
def _api_errors() -> Iterator[None]:
    """Translate engine failures into HTTP errors with a stable `code`."""
    try:
        yield
    except ValidationFailure as e:
        raise HTTPException(status_code=400, detail=e.as_dict()) from e
    except (EntityNotFound, AlertNotFound) as e:
        raise HTTPException(status_code=404, detail=e.as_dict()) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(e)}) from e


def _split(value: str | None) -> list[str]:
    return [s.strip() for s in (value or "").split(",") if s.strip()]


def _localize(filters: EntityFilter, timezone: str) -> EntityFilter:
    """Attach the app timezone to a naive `filters.now`."""
    if filters.now is None or filters.now.tzinfo is not None:
        return filters
    return filters.model_copy(update={"now": ensure_tz(filters.now, timezone)})


# -- request bodies ----------------------------------------------------------------------


class IngestRequest(BaseModel):
    events: list[dict[str, Any]]


class RadiusQuery(BaseModel):
    center: GeoPoint
    radius_m: float | None = None
    filters: EntityFilter = Field(default_factory=EntityFilter)


class PolygonQuery(BaseModel):
    vertices: list[GeoPoint]
    filters: EntityFilter = Field(default_factory=EntityFilter)


class NearestQuery(BaseModel):
    reference: PointRef
    max_results: int | None = None
    max_distance_m: float | None = None
    filters: EntityFilter = Field(default_factory=EntityFilter)


class DistanceQuery(BaseModel):
    origin: PointRef
    destination: PointRef
    units: str = "meters"


class BatchDistanceQuery(BaseModel):
    origin: PointRef
    destinations: list[PointRef] = Field(..., min_length=1)
    units: str = "meters"


class MovementQuery(BaseModel):
    entity_id: str
    start: datetime | None = None
    end: datetime | None = None
    analysis_types: list[AnalysisType] | None = None
    anomaly_threshold: float | None = None


# -- entities ----------------------------------------------------------------------------


@router.get("/api/entities")
def get_entities(
    kind: str | None = None,
    team: str | None = None,
    role: str | None = None,
    include_stale: bool = False,
) -> dict:
    """Return current entity state, filtered by kind patterns / team / role (comma-separated)."""
    engine = _engine()
    filters = EntityFilter(
        kind_patterns=_split(kind),
        teams=_split(team),
        roles=_split(role),
        include_stale=include_stale,
    )
    reports = sorted(engine.store.query(filters), key=lambda r: r.id)
    return {
        "count": len(reports),
        "entities": [r.model_dump(mode="json") for r in reports],
        "summary": summarize_entities(reports, now=engine.now()).model_dump(mode="json"),
    }


@router.post("/api/entities/ingest")
def post_ingest(body: IngestRequest) -> dict:
    """Normalize and ingest decoded CoT events; malformed events are reported per index."""
    return _engine().ingest_many(body.events).as_dict()


# -- spatial -----------------------------------------------------------------------------


@router.post("/api/spatial/radius", response_model=SpatialQueryResult)
def post_radius(body: RadiusQuery) -> SpatialQueryResult:
    engine = _engine()
    radius = body.radius_m if body.radius_m is not None else engine.settings.spatial.default_radius_m
    with _api_errors():
        return engine.spatial.within_radius(
            body.center, radius, _localize(body.filters, engine.settings.app.timezone)
        )


@router.post("/api/spatial/polygon", response_model=SpatialQueryResult)
def post_polygon(body: PolygonQuery) -> SpatialQueryResult:
    engine = _engine()
    filters = _localize(body.filters, engine.settings.app.timezone)
    with _api_errors():
        return engine.spatial.within_polygon(body.vertices, filters)


@router.post("/api/spatial/nearest", response_model=NearestResult)
def post_nearest(body: NearestQuery) -> NearestResult:
    engine = _engine()
    with _api_errors():
        return engine.spatial.nearest(
            body.reference,
            max_results=body.max_results,
            max_distance_m=body.max_distance_m,
            filters=_localize(body.filters, engine.settings.app.timezone),
        )


@router.post("/api/spatial/distance", response_model=DistanceResult)
def post_distance(body: DistanceQuery) -> DistanceResult:
    with _api_errors():
        return _engine().spatial.distance_between(body.origin, body.destination, units=body.units)


@router.post("/api/spatial/distance/batch", response_model=BatchDistanceResult)
def post_distance_batch(body: BatchDistanceQuery) -> BatchDistanceResult:
    with _api_errors():
        return _engine().spatial.distance_batch(body.origin, body.destinations, units=body.units)


# -- geofences ---------------------------------------------------------------------------


@router.post("/api/geofences", response_model=GeofenceCreated)
def post_geofence(body: GeofenceRequest) -> GeofenceCreated:
    """Create a geofence; the response carries the map overlay descriptor to relay."""
    with _api_errors():
        return _engine().create_geofence(body)


@router.get("/api/geofences")
def get_geofences() -> dict:
    engine = _engine()
    fences = engine.geofences.fences()
    return {
        "count": len(fences),
        "geofences": [
            {**g.model_dump(mode="json"), "occupants": engine.geofences.occupants(g.id)} for g in fences
        ],
    }


@router.delete("/api/geofences/{geofence_id}")
def delete_geofence(geofence_id: str) -> dict:
    if not _engine().delete_geofence(geofence_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "NOT_FOUND", "message": f"Geofence {geofence_id} not found", "geofence_id": geofence_id},
        )
    return {"deleted": geofence_id}


# -- alerts ------------------------------------------------------------------------------


@router.get("/api/alerts")
def get_alerts(
    severity: str | None = None,
    transition: Transition | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    acknowledged: bool | None = None,
    limit: int = 100,
) -> dict:
    """Return logged geofence alerts (newest first) with stats over the filtered set."""
    engine = _engine()
    tz = engine.settings.app.timezone
    severities: list[Severity] = [s for s in _split(severity) if s in ("low", "medium", "high", "critical")]
    alerts = engine.alerts.query(
        severities=severities or None,
        transition=transition,
        since=ensure_tz(since, tz) if since else None,
        until=ensure_tz(until, tz) if until else None,
        acknowledged=acknowledged,
    )
    limit = max(1, min(1000, int(limit)))
    return {
        "count": len(alerts),
        "alerts": [a.model_dump(mode="json") for a in alerts[:limit]],
        "stats": engine.alerts.stats(alerts).as_dict(),
    }


@router.post("/api/alerts/{alert_id}/ack", response_model=GeofenceAlert)
def post_alert_ack(alert_id: str) -> GeofenceAlert:
    with _api_errors():
        return _engine().alerts.acknowledge(alert_id)


@router.post("/api/emergency", response_model=EmergencyAlert)
def post_emergency(body: EmergencyRequest) -> EmergencyAlert:
    with _api_errors():
        return _engine().emergency(body)


# -- analysis ----------------------------------------------------------------------------


@router.post("/api/movement/analyze", response_model=MovementAnalysis)
def post_movement_analyze(body: MovementQuery) -> MovementAnalysis:
    with _api_errors():
        return _engine().analyze_entity(
            body.entity_id,
            start=body.start,
            end=body.end,
            analysis_types=body.analysis_types,
            anomaly_threshold=body.anomaly_threshold,
        )
