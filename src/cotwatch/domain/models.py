"""
Domain models (Pydantic).

These types are the stable "contract" between layers:
- canonical observations (`PositionReport`) produced by the normalizer
- query inputs (`EntityFilter`, `PointRef`) and enriched query outputs
- geofence definitions, transitions and alerts
- movement analysis reports

Keeping these models in one place helps:
- validation (reject bad inputs early),
- typed refactors,
- consistent JSON output across CLI/API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cotwatch.domain.kinds import Affiliation, BattleDomain, affiliation_of, domain_of

Severity = Literal["low", "medium", "high", "critical"]
Transition = Literal["entry", "exit", "dwell"]
AnalysisType = Literal["speed", "pattern", "stops", "anomaly"]


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Freeform(BaseModel):
    """Typed view of the open-ended CoT `<detail>` bag.

    Known fields are modelled explicitly; anything unrecognized is preserved in `extra`.
    """

    model_config = ConfigDict(frozen=True)

    battery: float | None = None
    heading: float | None = None
    speed: float | None = None
    readiness: bool | None = None
    endpoint: str | None = None
    device: str | None = None
    platform: str | None = None
    os: str | None = None
    version: str | None = None
    remarks: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class PositionReport(BaseModel):
    """One observation of one entity at one instant."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: str = Field(..., min_length=1)
    observed_at: datetime
    valid_until: datetime
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    altitude: float | None = None
    position_error_radius: float | None = None
    position_error_linear: float | None = None
    callsign: str | None = None
    team: str | None = None
    role: str | None = None
    how: str | None = None
    freeform: Freeform = Field(default_factory=Freeform)

    @model_validator(mode="after")
    def _validate_validity_window(self) -> "PositionReport":
        if self.valid_until < self.observed_at:
            raise ValueError("valid_until must not be earlier than observed_at")
        return self

    @property
    def affiliation(self) -> Affiliation:
        return affiliation_of(self.kind)

    @property
    def domain(self) -> BattleDomain:
        return domain_of(self.kind)

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lon=self.lon)

    def is_stale(self, now: datetime) -> bool:
        return now > self.valid_until


class EntityFilter(BaseModel):
    """Conjunctive filter over current entity state."""

    kind_patterns: list[str] = Field(default_factory=list)
    teams: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    bbox: tuple[float, float, float, float] | None = None
    include_stale: bool = False
    staleness_window_seconds: float | None = Field(default=None, ge=0)
    exclude_ids: list[str] = Field(default_factory=list)
    now: datetime | None = None


class PointRef(BaseModel):
    """A reference point given either as an entity id or as `[lat, lon]` coordinates."""

    entity_id: str | None = None
    coordinates: tuple[float, float] | None = None


# -- Spatial query outputs -----------------------------------------------------------------


class EnrichedEntity(BaseModel):
    id: str
    kind: str
    callsign: str | None = None
    team: str | None = None
    role: str | None = None
    lat: float
    lon: float
    altitude: float | None = None
    observed_at: datetime
    valid_until: datetime
    stale: bool = False
    distance_m: float | None = None
    bearing_deg: float | None = None
    compass: str | None = None
    mgrs: str | None = None
    h3_index: str | None = None
    freeform: Freeform = Field(default_factory=Freeform)


class KindCount(BaseModel):
    kind: str
    count: int
    description: str | None = None


class QuerySummary(BaseModel):
    by_kind: list[KindCount] = Field(default_factory=list)
    bounds: tuple[float, float, float, float] | None = None
    earliest: datetime | None = None
    latest: datetime | None = None


class SpatialQueryResult(BaseModel):
    total_count: int
    results: list[EnrichedEntity]
    summary: QuerySummary


class NearestStats(BaseModel):
    total_entities: int
    filtered_entities: int
    results_returned: int
    nearest_m: float | None = None
    farthest_m: float | None = None
    average_m: float | None = None


class NearestResult(BaseModel):
    reference: PointRef
    reference_point: GeoPoint
    results: list[EnrichedEntity]
    stats: NearestStats


class TravelTime(BaseModel):
    walking: int
    vehicle: int
    helicopter: int
    units: Literal["minutes"] = "minutes"


class DistanceResult(BaseModel):
    from_point: GeoPoint
    to_point: GeoPoint
    from_entity_id: str | None = None
    to_entity_id: str | None = None
    distance: float
    distance_m: float
    units: str
    bearing_deg: float
    back_bearing_deg: float
    compass: str
    midpoint: GeoPoint
    estimated_travel: TravelTime


class BatchDistanceItem(BaseModel):
    to: PointRef
    to_point: GeoPoint | None = None
    distance: float | None = None
    bearing_deg: float | None = None
    error: Literal["not_found", "validation"] | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchDistanceResult(BaseModel):
    from_point: GeoPoint
    units: str
    distances: list[BatchDistanceItem]
    nearest: BatchDistanceItem | None = None
    farthest: BatchDistanceItem | None = None
    total: int
    successful: int


# -- Geofences -----------------------------------------------------------------------------


class CircleShape(BaseModel):
    type: Literal["circle"] = "circle"
    center: GeoPoint
    radius_m: float


class PolygonShape(BaseModel):
    type: Literal["polygon"] = "polygon"
    vertices: list[GeoPoint]


class RectangleShape(BaseModel):
    type: Literal["rectangle"] = "rectangle"
    center: GeoPoint
    width_m: float
    height_m: float
    # Closed 4-corner ring computed once at creation time.
    ring: list[GeoPoint] = Field(default_factory=list)


Shape = Annotated[Union[CircleShape, PolygonShape, RectangleShape], Field(discriminator="type")]


class DwellTrigger(BaseModel):
    enabled: bool = False
    threshold_seconds: float = Field(300, gt=0)


class GeofenceTriggers(BaseModel):
    on_entry: bool = True
    on_exit: bool = True
    on_dwell: DwellTrigger = Field(default_factory=DwellTrigger)


class GeofenceRequest(BaseModel):
    """User input for creating a geofence."""

    name: str = Field(..., min_length=1)
    shape: Shape
    monitored_kind_patterns: list[str] = Field(default_factory=lambda: ["a-*"])
    triggers: GeofenceTriggers = Field(default_factory=GeofenceTriggers)
    severity: Severity = "medium"
    active: bool = True


class GeofenceStats(BaseModel):
    area_m2: float
    perimeter_m: float


class Geofence(BaseModel):
    id: str
    name: str
    shape: Shape
    monitored_kind_patterns: list[str]
    triggers: GeofenceTriggers
    severity: Severity
    active: bool = True
    created_at: datetime
    stats: GeofenceStats


class GeofenceAlert(BaseModel):
    id: str
    geofence_id: str
    geofence_name: str
    entity_id: str
    entity_kind: str
    callsign: str | None = None
    transition: Transition
    severity: Severity
    at: datetime
    location: GeoPoint
    dwell_seconds: float | None = None
    acknowledged: bool = False


class GeofenceCreated(BaseModel):
    geofence: Geofence
    overlay: dict[str, Any]


# -- Emergency alerts ----------------------------------------------------------------------

EmergencyType = Literal["911", "panic", "medical", "fire", "hostile", "breakdown", "custom"]


class EmergencyRequest(BaseModel):
    type: EmergencyType
    message: str
    location: PointRef
    callsign: str | None = None
    severity: Literal["critical", "high"] = "critical"
    notify_radius_m: float = Field(5000, ge=0)


class NearbyUnit(BaseModel):
    id: str
    callsign: str | None = None
    team: str | None = None
    distance_m: float


class EmergencyAlert(BaseModel):
    id: str
    type: EmergencyType
    kind: str
    message: str
    severity: Literal["critical", "high"]
    location: GeoPoint
    created_at: datetime
    notified_units: int
    nearby_units: list[NearbyUnit]
    outbound: dict[str, Any]


# -- Movement analysis ---------------------------------------------------------------------


class SpeedAnalysis(BaseModel):
    average_mps: float
    min_mps: float
    max_mps: float
    average_kmh: float
    min_kmh: float
    max_kmh: float
    total_distance_m: float
    segments: int


class PatternAnalysis(BaseModel):
    movement_type: Literal["circular", "linear"]
    total_heading_change_deg: float
    path_length_m: float
    bbox: tuple[float, float, float, float] | None


class Stop(BaseModel):
    center: GeoPoint
    start: datetime
    end: datetime
    duration_s: float
    points: int


class StopAnalysis(BaseModel):
    stops: list[Stop]
    total_stops: int
    total_stop_time_s: float


class Anomaly(BaseModel):
    type: Literal["speed"] = "speed"
    at: datetime
    location: GeoPoint
    value_mps: float
    threshold_mps: float


class AnomalyAnalysis(BaseModel):
    anomalies: list[Anomaly]
    total_anomalies: int


class MovementAnalysis(BaseModel):
    entity_id: str
    data_points: int
    insufficient_data: bool = False
    window_start: datetime | None = None
    window_end: datetime | None = None
    speed: SpeedAnalysis | None = None
    pattern: PatternAnalysis | None = None
    stops: StopAnalysis | None = None
    anomaly: AnomalyAnalysis | None = None
