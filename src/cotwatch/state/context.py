"""
Engine context.

One explicit object that owns every piece of mutable engine state:
- entity state store (latest report per entity)
- track history buffer (every accepted report, for movement analysis)
- geofence evaluator (geofences + per-pair containment state)
- alert log

Callers (API, CLI, feed pump) build one `EngineContext` from `Settings` and pass it around.
There is no module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping

from cotwatch.alerts.emergency import build_emergency
from cotwatch.alerts.log import AlertLog
from cotwatch.analysis.movement import MovementAnalyzer
from cotwatch.config.settings import Settings, get_settings
from cotwatch.core.time import ensure_tz, utcnow
from cotwatch.domain.errors import EntityNotFound, ValidationFailure
from cotwatch.domain.models import (
    AnalysisType,
    EmergencyAlert,
    EmergencyRequest,
    GeofenceAlert,
    GeofenceCreated,
    GeofenceRequest,
    MovementAnalysis,
    PositionReport,
)
from cotwatch.geofence.evaluator import GeofenceEvaluator
from cotwatch.geofence.shapes import build_geofence, overlay_descriptor
from cotwatch.ingestion.feed import OutboundSink
from cotwatch.ingestion.normalizer import normalize_event
from cotwatch.spatial.query import SpatialQueryEngine
from cotwatch.state.history import TrackHistoryBuffer
from cotwatch.state.store import EntityStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    report: PositionReport
    updated: bool
    alerts: list[GeofenceAlert] = field(default_factory=list)


@dataclass
class IngestSummary:
    accepted: int = 0
    updated: int = 0
    rejected: int = 0
    alerts: list[GeofenceAlert] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "accepted": int(self.accepted),
            "updated": int(self.updated),
            "rejected": int(self.rejected),
            "alerts": [a.model_dump(mode="json") for a in self.alerts],
            "errors": list(self.errors),
        }


class EngineContext:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        sink: OutboundSink | None = None,
    ):
        self.settings = settings or get_settings()
        self._clock = clock
        self._sink = sink
        cfg = self.settings
        self.store = EntityStateStore(
            staleness_window_seconds=cfg.store.staleness_window_seconds,
            max_entities=cfg.store.max_entities,
            clock=clock,
            on_evict=self._forget_entity,
        )
        self.history = TrackHistoryBuffer(max_points_per_entity=cfg.history.max_points_per_entity)
        self.geofences = GeofenceEvaluator()
        self.alerts = AlertLog(max_alerts=cfg.alerts.max_alerts)
        self.spatial = SpatialQueryEngine(self.store, cfg.spatial)
        self.analyzer = MovementAnalyzer(cfg.analysis)

    def now(self) -> datetime:
        return self._clock()

    def _forget_entity(self, entity_id: str) -> None:
        # Evicted from current state: release its track and geofence pair states too.
        self.history.forget(entity_id)
        self.geofences.forget_entity(entity_id)

    def _relay(self, descriptor: Mapping[str, Any]) -> None:
        if self._sink is not None:
            self._sink(descriptor)

    # -- ingestion -----------------------------------------------------------------------

    def normalize(self, raw: Mapping[str, Any]) -> PositionReport:
        return normalize_event(raw, settings=self.settings.normalizer, timezone=self.settings.app.timezone)

    def ingest(self, event: Mapping[str, Any] | PositionReport) -> IngestResult:
        """Normalize (if needed), update current state and history, then evaluate geofences."""
        report = event if isinstance(event, PositionReport) else self.normalize(event)
        updated = self.store.upsert(report)
        self.history.append(report)
        # Every report reaches the evaluator, not only the ones that changed current state.
        alerts = self.geofences.evaluate(report)
        if alerts:
            self.alerts.record_many(alerts)
        return IngestResult(report=report, updated=updated, alerts=alerts)

    def ingest_many(self, events: Iterable[Mapping[str, Any] | PositionReport]) -> IngestSummary:
        """Ingest a batch; malformed events are counted and reported, never fatal."""
        summary = IngestSummary()
        for i, event in enumerate(events):
            try:
                result = self.ingest(event)
            except ValidationFailure as e:
                summary.rejected += 1
                summary.errors.append({"index": i, **e.as_dict()})
                logger.warning("Rejected event #%s: %s", i, e.message)
                continue
            summary.accepted += 1
            summary.updated += int(result.updated)
            summary.alerts.extend(result.alerts)
        return summary

    def sweep(self, *, now: datetime | None = None) -> int:
        """Evict expired entities when `store.sweep_ttl_seconds` is configured."""
        ttl = self.settings.store.sweep_ttl_seconds
        if ttl is None:
            return 0
        return self.store.sweep(ttl_seconds=ttl, now=now)

    # -- geofences -----------------------------------------------------------------------

    def create_geofence(self, request: GeofenceRequest) -> GeofenceCreated:
        if "monitored_kind_patterns" not in request.model_fields_set:
            request = request.model_copy(
                update={"monitored_kind_patterns": list(self.settings.geofence.default_monitored_kinds)}
            )
        now = self.now()
        fence = self.geofences.add(build_geofence(request, now=now))
        overlay = overlay_descriptor(fence, now=now, settings=self.settings.geofence)
        self._relay(overlay)
        return GeofenceCreated(geofence=fence, overlay=overlay)

    def delete_geofence(self, geofence_id: str) -> bool:
        return self.geofences.remove(geofence_id)

    # -- alerts --------------------------------------------------------------------------

    def emergency(self, request: EmergencyRequest) -> EmergencyAlert:
        alert = build_emergency(request, self.spatial, settings=self.settings.alerts, now=self.now())
        self._relay(alert.outbound)
        return alert

    # -- analysis ------------------------------------------------------------------------

    def analyze_entity(
        self,
        entity_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        analysis_types: Iterable[AnalysisType | str] | None = None,
        anomaly_threshold: float | None = None,
    ) -> MovementAnalysis:
        """Movement analysis over the entity's history inside `[start, end]` (default: last 24h)."""
        if entity_id not in self.store and self.history.count(entity_id) == 0:
            raise EntityNotFound(entity_id)
        tz = self.settings.app.timezone
        end = ensure_tz(end, tz) if end else self.now()
        start = ensure_tz(start, tz) if start else end - timedelta(hours=self.settings.analysis.default_window_hours)
        if start > end:
            raise ValidationFailure("start must not be later than end", field="start")

        track = self.history.window(entity_id, start=start, end=end)
        return self.analyzer.analyze(
            entity_id,
            track,
            analysis_types=analysis_types,
            anomaly_threshold=anomaly_threshold,
            window_start=start,
            window_end=end,
        )
