"""
Geofence evaluator.

Holds the user-defined geofences and, per (geofence, entity) pair, a two-state machine:

    OUTSIDE --report inside, kind monitored--> INSIDE    (fires `entry` if enabled)
    INSIDE  --report outside-->                OUTSIDE   (fires `exit` if enabled)
    INSIDE  --report inside, dwell >= threshold--> INSIDE (fires `dwell` once per stay)

Every normalized report is fed here (not only the ones that changed current state).
Reports for the same entity are serialized by a per-entity lock; different entities are
evaluated in parallel. A report that is not newer than the last one evaluated for a pair is
ignored so late deliveries cannot produce phantom transitions.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime

from cotwatch.core.geo import GeoPoint as CoreGeoPoint
from cotwatch.domain.kinds import kind_matches
from cotwatch.domain.models import Geofence, GeofenceAlert, GeoPoint, PositionReport, Transition
from cotwatch.geofence.shapes import contains

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


@dataclass
class PairState:
    """Containment state for one (geofence, entity) pair."""

    inside: bool = False
    entered_at: datetime | None = None
    dwell_fired: bool = False
    last_seen: datetime | None = None


class GeofenceEvaluator:
    def __init__(self) -> None:
        self._fences: dict[str, Geofence] = {}
        self._states: dict[tuple[str, str], PairState] = {}
        self._stripes = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        self._fences_lock = threading.Lock()

    def _lock_for(self, entity_id: str) -> threading.Lock:
        return self._stripes[hash(entity_id) % _LOCK_STRIPES]

    def add(self, geofence: Geofence) -> Geofence:
        with self._fences_lock:
            self._fences[geofence.id] = geofence
        logger.info("Geofence added: %s (%s, %s)", geofence.id, geofence.name, geofence.shape.type)
        return geofence

    def remove(self, geofence_id: str) -> bool:
        with self._fences_lock:
            removed = self._fences.pop(geofence_id, None) is not None
            if removed:
                for key in [k for k in self._states.copy() if k[0] == geofence_id]:
                    self._states.pop(key, None)
        if removed:
            logger.info("Geofence removed: %s", geofence_id)
        return removed

    def get(self, geofence_id: str) -> Geofence | None:
        return self._fences.get(geofence_id)

    def fences(self) -> list[Geofence]:
        return sorted(self._fences.copy().values(), key=lambda g: (g.created_at, g.id))

    def state(self, geofence_id: str, entity_id: str) -> PairState | None:
        return self._states.get((geofence_id, entity_id))

    def occupants(self, geofence_id: str) -> list[str]:
        return sorted(e for (g, e), s in self._states.copy().items() if g == geofence_id and s.inside)

    def pair_count(self) -> int:
        return len(self._states)

    def forget_entity(self, entity_id: str) -> int:
        """Drop every pair state held for `entity_id`; returns how many were dropped."""
        with self._lock_for(entity_id), self._fences_lock:
            keys = [k for k in self._states.copy() if k[1] == entity_id]
            for key in keys:
                self._states.pop(key, None)
        return len(keys)

    def evaluate(self, report: PositionReport) -> list[GeofenceAlert]:
        """Advance every monitored pair for `report.id`; returns the alerts raised."""
        point = CoreGeoPoint(lat=report.lat, lon=report.lon)
        alerts: list[GeofenceAlert] = []

        with self._lock_for(report.id):
            for fence in list(self._fences.copy().values()):
                if not fence.active or not kind_matches(report.kind, fence.monitored_kind_patterns):
                    continue
                key = (fence.id, report.id)
                state = self._states.get(key)
                if state is None:
                    with self._fences_lock:
                        # The fence may have been removed since the copy above.
                        if fence.id not in self._fences:
                            continue
                        state = self._states.setdefault(key, PairState())

                if state.last_seen is not None and report.observed_at <= state.last_seen:
                    continue
                state.last_seen = report.observed_at

                inside = contains(fence, point)
                if inside and not state.inside:
                    state.inside = True
                    state.entered_at = report.observed_at
                    state.dwell_fired = False
                    if fence.triggers.on_entry:
                        alerts.append(self._alert(fence, report, "entry"))
                elif not inside and state.inside:
                    state.inside = False
                    state.entered_at = None
                    state.dwell_fired = False
                    if fence.triggers.on_exit:
                        alerts.append(self._alert(fence, report, "exit"))
                elif inside and fence.triggers.on_dwell.enabled and not state.dwell_fired:
                    dwell_s = (report.observed_at - state.entered_at).total_seconds()
                    if dwell_s >= fence.triggers.on_dwell.threshold_seconds:
                        state.dwell_fired = True
                        alerts.append(self._alert(fence, report, "dwell", dwell_seconds=dwell_s))

        for alert in alerts:
            logger.info(
                "Geofence %s: %s %s (%s)", alert.transition, alert.entity_id, alert.geofence_name, alert.severity
            )
        return alerts

    @staticmethod
    def _alert(
        fence: Geofence, report: PositionReport, transition: Transition, *, dwell_seconds: float | None = None
    ) -> GeofenceAlert:
        return GeofenceAlert(
            id=f"alert-{uuid.uuid4()}",
            geofence_id=fence.id,
            geofence_name=fence.name,
            entity_id=report.id,
            entity_kind=report.kind,
            callsign=report.callsign,
            transition=transition,
            severity=fence.severity,
            at=report.observed_at,
            location=GeoPoint(lat=report.lat, lon=report.lon),
            dwell_seconds=dwell_seconds,
        )
