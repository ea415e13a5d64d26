"""
Movement analysis over a Track History (chronologically sorted reports of one entity).

Passes (each independent, none mutates shared state):
- speed:   per consecutive pair `distance / dt`; pairs with dt == 0 are skipped.
- pattern: accumulated signed heading change; "circular" past a turn threshold, else "linear".
- stops:   runs of consecutive points closer than a distance threshold, kept if long enough.
- anomaly: segments faster than `average * (1 + threshold)`.

Fewer than two points is not an error: the result is flagged `insufficient_data`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from cotwatch.config.settings import AnalysisSettings
from cotwatch.core import geo
from cotwatch.core.geo import GeoPoint as CoreGeoPoint
from cotwatch.domain.errors import ValidationFailure
from cotwatch.domain.models import (
    AnalysisType,
    Anomaly,
    AnomalyAnalysis,
    GeoPoint,
    MovementAnalysis,
    PatternAnalysis,
    PositionReport,
    SpeedAnalysis,
    Stop,
    StopAnalysis,
)

logger = logging.getLogger(__name__)

_MPS_TO_KMH = 3.6
ANALYSIS_TYPES: tuple[str, ...] = ("speed", "pattern", "stops", "anomaly")


@dataclass(frozen=True)
class Segment:
    """One consecutive pair of track points."""

    start: PositionReport
    end: PositionReport
    distance_m: float
    dt_s: float

    @property
    def speed_mps(self) -> float | None:
        if self.dt_s <= 0:
            return None
        return self.distance_m / self.dt_s


def _pt(r: PositionReport) -> CoreGeoPoint:
    return CoreGeoPoint(lat=r.lat, lon=r.lon)


def segments(track: Sequence[PositionReport]) -> list[Segment]:
    return [
        Segment(
            start=a,
            end=b,
            distance_m=geo.haversine_m(_pt(a), _pt(b)),
            dt_s=(b.observed_at - a.observed_at).total_seconds(),
        )
        for a, b in zip(track, track[1:])
    ]


def analyze_speed(segs: Sequence[Segment]) -> SpeedAnalysis:
    speeds: list[float] = []
    total = 0.0
    for s in segs:
        v = s.speed_mps
        if v is None:
            continue
        speeds.append(v)
        total += s.distance_m

    avg = sum(speeds) / len(speeds) if speeds else 0.0
    lo = min(speeds) if speeds else 0.0
    hi = max(speeds) if speeds else 0.0
    return SpeedAnalysis(
        average_mps=avg,
        min_mps=lo,
        max_mps=hi,
        average_kmh=avg * _MPS_TO_KMH,
        min_kmh=lo * _MPS_TO_KMH,
        max_kmh=hi * _MPS_TO_KMH,
        total_distance_m=total,
        segments=len(speeds),
    )


def analyze_pattern(
    track: Sequence[PositionReport], segs: Sequence[Segment], *, circular_threshold_deg: float
) -> PatternAnalysis:
    headings = [geo.initial_bearing_deg(_pt(s.start), _pt(s.end)) for s in segs]
    total_turn = sum(geo.normalize_heading_delta(b - a) for a, b in zip(headings, headings[1:]))
    points = [_pt(r) for r in track]
    return PatternAnalysis(
        movement_type="circular" if abs(total_turn) > circular_threshold_deg else "linear",
        total_heading_change_deg=total_turn,
        path_length_m=geo.path_length_m(points),
        bbox=geo.bbox(points),
    )


def _close_stop(run: list[PositionReport], min_duration_s: float) -> Stop | None:
    duration = (run[-1].observed_at - run[0].observed_at).total_seconds()
    if duration < min_duration_s:
        return None
    center = geo.centroid([_pt(r) for r in run])
    return Stop(
        center=GeoPoint(lat=center.lat, lon=center.lon),
        start=run[0].observed_at,
        end=run[-1].observed_at,
        duration_s=duration,
        points=len(run),
    )


def analyze_stops(
    segs: Sequence[Segment], *, distance_threshold_m: float, min_duration_s: float
) -> StopAnalysis:
    stops: list[Stop] = []
    run: list[PositionReport] = []
    for s in segs:
        if s.distance_m < distance_threshold_m:
            if not run:
                run = [s.start]
            run.append(s.end)
            continue
        if run:
            stop = _close_stop(run, min_duration_s)
            if stop is not None:
                stops.append(stop)
            run = []
    # A stop still in progress at the end of the window counts too.
    if run:
        stop = _close_stop(run, min_duration_s)
        if stop is not None:
            stops.append(stop)

    return StopAnalysis(
        stops=stops,
        total_stops=len(stops),
        total_stop_time_s=sum(s.duration_s for s in stops),
    )


def analyze_anomalies(segs: Sequence[Segment], *, average_mps: float, threshold: float) -> AnomalyAnalysis:
    limit = average_mps * (1 + threshold)
    anomalies = [
        Anomaly(
            at=s.end.observed_at,
            location=GeoPoint(lat=s.end.lat, lon=s.end.lon),
            value_mps=v,
            threshold_mps=limit,
        )
        for s in segs
        if (v := s.speed_mps) is not None and v > limit
    ]
    return AnomalyAnalysis(anomalies=anomalies, total_anomalies=len(anomalies))


class MovementAnalyzer:
    def __init__(self, settings: AnalysisSettings | None = None):
        self._settings = settings or AnalysisSettings()

    def analyze(
        self,
        entity_id: str,
        history: Iterable[PositionReport],
        *,
        analysis_types: Iterable[AnalysisType | str] | None = None,
        anomaly_threshold: float | None = None,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> MovementAnalysis:
        cfg = self._settings
        types = set(analysis_types or cfg.default_types)
        unknown = types - set(ANALYSIS_TYPES)
        if unknown:
            raise ValidationFailure(f"Unknown analysis types: {sorted(unknown)}", field="analysis_types")
        threshold = cfg.default_anomaly_threshold if anomaly_threshold is None else float(anomaly_threshold)
        if not 0.0 <= threshold <= 1.0:
            raise ValidationFailure("anomaly_threshold must be within [0, 1]", field="anomaly_threshold")

        track = sorted(history, key=lambda r: r.observed_at)
        result = MovementAnalysis(
            entity_id=entity_id,
            data_points=len(track),
            window_start=window_start,
            window_end=window_end,
        )
        if len(track) < 2:
            return result.model_copy(update={"insufficient_data": True})

        segs = segments(track)
        update: dict = {}
        speed = analyze_speed(segs) if types & {"speed", "anomaly"} else None
        if "speed" in types:
            update["speed"] = speed
        if "pattern" in types:
            update["pattern"] = analyze_pattern(track, segs, circular_threshold_deg=cfg.circular_turn_threshold_deg)
        if "stops" in types:
            update["stops"] = analyze_stops(
                segs, distance_threshold_m=cfg.stop_distance_m, min_duration_s=cfg.stop_min_duration_s
            )
        if "anomaly" in types:
            update["anomaly"] = analyze_anomalies(segs, average_mps=speed.average_mps, threshold=threshold)

        logger.info("Movement analysis for %s: %s points, passes=%s", entity_id, len(track), sorted(types))
        return result.model_copy(update=update)
