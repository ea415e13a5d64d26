from datetime import datetime, timedelta, timezone

import pytest

from cotwatch.config.settings import AnalysisSettings
from cotwatch.core.geo import GeoPoint as CoreGeoPoint
from cotwatch.core.geo import destination_point
from cotwatch.domain.errors import ValidationFailure
from cotwatch.domain.models import PositionReport
from cotwatch.analysis.movement import MovementAnalyzer, Segment, analyze_stops

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def _report(point, seconds):
    at = T0 + timedelta(seconds=seconds)
    return PositionReport(
        id="u1", kind="a-f-G", observed_at=at, valid_until=at + timedelta(minutes=5), lat=point.lat, lon=point.lon
    )


def _walk(steps_m, *, dt=100, bearing=90.0):
    """Track starting at (0, 0) moving `steps_m[i]` meters per `dt` seconds along `bearing`."""
    point = CoreGeoPoint(0.0, 0.0)
    track = [_report(point, 0)]
    for i, step in enumerate(steps_m, start=1):
        point = destination_point(point, step, bearing)
        track.append(_report(point, i * dt))
    return track


def test_single_point_is_insufficient_data_not_error():
    result = MovementAnalyzer().analyze("u1", _walk([]), analysis_types=["speed"])
    assert result.insufficient_data is True
    assert result.data_points == 1
    assert result.speed is None


def test_speed_statistics():
    result = MovementAnalyzer().analyze("u1", _walk([100, 200, 300]), analysis_types=["speed"])
    speed = result.speed
    assert speed.segments == 3
    assert speed.min_mps == pytest.approx(1.0, rel=1e-6)
    assert speed.max_mps == pytest.approx(3.0, rel=1e-6)
    assert speed.average_mps == pytest.approx(2.0, rel=1e-6)
    assert speed.average_kmh == pytest.approx(7.2, rel=1e-6)
    assert speed.total_distance_m == pytest.approx(600, rel=1e-6)
    assert result.pattern is None


def test_zero_time_delta_pairs_are_skipped():
    track = _walk([100])
    dup = _report(CoreGeoPoint(0.0, 0.5), 100)
    result = MovementAnalyzer().analyze("u1", [*track, dup], analysis_types=["speed"])
    assert result.speed.segments == 1


def test_linear_pattern():
    result = MovementAnalyzer().analyze("u1", _walk([100] * 10), analysis_types=["pattern"])
    assert result.pattern.movement_type == "linear"
    assert result.pattern.path_length_m == pytest.approx(1000, rel=1e-6)


def test_circular_pattern():
    center = CoreGeoPoint(10.0, 10.0)
    track = [_report(destination_point(center, 500, 30.0 * i), 60 * i) for i in range(13)]
    result = MovementAnalyzer().analyze("u1", track, analysis_types=["pattern"])
    assert result.pattern.movement_type == "circular"
    assert abs(result.pattern.total_heading_change_deg) > 300


def test_stop_spanning_whole_window():
    track = _walk([30, 30], dt=300)
    result = MovementAnalyzer(AnalysisSettings(stop_distance_m=50, stop_min_duration_s=300)).analyze(
        "u1", track, analysis_types=["stops"]
    )
    assert result.stops.total_stops == 1
    [stop] = result.stops.stops
    assert stop.start == track[0].observed_at
    assert stop.end == track[-1].observed_at
    assert stop.duration_s == 600
    assert stop.points == 3


def test_stop_threshold_is_exclusive():
    a, b, c = (_report(CoreGeoPoint(0.0, 0.0), s) for s in (0, 300, 600))
    close = [Segment(a, b, 49.9, 300), Segment(b, c, 49.9, 300)]
    at_threshold = [Segment(a, b, 50.0, 300), Segment(b, c, 50.0, 300)]

    assert analyze_stops(close, distance_threshold_m=50, min_duration_s=300).total_stops == 1
    assert analyze_stops(at_threshold, distance_threshold_m=50, min_duration_s=300).total_stops == 0


def test_short_pause_is_not_a_stop():
    track = _walk([10, 1000, 1000], dt=100)
    result = MovementAnalyzer().analyze("u1", track, analysis_types=["stops"])
    assert result.stops.total_stops == 0
    assert result.stops.total_stop_time_s == 0


def test_speed_anomaly_flags_fast_segment():
    track = _walk([100, 100, 100, 1000])
    result = MovementAnalyzer().analyze("u1", track, analysis_types=["anomaly"], anomaly_threshold=0.8)
    assert result.speed is None
    assert result.anomaly.total_anomalies == 1
    [anomaly] = result.anomaly.anomalies
    assert anomaly.at == track[-1].observed_at
    assert anomaly.value_mps == pytest.approx(10.0, rel=1e-6)
    assert anomaly.threshold_mps == pytest.approx(3.25 * 1.8, rel=1e-6)


@pytest.mark.parametrize("threshold", [-0.1, 1.5])
def test_anomaly_threshold_must_be_fraction(threshold):
    with pytest.raises(ValidationFailure):
        MovementAnalyzer().analyze("u1", _walk([100, 100]), analysis_types=["anomaly"], anomaly_threshold=threshold)


def test_unknown_analysis_type_is_rejected():
    with pytest.raises(ValidationFailure):
        MovementAnalyzer().analyze("u1", _walk([100]), analysis_types=["teleport"])


def test_default_types_come_from_settings():
    result = MovementAnalyzer(AnalysisSettings(default_types=["stops"])).analyze("u1", _walk([100, 100]))
    assert result.stops is not None
    assert result.speed is None
