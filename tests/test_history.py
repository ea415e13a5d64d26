from datetime import datetime, timedelta, timezone

from cotwatch.domain.models import PositionReport
from cotwatch.state.history import TrackHistoryBuffer

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def _report(minute, uid="u1"):
    at = T0 + timedelta(minutes=minute)
    return PositionReport(
        id=uid, kind="a-f-G", observed_at=at, valid_until=at + timedelta(minutes=5), lat=0.0, lon=minute / 1000
    )


def test_out_of_order_reports_are_kept_sorted():
    buf = TrackHistoryBuffer()
    for m in (3, 1, 2, 0):
        buf.append(_report(m))
    assert [r.observed_at.minute for r in buf.window("u1")] == [0, 1, 2, 3]


def test_duplicate_timestamp_is_ignored():
    buf = TrackHistoryBuffer()
    assert buf.append(_report(1)) is True
    assert buf.append(_report(1)) is False
    assert buf.count("u1") == 1


def test_window_bounds_are_inclusive():
    buf = TrackHistoryBuffer()
    for m in range(6):
        buf.append(_report(m))
    track = buf.window("u1", start=T0 + timedelta(minutes=1), end=T0 + timedelta(minutes=4))
    assert [r.observed_at.minute for r in track] == [1, 2, 3, 4]
    assert buf.window("ghost") == []


def test_retention_drops_oldest_points():
    buf = TrackHistoryBuffer(max_points_per_entity=3)
    for m in range(5):
        buf.append(_report(m))
    assert [r.observed_at.minute for r in buf.window("u1")] == [2, 3, 4]


def test_forget_releases_track_and_lock():
    buf = TrackHistoryBuffer()
    buf.append(_report(0, uid="a"))
    buf.append(_report(0, uid="b"))
    buf.forget("a")
    assert buf.window("a") == []
    assert len(buf) == 1
    assert "a" not in buf._locks
    buf.forget("never-seen")
