import threading
from datetime import datetime, timedelta, timezone

import pytest

from cotwatch.config.settings import Settings
from cotwatch.domain.errors import EntityNotFound, ValidationFailure
from cotwatch.domain.models import CircleShape, EmergencyRequest, GeofenceRequest, GeoPoint, PointRef
from cotwatch.ingestion.feed import EventFeed, read_jsonl
from cotwatch.state.context import EngineContext

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def _event(uid, lat, lon, *, minute=0, kind="a-f-G-U-C"):
    at = T0 + timedelta(minutes=minute)
    return {
        "uid": uid,
        "type": kind,
        "time": at.isoformat(),
        "stale": (at + timedelta(minutes=5)).isoformat(),
        "point": {"lat": lat, "lon": lon, "hae": 9999999.0, "ce": 9999999.0, "le": 9999999.0},
        "detail": {"contact": {"callsign": uid.upper()}},
    }


def _context(**settings):
    return EngineContext(Settings.model_validate(settings), clock=lambda: T0 + timedelta(minutes=10))


def _fence(context):
    return context.create_geofence(
        GeofenceRequest(name="HQ", shape=CircleShape(center=GeoPoint(lat=0, lon=0), radius_m=1000))
    ).geofence


def test_ingest_updates_state_history_and_alerts():
    context = _context()
    fence = _fence(context)

    first = context.ingest(_event("u1", 0.0, 0.005, minute=0))
    assert first.updated is True
    assert [a.transition for a in first.alerts] == ["entry"]

    second = context.ingest(_event("u1", 0.0, 0.02, minute=1))
    assert [a.transition for a in second.alerts] == ["exit"]

    assert context.store.require("u1").lon == 0.02
    assert context.history.count("u1") == 2
    assert [a.transition for a in context.alerts.query(entity_id="u1")] == ["exit", "entry"]
    assert context.geofences.occupants(fence.id) == []


def test_out_of_order_report_reaches_history_but_not_current_state():
    context = _context()
    context.ingest(_event("u1", 0.0, 0.01, minute=5))
    late = context.ingest(_event("u1", 0.0, 0.02, minute=1))
    assert late.updated is False
    assert context.store.require("u1").lon == 0.01
    assert context.history.count("u1") == 2


def test_ingest_rejects_malformed_event():
    with pytest.raises(ValidationFailure):
        _context().ingest({"uid": "x"})


def test_ingest_many_counts_rejections():
    context = _context()
    summary = context.ingest_many([_event("a", 0, 0), {"uid": "bad"}, _event("b", 1, 1)])
    assert (summary.accepted, summary.rejected, summary.updated) == (2, 1, 2)
    assert summary.errors[0]["index"] == 1
    assert summary.errors[0]["code"] == "VALIDATION_ERROR"


def test_create_geofence_returns_overlay_and_uses_default_monitored_kinds():
    context = _context(geofence={"default_monitored_kinds": ["a-h"]})
    created = context.create_geofence(
        GeofenceRequest(name="HQ", shape=CircleShape(center=GeoPoint(lat=0, lon=0), radius_m=1000))
    )
    assert created.geofence.monitored_kind_patterns == ["a-h"]
    assert created.overlay["uid"] == created.geofence.id
    assert context.ingest(_event("friend", 0.0, 0.001)).alerts == []
    assert [a.transition for a in context.ingest(_event("foe", 0.0, 0.001, kind="a-h-G")).alerts] == ["entry"]


def test_analyze_entity_defaults_to_recent_window():
    context = _context()
    for minute in range(4):
        context.ingest(_event("u1", 0.0, minute * 0.001, minute=minute))
    result = context.analyze_entity("u1", analysis_types=["speed"])
    assert result.data_points == 4
    assert result.window_end == T0 + timedelta(minutes=10)
    assert result.window_start == T0 + timedelta(minutes=10) - timedelta(hours=24)

    narrow = context.analyze_entity("u1", start=T0 + timedelta(minutes=3), analysis_types=["speed"])
    assert narrow.insufficient_data is True


def test_analyze_entity_unknown_raises():
    with pytest.raises(EntityNotFound):
        _context().analyze_entity("ghost")


def test_sweep_uses_configured_ttl():
    assert _context().sweep() == 0
    context = _context(store={"sweep_ttl_seconds": 60})
    context.ingest(_event("u1", 0, 0))
    assert context.sweep() == 1
    assert len(context.store) == 0


def test_event_feed_skips_bad_events_and_pumps_into_context():
    context = _context()
    feed = EventFeed([_event("a", 0, 0), {"type": "a-f-G"}, _event("b", 0, 0.001)])
    stats = feed.pump(context)
    assert (stats.received, stats.accepted, stats.rejected) == (3, 2, 1)
    assert sorted(context.store.ids()) == ["a", "b"]


def test_event_feed_cancel_stops_at_next_event():
    source = (_event(f"u{i}", 0, 0, minute=i) for i in range(100))
    feed = EventFeed(source)
    seen = []
    for report in feed:
        seen.append(report.id)
        if len(seen) == 3:
            feed.cancel()
    assert seen == ["u0", "u1", "u2"]
    assert feed.cancelled is True


def test_event_feed_cancel_from_another_thread():
    release = threading.Event()

    def source():
        yield _event("first", 0, 0)
        release.wait(timeout=5)
        yield _event("second", 0, 0)

    feed = EventFeed(source())
    it = iter(feed)
    assert next(it).id == "first"
    threading.Thread(target=lambda: (feed.cancel(), release.set())).start()
    assert list(it) == []


def test_read_jsonl_skips_blank_and_invalid_lines(tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text('{"uid": "a"}\n\nnot json\n[1, 2]\n{"uid": "b"}\n', encoding="utf-8")
    assert [e["uid"] for e in read_jsonl(path)] == ["a", "b"]


def test_outbound_descriptors_are_relayed_to_sink():
    sent = []
    context = EngineContext(Settings(), clock=lambda: T0 + timedelta(minutes=10), sink=sent.append)
    fence = _fence(context)
    context.ingest(_event("u1", 0.0, 0.0))
    context.emergency(EmergencyRequest(type="911", message="Help", location=PointRef(entity_id="u1")))
    assert sent[0]["uid"] == fence.id
    assert sent[1]["type"] == "b-a-o-tbl"


def test_capacity_eviction_releases_history_and_pair_states():
    context = _context(store={"max_entities": 2})
    _fence(context)
    for i in range(50):
        context.ingest(_event(f"e{i:02d}", 0.0, 0.001, minute=i))
    assert sorted(context.store.ids()) == ["e48", "e49"]
    assert len(context.history) == 2
    assert context.geofences.pair_count() == 2


def test_sweep_releases_history_and_pair_states():
    context = _context(store={"sweep_ttl_seconds": 60})
    fence = _fence(context)
    context.ingest(_event("u1", 0.0, 0.001))
    assert context.sweep() == 1
    assert context.history.count("u1") == 0
    assert context.geofences.state(fence.id, "u1") is None
