import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from cotwatch.domain.errors import EntityNotFound
from cotwatch.domain.models import EntityFilter, PositionReport
from cotwatch.state.store import EntityStateStore

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def _report(uid="u1", *, minute=0, lat=0.0, lon=0.0, kind="a-f-G-U-C", team=None, role=None, stale_s=300):
    at = T0 + timedelta(minutes=minute)
    return PositionReport(
        id=uid,
        kind=kind,
        observed_at=at,
        valid_until=at + timedelta(seconds=stale_s),
        lat=lat,
        lon=lon,
        team=team,
        role=role,
    )


def _store(**kwargs):
    return EntityStateStore(clock=lambda: T0 + timedelta(minutes=1), **kwargs)


def test_final_state_is_newest_report_for_any_delivery_order():
    reports = [_report(minute=m, lat=float(m)) for m in (0, 1, 2, 3)]
    for order in itertools.permutations(reports):
        store = _store()
        for r in order:
            store.upsert(r)
        assert store.require("u1").lat == 3.0


def test_equal_timestamp_is_dropped():
    store = _store()
    assert store.upsert(_report(lat=1.0)) is True
    assert store.upsert(_report(lat=2.0)) is False
    assert store.require("u1").lat == 1.0


def test_newer_report_replaces_wholesale():
    store = _store()
    first = _report(team="Cyan")
    store.upsert(first)
    store.upsert(_report(minute=1))
    assert store.require("u1").team is None


def test_require_unknown_raises_entity_not_found():
    with pytest.raises(EntityNotFound) as info:
        _store().require("ghost")
    assert info.value.entity_id == "ghost"


def test_query_filters_are_conjunctive():
    store = _store()
    store.upsert(_report("a", kind="a-f-G-U-C", team="Cyan", role="Team Lead"))
    store.upsert(_report("b", kind="a-h-G", team="Cyan"))
    store.upsert(_report("c", kind="a-f-A", team="Red", lat=10, lon=10))

    ids = lambda f: sorted(r.id for r in store.query(f))
    assert ids(EntityFilter(kind_patterns=["a-f"])) == ["a", "c"]
    assert ids(EntityFilter(kind_patterns=["a-?-G*"])) == ["a", "b"]
    assert ids(EntityFilter(kind_patterns=["a-f"], teams=["Cyan"])) == ["a"]
    assert ids(EntityFilter(roles=["Team Lead"])) == ["a"]
    assert ids(EntityFilter(bbox=(5, 5, 15, 15))) == ["c"]
    assert ids(EntityFilter(exclude_ids=["a", "b"])) == ["c"]


def test_stale_entities_hidden_unless_requested_or_within_window():
    store = _store()
    store.upsert(_report("fresh", stale_s=600))
    store.upsert(_report("stale", stale_s=30))

    assert [r.id for r in store.query()] == ["fresh"]
    assert sorted(r.id for r in store.query(EntityFilter(include_stale=True))) == ["fresh", "stale"]
    assert sorted(r.id for r in store.query(EntityFilter(staleness_window_seconds=60))) == ["fresh", "stale"]

    windowed = _store(staleness_window_seconds=60)
    windowed.upsert(_report("stale", stale_s=30))
    assert [r.id for r in windowed.query()] == ["stale"]


def test_capacity_evicts_oldest_observation():
    store = _store(max_entities=2)
    store.upsert(_report("old", minute=0))
    store.upsert(_report("mid", minute=1))
    store.upsert(_report("new", minute=2))
    assert sorted(store.ids()) == ["mid", "new"]


def test_evictions_are_reported_to_on_evict():
    evicted = []
    store = _store(max_entities=2, on_evict=evicted.append)
    for i, uid in enumerate(["old", "mid", "new"]):
        store.upsert(_report(uid, minute=i))
    assert evicted == ["old"]

    store.upsert(_report("short", minute=3, stale_s=60))
    store.sweep(ttl_seconds=0, now=T0 + timedelta(minutes=6))
    assert "short" in evicted


def test_sweep_removes_expired_entries():
    store = _store()
    store.upsert(_report("a", stale_s=60))
    store.upsert(_report("b", stale_s=3600))
    removed = store.sweep(ttl_seconds=60, now=T0 + timedelta(minutes=5))
    assert removed == 1
    assert store.ids() == ["b"]


def test_concurrent_upserts_keep_newest():
    store = _store()
    reports = [_report(minute=m, lat=float(m % 90)) for m in range(200)]

    def worker(chunk):
        for r in chunk:
            store.upsert(r)

    threads = [threading.Thread(target=worker, args=(reports[i::4][::-1],)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.require("u1").observed_at == T0 + timedelta(minutes=199)
