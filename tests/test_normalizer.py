from datetime import datetime, timedelta, timezone

import pytest

from cotwatch.config.settings import NormalizerSettings
from cotwatch.domain.errors import ValidationFailure
from cotwatch.ingestion.normalizer import normalize_event, try_normalize_event


def _event(**overrides):
    event = {
        "uid": "ANDROID-1",
        "type": "a-f-G-U-C",
        "how": "m-g",
        "time": "2026-01-05T10:00:00Z",
        "stale": "2026-01-05T10:05:00Z",
        "point": {"lat": "37.7749", "lon": "-122.4194", "hae": "9999999.0", "ce": "12.5", "le": "999999.0"},
        "detail": {
            "contact": {"callsign": "ALPHA", "endpoint": "*:-1:stcp"},
            "__group": {"name": "Cyan", "role": "Team Member"},
            "status": {"battery": "87"},
            "track": {"course": "270.5", "speed": "1.2"},
            "precisionlocation": {"geopointsrc": "GPS"},
        },
    }
    event.update(overrides)
    return event


def test_normalize_event_maps_core_fields():
    r = normalize_event(_event())
    assert r.id == "ANDROID-1"
    assert r.kind == "a-f-G-U-C"
    assert r.observed_at == datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
    assert r.valid_until == datetime(2026, 1, 5, 10, 5, tzinfo=timezone.utc)
    assert (r.lat, r.lon) == (37.7749, -122.4194)
    assert r.callsign == "ALPHA"
    assert r.team == "Cyan"
    assert r.role == "Team Member"
    assert r.affiliation == "friendly"
    assert r.domain == "ground"


def test_unknown_sentinels_become_none_not_zero():
    r = normalize_event(_event())
    assert r.altitude is None
    assert r.position_error_linear is None
    assert r.position_error_radius == 12.5


def test_sentinels_are_configurable():
    r = normalize_event(_event(), settings=NormalizerSettings(unknown_sentinels=[12.5]))
    assert r.position_error_radius is None
    assert r.altitude == 9999999.0


def test_freeform_keeps_known_fields_typed_and_unknown_in_extra():
    r = normalize_event(_event())
    assert r.freeform.battery == 87.0
    assert r.freeform.heading == 270.5
    assert r.freeform.speed == 1.2
    assert r.freeform.endpoint == "*:-1:stcp"
    assert r.freeform.extra == {"precisionlocation": {"geopointsrc": "GPS"}}


def test_missing_stale_defaults_to_time_plus_configured_seconds():
    event = _event()
    event.pop("stale")
    r = normalize_event(event, settings=NormalizerSettings(default_stale_seconds=120))
    assert r.valid_until - r.observed_at == timedelta(seconds=120)


def test_flat_coordinates_are_accepted():
    event = _event()
    event.pop("point")
    event.update({"lat": 1.5, "lon": 2.5})
    r = normalize_event(event)
    assert (r.lat, r.lon) == (1.5, 2.5)


@pytest.mark.parametrize("field", ["uid", "type", "time"])
def test_missing_required_fields_raise_with_field_name(field):
    event = _event()
    event.pop(field)
    with pytest.raises(ValidationFailure) as info:
        normalize_event(event)
    assert info.value.field == field


def test_out_of_range_coordinates_are_rejected():
    with pytest.raises(ValidationFailure) as info:
        normalize_event(_event(point={"lat": "91", "lon": "0"}))
    assert info.value.field == "lat"


def test_unparsable_coordinates_are_rejected():
    with pytest.raises(ValidationFailure, match="lon"):
        normalize_event(_event(point={"lat": "1", "lon": "east"}))


def test_stale_before_time_is_rejected():
    with pytest.raises(ValidationFailure) as info:
        normalize_event(_event(stale="2026-01-05T09:00:00Z"))
    assert info.value.field == "stale"


def test_try_normalize_event_returns_error_instead_of_raising():
    report, err = try_normalize_event({"type": "a-f-G"})
    assert report is None
    assert isinstance(err, ValidationFailure)
    assert err.as_dict()["code"] == "VALIDATION_ERROR"
