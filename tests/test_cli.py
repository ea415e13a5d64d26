import json
from datetime import datetime, timedelta, timezone

from cotwatch.cli import load_geofence_requests, main

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def _write_events(path, points):
    lines = []
    for minute, lon in points:
        at = T0 + timedelta(minutes=minute)
        lines.append(
            json.dumps(
                {
                    "uid": "u1",
                    "type": "a-f-G-U-C",
                    "time": at.isoformat(),
                    "stale": (at + timedelta(minutes=5)).isoformat(),
                    "point": {"lat": 0.0, "lon": lon},
                    "detail": {"contact": {"callsign": "ALPHA"}},
                }
            )
        )
    lines.append("{not json")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_geofences(path):
    path.write_text(
        "geofences:\n"
        "  - name: HQ\n"
        "    severity: high\n"
        "    shape: {type: circle, center: {lat: 0, lon: 0}, radius_m: 1000}\n",
        encoding="utf-8",
    )


def test_load_geofence_requests_accepts_mapping_or_list(tmp_path):
    path = tmp_path / "fences.yaml"
    _write_geofences(path)
    [req] = load_geofence_requests(path)
    assert req.name == "HQ"
    assert req.shape.type == "circle"


def test_replay_prints_alerts_as_json(tmp_path, capsys):
    events = tmp_path / "events.jsonl"
    fences = tmp_path / "fences.yaml"
    _write_events(events, [(0, 0.005), (1, 0.02)])
    _write_geofences(fences)

    assert main(["replay", str(events), "--geofences", str(fences), "--entities", "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["feed"] == {"received": 2, "accepted": 2, "rejected": 0}
    assert [a["transition"] for a in out["alerts"]] == ["entry", "exit"]
    assert [e["id"] for e in out["entities"]] == ["u1"]


def test_replay_text_output(tmp_path, capsys):
    events = tmp_path / "events.jsonl"
    _write_events(events, [(0, 0.0)])
    assert main(["replay", str(events), "--entities"]) == 0
    out = capsys.readouterr().out
    assert "Entities: 1" in out
    assert "ALPHA" in out


def test_analyze_defaults_to_whole_track(tmp_path, capsys):
    events = tmp_path / "events.jsonl"
    _write_events(events, [(m, m * 0.001) for m in range(6)])
    assert main(["analyze", str(events), "--entity", "u1", "--types", "speed", "stops"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["data_points"] == 6
    assert out["speed"]["segments"] == 5
    assert out["stops"]["total_stops"] == 0
