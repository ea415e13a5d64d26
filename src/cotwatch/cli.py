"""
cotwatch CLI entrypoint.

This CLI is intended for offline replays and debugging without a live feed or the HTTP API.
Events are read from a JSON-lines file (one decoded CoT event per line) and pushed through an
`EngineContext` exactly as a live feed would be.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import yaml

from cotwatch.config.settings import get_settings
from cotwatch.core.logging import configure_logging
from cotwatch.core.time import parse_datetime
from cotwatch.domain.models import EntityFilter, GeofenceRequest
from cotwatch.ingestion.feed import EventFeed, read_jsonl
from cotwatch.spatial.summary import summarize_entities
from cotwatch.state.context import EngineContext


def load_geofence_requests(path: str | Path) -> list[GeofenceRequest]:
    """Read geofence definitions from YAML/JSON (a list, or a mapping with a `geofences` list)."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or []
    if isinstance(data, dict):
        data = data.get("geofences", [])
    if not isinstance(data, list):
        raise ValueError(f"Invalid geofence file {path}; expected a list of geofences.")
    return [GeofenceRequest.model_validate(item) for item in data]


def _replay(path: str, context: EngineContext) -> EventFeed:
    settings = context.settings
    feed = EventFeed(read_jsonl(path), settings=settings.normalizer, timezone=settings.app.timezone)
    feed.pump(context)
    return feed


def _cmd_replay(args: argparse.Namespace) -> int:
    """Handle the `replay` subcommand."""
    context = EngineContext(get_settings())
    if args.geofences:
        for request in load_geofence_requests(args.geofences):
            created = context.create_geofence(request)
            if not args.json:
                print(f"Geofence {created.geofence.id}: {created.geofence.name} ({created.geofence.shape.type})")

    feed = _replay(args.events, context)
    alerts = list(reversed(context.alerts.query()))
    entities = sorted(context.store.query(EntityFilter(include_stale=True)), key=lambda r: r.id)

    if args.json:
        payload: dict[str, Any] = {
            "feed": {
                "received": feed.stats.received,
                "accepted": feed.stats.accepted,
                "rejected": feed.stats.rejected,
            },
            "alerts": [a.model_dump(mode="json") for a in alerts],
        }
        if args.entities:
            payload["entities"] = [r.model_dump(mode="json") for r in entities]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    s = feed.stats
    print(f"Events: received={s.received} accepted={s.accepted} rejected={s.rejected}")
    print(f"Entities: {len(context.store)}  Alerts: {len(alerts)}")
    for a in alerts:
        extra = f" dwell={a.dwell_seconds:.0f}s" if a.dwell_seconds is not None else ""
        print(f"  [{a.severity}] {a.at.isoformat()} {a.transition:<5} {a.entity_id} @ {a.geofence_name}{extra}")

    if args.entities:
        summary = summarize_entities(entities, now=context.now())
        print(f"Online: {summary.online}  Offline: {summary.offline}")
        for r in entities:
            label = r.callsign or "-"
            print(f"  {r.id:<24} {label:<12} {r.kind:<16} ({r.lat:.5f}, {r.lon:.5f}) {r.observed_at.isoformat()}")
    return 0


def _cmd_analyze(args: argparse.Namespace) -> int:
    """Handle the `analyze` subcommand."""
    settings = get_settings()
    context = EngineContext(settings)
    _replay(args.events, context)

    # Default window: the entity's whole recorded track.
    track = context.history.window(args.entity)
    start = parse_datetime(args.start, settings.app.timezone) if args.start else None
    end = parse_datetime(args.end, settings.app.timezone) if args.end else None
    if track:
        start = start or track[0].observed_at
        end = end or track[-1].observed_at

    result = context.analyze_entity(
        args.entity,
        start=start,
        end=end,
        analysis_types=args.types or None,
        anomaly_threshold=args.anomaly_threshold,
    )
    print(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the cotwatch CLI."""
    parser = argparse.ArgumentParser(prog="cotwatch")
    sub = parser.add_subparsers(dest="command", required=True)

    rep = sub.add_parser("replay", help="Replay a JSON-lines event file and print alerts (and entities).")
    rep.add_argument("events", help="Path to a JSON-lines file of decoded CoT events.")
    rep.add_argument("--entities", action="store_true", help="Also print final entity state.")
    rep.add_argument("--geofences", type=str, default=None, help="YAML/JSON file of geofence definitions.")
    rep.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    rep.set_defaults(func=_cmd_replay)

    ana = sub.add_parser("analyze", help="Replay a JSON-lines event file and analyze one entity's movement.")
    ana.add_argument("events", help="Path to a JSON-lines file of decoded CoT events.")
    ana.add_argument("--entity", required=True, help="Entity uid to analyze.")
    ana.add_argument(
        "--types",
        nargs="+",
        default=[],
        choices=["speed", "pattern", "stops", "anomaly"],
        help="Analysis passes to run (default from config).",
    )
    ana.add_argument("--anomaly-threshold", type=float, default=None, help="0..1; fraction above average speed")
    ana.add_argument("--start", default=None, help="ISO datetime (default: first point of the track)")
    ana.add_argument("--end", default=None, help="ISO datetime (default: last point of the track)")
    ana.set_defaults(func=_cmd_analyze)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m cotwatch.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
