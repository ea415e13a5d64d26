"""
CoT event normalization.

Turns a structurally decoded CoT event (loosely typed mapping from the wire client) into a
canonical `PositionReport`.

Accepted input shape (XML attributes already lifted into keys by the wire client):

    {
      "uid": "ANDROID-1", "type": "a-f-G-U-C", "how": "m-g",
      "time": "2026-01-05T10:00:00Z", "start": "...", "stale": "...",
      "point": {"lat": "37.77", "lon": "-122.41", "hae": "9999999.0", "ce": "9999999.0", "le": "9999999.0"},
      "detail": {"contact": {"callsign": "ALPHA"}, "__group": {"name": "Cyan", "role": "Team Member"}, ...}
    }

Flat `lat`/`lon`/`hae`/`ce`/`le` keys at the top level are also accepted.

Rules:
- `uid`, `type`, `time`, `lat`, `lon` are required; anything missing/invalid raises
  `ValidationFailure` naming the field.
- `hae`/`ce`/`le` become `None` when absent, unparsable, NaN, or equal to an "unknown" sentinel,
  so "unknown accuracy" is never mistaken for "zero accuracy".
- `stale` defaults to `time + default_stale_seconds`.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Mapping

from cotwatch.config.settings import NormalizerSettings
from cotwatch.core.geo import is_valid_coordinate
from cotwatch.core.time import ensure_tz, parse_datetime
from cotwatch.domain.errors import ValidationFailure
from cotwatch.domain.models import Freeform, PositionReport

logger = logging.getLogger(__name__)

_KNOWN_DETAIL_KEYS = {"contact", "group", "__group", "status", "track", "takv", "remarks"}


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        # XML parsers expose element text under "#text" or "text".
        value = value.get("#text", value.get("text"))
        if value is None:
            return None
    s = str(value).strip()
    return s or None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def _optional_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in {"true", "1", "yes", "y"}:
        return True
    if s in {"false", "0", "no", "n"}:
        return False
    return None


def _measured(value: Any, sentinels: list[float]) -> float | None:
    f = _optional_float(value)
    if f is None:
        return None
    if any(f == s for s in sentinels):
        return None
    return f


def _required_float(value: Any, field: str) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationFailure(f"Missing required field '{field}'", field=field)
    f = _optional_float(value)
    if f is None:
        raise ValidationFailure(f"Field '{field}' is not a finite number: {value!r}", field=field)
    return f


def _datetime(value: Any, field: str, timezone: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_tz(value, timezone)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationFailure(f"Missing required field '{field}'", field=field)
    try:
        return parse_datetime(str(value), timezone)
    except ValueError as e:
        raise ValidationFailure(f"Field '{field}' is not an ISO-8601 timestamp: {value!r}", field=field) from e


def _freeform(detail: Mapping[str, Any]) -> Freeform:
    contact = _as_mapping(detail.get("contact"))
    status = _as_mapping(detail.get("status"))
    track = _as_mapping(detail.get("track"))
    takv = _as_mapping(detail.get("takv"))
    extra = {k: v for k, v in detail.items() if k not in _KNOWN_DETAIL_KEYS}
    return Freeform(
        battery=_optional_float(status.get("battery")),
        readiness=_optional_bool(status.get("readiness")),
        heading=_optional_float(track.get("course")),
        speed=_optional_float(track.get("speed")),
        endpoint=_text(contact.get("endpoint")),
        device=_text(takv.get("device")),
        platform=_text(takv.get("platform")),
        os=_text(takv.get("os")),
        version=_text(takv.get("version")),
        remarks=_text(detail.get("remarks")),
        extra=extra,
    )


def normalize_event(
    raw: Mapping[str, Any], *, settings: NormalizerSettings | None = None, timezone: str = "UTC"
) -> PositionReport:
    """Convert a decoded CoT event mapping into a `PositionReport` (pure)."""
    if not isinstance(raw, Mapping):
        raise ValidationFailure("Event must be a mapping", field=None)
    cfg = settings or NormalizerSettings()

    uid = _text(raw.get("uid") if "uid" in raw else raw.get("id"))
    if not uid:
        raise ValidationFailure("Missing required field 'uid'", field="uid")
    kind = _text(raw.get("type") if "type" in raw else raw.get("kind"))
    if not kind:
        raise ValidationFailure("Missing required field 'type'", field="type")

    observed_at = _datetime(raw.get("time"), "time", timezone)
    if raw.get("stale") is not None:
        valid_until = _datetime(raw.get("stale"), "stale", timezone)
    else:
        valid_until = observed_at + timedelta(seconds=cfg.default_stale_seconds)
    if valid_until < observed_at:
        raise ValidationFailure("Field 'stale' is earlier than 'time'", field="stale")

    point = _as_mapping(raw.get("point")) or raw
    lat = _required_float(point.get("lat"), "lat")
    lon = _required_float(point.get("lon"), "lon")
    if not is_valid_coordinate(lat, lon):
        raise ValidationFailure(f"Coordinates out of range: lat={lat} lon={lon}", field="lat" if abs(lat) > 90 else "lon")

    detail = _as_mapping(raw.get("detail"))
    contact = _as_mapping(detail.get("contact"))
    group = _as_mapping(detail.get("__group")) or _as_mapping(detail.get("group"))

    return PositionReport(
        id=uid,
        kind=kind,
        observed_at=observed_at,
        valid_until=valid_until,
        lat=lat,
        lon=lon,
        altitude=_measured(point.get("hae"), cfg.unknown_sentinels),
        position_error_radius=_measured(point.get("ce"), cfg.unknown_sentinels),
        position_error_linear=_measured(point.get("le"), cfg.unknown_sentinels),
        callsign=_text(contact.get("callsign")),
        team=_text(group.get("name")),
        role=_text(group.get("role")),
        how=_text(raw.get("how")),
        freeform=_freeform(detail),
    )


def try_normalize_event(
    raw: Mapping[str, Any], *, settings: NormalizerSettings | None = None, timezone: str = "UTC"
) -> tuple[PositionReport | None, ValidationFailure | None]:
    """Like `normalize_event`, but returns `(None, error)` instead of raising."""
    try:
        return normalize_event(raw, settings=settings, timezone=timezone), None
    except ValidationFailure as e:
        logger.warning("Rejected CoT event uid=%s: %s", _text(raw.get("uid")) if isinstance(raw, Mapping) else None, e.message)
        return None, e
