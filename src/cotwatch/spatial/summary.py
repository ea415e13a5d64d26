"""
Aggregate summaries over entity lists (counts by kind/team, bounds, time range).
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from cotwatch.core.geo import GeoPoint as CoreGeoPoint
from cotwatch.core.geo import bbox
from cotwatch.domain.kinds import describe_kind, kind_prefix
from cotwatch.domain.models import EnrichedEntity, KindCount, PositionReport, QuerySummary


class TeamCount(BaseModel):
    team: str
    count: int


class EntitySummary(BaseModel):
    total: int
    by_kind: list[KindCount] = Field(default_factory=list)
    by_team: list[TeamCount] = Field(default_factory=list)
    online: int = 0
    offline: int = 0


def _sorted_counts(counter: Counter) -> list[tuple[str, int]]:
    return sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))


def summarize_results(results: Sequence[EnrichedEntity]) -> QuerySummary:
    """Summary block for spatial query results (counts by full kind, bounds, time range)."""
    if not results:
        return QuerySummary()
    kinds = Counter(r.kind or "unknown" for r in results)
    return QuerySummary(
        by_kind=[KindCount(kind=k, count=n) for k, n in _sorted_counts(kinds)],
        bounds=bbox(CoreGeoPoint(lat=r.lat, lon=r.lon) for r in results),
        earliest=min(r.observed_at for r in results),
        latest=max(r.observed_at for r in results),
    )


def summarize_entities(reports: Iterable[PositionReport], *, now: datetime) -> EntitySummary:
    """Counts by kind family (first three atoms), by team, and online/offline (not stale/stale)."""
    reports = list(reports)
    kinds = Counter(kind_prefix(r.kind) for r in reports)
    teams = Counter(r.team or "Unknown" for r in reports)
    online = sum(1 for r in reports if not r.is_stale(now))
    return EntitySummary(
        total=len(reports),
        by_kind=[KindCount(kind=k, count=n, description=describe_kind(k)) for k, n in _sorted_counts(kinds)],
        by_team=[TeamCount(team=t, count=n) for t, n in _sorted_counts(teams)],
        online=online,
        offline=len(reports) - online,
    )
