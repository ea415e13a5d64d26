"""
Entity state store (latest report per entity).

Reconciliation rule:
- `upsert(report)` replaces the stored report iff there is none yet or `report.observed_at` is
  strictly newer. Equal/older reports are dropped, which makes redelivery after a feed
  reconnect harmless.
- A newer report replaces the old one wholesale (no field merging).

Concurrency:
- Writers take a striped per-key lock, so different entities are updated in parallel.
- Stored reports are immutable models and the mapping slot is swapped in one assignment,
  so readers never observe a partially-updated report and never take a lock.

Capacity eviction and `sweep` report every removed id to `on_evict` (outside the key locks) so
owners of other per-entity state can release it.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable

from cotwatch.core.geo import GeoPoint, in_bbox
from cotwatch.core.time import utcnow
from cotwatch.domain.errors import EntityNotFound
from cotwatch.domain.kinds import kind_matches
from cotwatch.domain.models import EntityFilter, PositionReport

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


def matches_filter(
    report: PositionReport,
    filters: EntityFilter,
    *,
    now: datetime,
    staleness_window_seconds: float,
) -> bool:
    """Apply every (conjunctive) predicate of `filters` to one report."""
    if filters.exclude_ids and report.id in filters.exclude_ids:
        return False
    if filters.kind_patterns and not kind_matches(report.kind, filters.kind_patterns):
        return False
    if filters.teams and report.team not in filters.teams:
        return False
    if filters.roles and report.role not in filters.roles:
        return False
    if filters.bbox is not None and not in_bbox(GeoPoint(report.lat, report.lon), filters.bbox):
        return False
    if not filters.include_stale:
        cutoff = now - timedelta(seconds=staleness_window_seconds)
        if report.valid_until < cutoff:
            return False
    return True


class EntityStateStore:
    """In-process current-state table keyed by entity id."""

    def __init__(
        self,
        *,
        staleness_window_seconds: float = 0.0,
        max_entities: int | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_evict: Callable[[str], None] | None = None,
    ):
        if max_entities is not None and int(max_entities) <= 0:
            raise ValueError("max_entities must be > 0")
        self._records: dict[str, PositionReport] = {}
        self._stripes = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        self._evict_lock = threading.Lock()
        self._staleness_window_seconds = float(staleness_window_seconds)
        self._max_entities = int(max_entities) if max_entities is not None else None
        self._clock = clock
        self._on_evict = on_evict

    def _lock_for(self, entity_id: str) -> threading.Lock:
        return self._stripes[hash(entity_id) % _LOCK_STRIPES]

    @property
    def staleness_window_seconds(self) -> float:
        return self._staleness_window_seconds

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._records

    def upsert(self, report: PositionReport) -> bool:
        """Store `report` if it is newer than the current state; returns whether state changed."""
        with self._lock_for(report.id):
            current = self._records.get(report.id)
            if current is not None and report.observed_at <= current.observed_at:
                logger.debug(
                    "Dropped report for %s: observed_at %s not newer than %s",
                    report.id,
                    report.observed_at.isoformat(),
                    current.observed_at.isoformat(),
                )
                return False
            self._records[report.id] = report
            is_new = current is None

        if is_new and self._max_entities is not None and len(self._records) > self._max_entities:
            self._evict_over_capacity(keep=report.id)
        return True

    def _evict_over_capacity(self, *, keep: str) -> None:
        evicted: list[str] = []
        with self._evict_lock:
            while self._max_entities is not None and len(self._records) > self._max_entities:
                candidates = [r for r in self.snapshot() if r.id != keep]
                if not candidates:
                    break
                victim = min(candidates, key=lambda r: (r.observed_at, r.id))
                if self.remove(victim.id):
                    evicted.append(victim.id)
                    logger.info("Evicted entity %s (capacity %s)", victim.id, self._max_entities)
        self._notify_evicted(evicted)

    def _notify_evicted(self, entity_ids: list[str]) -> None:
        if self._on_evict is None:
            return
        for entity_id in entity_ids:
            self._on_evict(entity_id)

    def get(self, entity_id: str) -> PositionReport | None:
        return self._records.get(entity_id)

    def require(self, entity_id: str) -> PositionReport:
        report = self._records.get(entity_id)
        if report is None:
            raise EntityNotFound(entity_id)
        return report

    def remove(self, entity_id: str) -> bool:
        with self._lock_for(entity_id):
            return self._records.pop(entity_id, None) is not None

    def ids(self) -> list[str]:
        return list(self._records.copy().keys())

    def snapshot(self) -> list[PositionReport]:
        """All current reports (no filtering, no staleness cut)."""
        return list(self._records.copy().values())

    def query(self, filters: EntityFilter | None = None) -> list[PositionReport]:
        """Current-state reports matching all filters (order unspecified)."""
        filters = filters or EntityFilter()
        now = filters.now or self._clock()
        window = (
            filters.staleness_window_seconds
            if filters.staleness_window_seconds is not None
            else self._staleness_window_seconds
        )
        return [
            r
            for r in self.snapshot()
            if matches_filter(r, filters, now=now, staleness_window_seconds=window)
        ]

    def sweep(self, *, ttl_seconds: float, now: datetime | None = None) -> int:
        """Remove entries with `valid_until + ttl < now`; returns the number removed."""
        now = now or self._clock()
        ttl = timedelta(seconds=float(ttl_seconds))
        removed: list[str] = []
        for report in self.snapshot():
            if report.valid_until + ttl < now:
                with self._lock_for(report.id):
                    current = self._records.get(report.id)
                    # Re-check under the lock: a fresh upsert may have landed meanwhile.
                    if current is not None and current.valid_until + ttl < now:
                        del self._records[report.id]
                        removed.append(report.id)
        if removed:
            logger.info("Swept %s expired entities", len(removed))
        self._notify_evicted(removed)
        return len(removed)

    def upsert_many(self, reports: Iterable[PositionReport]) -> int:
        return sum(1 for r in reports if self.upsert(r))
