"""
Append-only per-entity track history.

Every accepted report is retained here (not only the latest), ordered by `observed_at`, so the
movement analyzer can materialize a Track History for any window. Out-of-order arrivals are
inserted in place; a redelivered report with an already-known `observed_at` is ignored.
Retention is bounded per entity (oldest points fall off first).
"""

from __future__ import annotations

import threading
from bisect import bisect_left
from datetime import datetime

from cotwatch.domain.models import PositionReport


class TrackHistoryBuffer:
    def __init__(self, *, max_points_per_entity: int = 5000):
        if int(max_points_per_entity) < 2:
            raise ValueError("max_points_per_entity must be >= 2")
        self._max_points = int(max_points_per_entity)
        self._tracks: dict[str, list[PositionReport]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, entity_id: str) -> threading.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(entity_id, threading.Lock())
        return lock

    def append(self, report: PositionReport) -> bool:
        """Insert `report` in time order; returns False for a duplicate timestamp."""
        with self._lock_for(report.id):
            track = self._tracks.setdefault(report.id, [])
            idx = bisect_left(track, report.observed_at, key=lambda r: r.observed_at)
            if idx < len(track) and track[idx].observed_at == report.observed_at:
                return False
            track.insert(idx, report)
            if len(track) > self._max_points:
                del track[: len(track) - self._max_points]
            return True

    def window(
        self, entity_id: str, *, start: datetime | None = None, end: datetime | None = None
    ) -> list[PositionReport]:
        """Chronologically sorted reports with `start <= observed_at <= end`."""
        if entity_id not in self._tracks:
            return []
        with self._lock_for(entity_id):
            track = list(self._tracks.get(entity_id, ()))
        return [
            r
            for r in track
            if (start is None or r.observed_at >= start) and (end is None or r.observed_at <= end)
        ]

    def count(self, entity_id: str) -> int:
        return len(self._tracks.get(entity_id, ()))

    def __len__(self) -> int:
        return len(self._tracks)

    def forget(self, entity_id: str) -> None:
        """Drop the track and its lock (called when the entity leaves the state store)."""
        with self._locks_guard:
            lock = self._locks.pop(entity_id, None)
        if lock is None:
            self._tracks.pop(entity_id, None)
            return
        with lock:
            self._tracks.pop(entity_id, None)
