"""
In-memory geofence alert log.

Bounded (oldest alerts fall off first), queryable by severity / transition / time range /
acknowledgement, newest first.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from cotwatch.domain.errors import AlertNotFound
from cotwatch.domain.models import GeofenceAlert, Severity, Transition


@dataclass(frozen=True)
class AlertStats:
    total: int
    by_severity: dict[str, int]
    acknowledged: int
    unacknowledged: int

    def as_dict(self) -> dict:
        return {
            "total": int(self.total),
            "by_severity": dict(self.by_severity),
            "acknowledged": int(self.acknowledged),
            "unacknowledged": int(self.unacknowledged),
        }


class AlertLog:
    def __init__(self, *, max_alerts: int = 10_000):
        self._alerts: deque[GeofenceAlert] = deque(maxlen=int(max_alerts))
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._alerts)

    def record(self, alert: GeofenceAlert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def record_many(self, alerts: Iterable[GeofenceAlert]) -> None:
        with self._lock:
            self._alerts.extend(alerts)

    def query(
        self,
        *,
        severities: Iterable[Severity] | None = None,
        transition: Transition | None = None,
        geofence_id: str | None = None,
        entity_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        acknowledged: bool | None = None,
    ) -> list[GeofenceAlert]:
        wanted = set(severities) if severities else None
        with self._lock:
            alerts = list(self._alerts)
        out = [
            a
            for a in alerts
            if (wanted is None or a.severity in wanted)
            and (transition is None or a.transition == transition)
            and (geofence_id is None or a.geofence_id == geofence_id)
            and (entity_id is None or a.entity_id == entity_id)
            and (since is None or a.at >= since)
            and (until is None or a.at <= until)
            and (acknowledged is None or a.acknowledged == acknowledged)
        ]
        out.sort(key=lambda a: a.at, reverse=True)
        return out

    def acknowledge(self, alert_id: str) -> GeofenceAlert:
        with self._lock:
            for i, alert in enumerate(self._alerts):
                if alert.id == alert_id:
                    updated = alert.model_copy(update={"acknowledged": True})
                    self._alerts[i] = updated
                    return updated
        raise AlertNotFound(alert_id)

    def stats(self, alerts: Iterable[GeofenceAlert] | None = None) -> AlertStats:
        if alerts is None:
            with self._lock:
                alerts = list(self._alerts)
        else:
            alerts = list(alerts)
        by_severity = Counter(a.severity for a in alerts)
        acked = sum(1 for a in alerts if a.acknowledged)
        return AlertStats(
            total=len(alerts),
            by_severity={s: by_severity.get(s, 0) for s in ("critical", "high", "medium", "low")},
            acknowledged=acked,
            unacknowledged=len(alerts) - acked,
        )
