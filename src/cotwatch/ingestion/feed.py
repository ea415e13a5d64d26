"""
Live event feed.

Wraps the wire client's raw event source as a cancellable iterator of `PositionReport`s:
- malformed events are logged and skipped, never fatal to the stream
- `cancel()` stops iteration at the next event boundary (safe to call from another thread)
- `pump(context)` drives ingestion until the source ends or the feed is cancelled

Redelivery after a reconnect is harmless: the store drops reports that are not newer.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Mapping, Protocol

from cotwatch.config.settings import NormalizerSettings
from cotwatch.domain.models import PositionReport
from cotwatch.ingestion.normalizer import try_normalize_event

if TYPE_CHECKING:
    from cotwatch.state.context import EngineContext

logger = logging.getLogger(__name__)


class OutboundSink(Protocol):
    """Anything that can relay an outbound CoT descriptor (overlay, emergency) to the network."""

    def __call__(self, descriptor: Mapping[str, Any]) -> None: ...


@dataclass
class FeedStats:
    received: int = 0
    accepted: int = 0
    rejected: int = 0
    alerts: int = 0


def read_jsonl(path: str | Path) -> Iterator[dict[str, Any]]:
    """Yield decoded events from a JSON-lines file (blank lines are skipped)."""
    with Path(path).open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping invalid JSON at %s:%s: %s", path, lineno, e)
                continue
            if isinstance(obj, dict):
                yield obj
            else:
                logger.warning("Skipping non-object JSON at %s:%s", path, lineno)


class EventFeed:
    def __init__(
        self,
        source: Iterable[Mapping[str, Any]],
        *,
        settings: NormalizerSettings | None = None,
        timezone: str = "UTC",
    ):
        self._source = source
        self._settings = settings or NormalizerSettings()
        self._timezone = timezone
        self._cancelled = threading.Event()
        self.stats = FeedStats()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __iter__(self) -> Iterator[PositionReport]:
        for raw in self._source:
            if self._cancelled.is_set():
                logger.info("Event feed cancelled after %s events", self.stats.received)
                return
            self.stats.received += 1
            report, _ = try_normalize_event(raw, settings=self._settings, timezone=self._timezone)
            if report is None:
                self.stats.rejected += 1
                continue
            self.stats.accepted += 1
            yield report

    def pump(self, context: EngineContext) -> FeedStats:
        """Ingest every report from the feed into `context`; returns running stats."""
        for report in self:
            result = context.ingest(report)
            self.stats.alerts += len(result.alerts)
        return self.stats
