"""Repeat-delivery suppression.

Telemetry streams redeliver the same physical event several times in
quick succession (and again after a reconnect). The deduplicator
collapses those repeats per ``(vehicle, code)`` using a time and
position tolerance, without needing sequence numbers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from fleetalert.config import DedupSettings
from fleetalert.correlation.policy import coordinate_distance

_logger = logging.getLogger(__name__)

DedupKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class DedupRecord:
    last_seen_at: float
    last_lat: float
    last_lng: float


class Deduplicator:
    """In-memory last-seen table keyed by ``(vehicle_id, code)``."""

    def __init__(
        self,
        settings: DedupSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or DedupSettings()
        self._clock = clock
        self._records: dict[DedupKey, DedupRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def record_for(self, vehicle_id: str | int, code: str) -> DedupRecord | None:
        return self._records.get((str(vehicle_id), code))

    def is_duplicate(self, vehicle_id: str | int, code: str, lat: float, lng: float) -> bool:
        """Report whether this delivery repeats the last admitted one.

        A non-duplicate becomes the new last-seen entry. A duplicate
        leaves the entry untouched, so a storm of repeats cannot extend
        the suppression window indefinitely.
        """
        key = (str(vehicle_id), code)
        now = self._clock()
        previous = self._records.get(key)
        if previous is not None:
            recent = now - previous.last_seen_at < self._settings.window_seconds
            nearby = (
                coordinate_distance(previous.last_lat, previous.last_lng, lat, lng)
                <= self._settings.distance_tolerance
            )
            if recent and nearby:
                _logger.debug("Suppressed repeat of code %s for vehicle %s", code, vehicle_id)
                return True

        self._records[key] = DedupRecord(last_seen_at=now, last_lat=lat, last_lng=lng)
        return False

    def sweep(self, now: float | None = None) -> int:
        """Evict records older than the retention window; return how many."""
        if now is None:
            now = self._clock()
        cutoff = now - self._settings.retention_seconds
        expired = [key for key, record in self._records.items() if record.last_seen_at < cutoff]
        for key in expired:
            del self._records[key]
        if expired:
            _logger.debug("Dedup sweep evicted %d records", len(expired))
        return len(expired)

    def forget_vehicle(self, vehicle_id: str | int) -> None:
        vid = str(vehicle_id)
        for key in [key for key in self._records if key[0] == vid]:
            del self._records[key]
