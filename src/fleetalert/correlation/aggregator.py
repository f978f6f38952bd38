"""Per-vehicle sliding window with grace-period debounce.

Each vehicle owns a :class:`VehicleBuffer`. Incidents are appended as
they arrive and purged lazily once they fall out of the window. When the
number of distinct incident codes reaches the configured threshold a
single grace timer is scheduled; when it fires the window is re-checked
against the current clock and, if the pattern still holds, one snapshot
per distinct code is handed to the :class:`FlushDispatcher`.

States of a buffer::

    IDLE -> ACCUMULATING -> PENDING -> COOLDOWN
                 ^              |
                 +--------------+   (pattern aged out during grace)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from fleetalert.config import AggregationSettings
from fleetalert.correlation.dispatcher import DispatchReport, FlushDispatcher, Snapshot, VehicleId
from fleetalert.correlation.policy import in_cooldown, threshold_met, window_cutoff
from fleetalert.correlation.scheduler import Scheduler, TimerHandle
from fleetalert.models.incident import Incident

_logger = logging.getLogger(__name__)


class BufferState(StrEnum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    PENDING = "pending"
    COOLDOWN = "cooldown"


class RecordOutcome(StrEnum):
    ACCUMULATING = "accumulating"
    SCHEDULED = "scheduled"
    PENDING = "pending"
    COOLDOWN = "cooldown"


class FlushOutcome(StrEnum):
    FLUSHED = "flushed"
    AGED_OUT = "aged_out"
    DROPPED = "dropped"


@dataclass(frozen=True, slots=True)
class FlushResult:
    vehicle_id: VehicleId
    outcome: FlushOutcome
    snapshot: Snapshot = ()
    report: DispatchReport | None = None


@dataclass
class VehicleBuffer:
    """Incidents retained for one vehicle plus its flush bookkeeping."""

    incidents: list[Incident] = field(default_factory=list)
    last_flush_at: float | None = None
    pending_timer: TimerHandle | None = None

    def purge(self, cutoff: float) -> None:
        self.incidents = [incident for incident in self.incidents if incident.occurred_at >= cutoff]

    def unique_codes(self) -> set[str]:
        return {incident.code for incident in self.incidents}

    def earliest_by_code(self) -> dict[str, Incident]:
        earliest: dict[str, Incident] = {}
        for incident in self.incidents:
            current = earliest.get(incident.code)
            if current is None or incident.occurred_at < current.occurred_at:
                earliest[incident.code] = incident
        return earliest


class WindowAggregator:
    """Correlate incidents per vehicle and trigger consolidated flushes.

    ``record`` is synchronous and never suspends; only the flush itself
    awaits the dispatcher's listeners.
    """

    def __init__(
        self,
        settings: AggregationSettings,
        dispatcher: FlushDispatcher,
        scheduler: Scheduler,
        *,
        on_result: Callable[[FlushResult], None] | None = None,
    ) -> None:
        self._settings = settings
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._on_result = on_result
        self._buffers: dict[VehicleId, VehicleBuffer] = {}

    @property
    def settings(self) -> AggregationSettings:
        return self._settings

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def _buffer(self, vehicle_id: VehicleId) -> VehicleBuffer:
        buffer = self._buffers.get(vehicle_id)
        if buffer is None:
            buffer = VehicleBuffer()
            self._buffers[vehicle_id] = buffer
        return buffer

    def _cutoff(self, now: float) -> float:
        return window_cutoff(now, self._settings.window_seconds)

    def _threshold_met(self, unique_count: int) -> bool:
        return threshold_met(unique_count, self._settings.required_unique_events, self._settings.threshold_policy)

    def record(self, vehicle_id: VehicleId, incident: Incident) -> RecordOutcome:
        """Add an admitted incident and schedule a flush if a pattern formed."""
        now = self._scheduler.now()
        buffer = self._buffer(vehicle_id)
        buffer.incidents.append(incident)
        buffer.purge(self._cutoff(now))
        unique_count = len(buffer.unique_codes())

        if buffer.pending_timer is not None:
            return RecordOutcome.PENDING
        if in_cooldown(now, buffer.last_flush_at, self._settings.window_seconds):
            return RecordOutcome.COOLDOWN
        if not self._threshold_met(unique_count):
            return RecordOutcome.ACCUMULATING

        async def _fire() -> FlushResult:
            return await self.flush_due(vehicle_id, origin=buffer)

        buffer.pending_timer = self._scheduler.call_later(self._settings.grace_seconds, _fire)
        _logger.debug(
            "Vehicle %s reached %d distinct incident types; flush in %.1fs",
            vehicle_id,
            unique_count,
            self._settings.grace_seconds,
        )
        return RecordOutcome.SCHEDULED

    async def flush_due(self, vehicle_id: VehicleId, *, origin: VehicleBuffer | None = None) -> FlushResult:
        """Timer body: re-validate the window and dispatch the snapshot.

        *origin* is the buffer that scheduled the timer. When the vehicle was
        dropped and its buffer recreated since, the callback is stale and
        the flush is reported as ``DROPPED`` without touching the new buffer.
        """
        buffer = self._buffers.get(vehicle_id)
        if buffer is None or (origin is not None and buffer is not origin):
            return self._emit(FlushResult(vehicle_id=vehicle_id, outcome=FlushOutcome.DROPPED))

        try:
            now = self._scheduler.now()
            buffer.purge(self._cutoff(now))
            earliest = buffer.earliest_by_code()
            if not self._threshold_met(len(earliest)):
                _logger.debug(
                    "Vehicle %s pattern no longer holds at flush time (%d distinct)",
                    vehicle_id,
                    len(earliest),
                )
                return self._emit(FlushResult(vehicle_id=vehicle_id, outcome=FlushOutcome.AGED_OUT))

            snapshot: Snapshot = tuple(sorted(earliest.values(), key=lambda incident: incident.occurred_at))
            buffer.last_flush_at = now
        finally:
            buffer.pending_timer = None

        _logger.info(
            "Flushing %d correlated incidents for vehicle %s: %s",
            len(snapshot),
            vehicle_id,
            ", ".join(incident.code for incident in snapshot),
        )
        report = await self._dispatcher.dispatch(vehicle_id, snapshot)
        return self._emit(
            FlushResult(vehicle_id=vehicle_id, outcome=FlushOutcome.FLUSHED, snapshot=snapshot, report=report)
        )

    def _emit(self, result: FlushResult) -> FlushResult:
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                _logger.debug("Flush result sink failed", exc_info=True)
        return result

    def state(self, vehicle_id: VehicleId) -> BufferState:
        buffer = self._buffers.get(vehicle_id)
        if buffer is None:
            return BufferState.IDLE
        now = self._scheduler.now()
        if buffer.pending_timer is not None:
            return BufferState.PENDING
        if in_cooldown(now, buffer.last_flush_at, self._settings.window_seconds):
            return BufferState.COOLDOWN
        cutoff = self._cutoff(now)
        if any(incident.occurred_at >= cutoff for incident in buffer.incidents):
            return BufferState.ACCUMULATING
        return BufferState.IDLE

    def has_pending_timer(self, vehicle_id: VehicleId) -> bool:
        buffer = self._buffers.get(vehicle_id)
        return buffer is not None and buffer.pending_timer is not None

    def snapshot(self, vehicle_id: VehicleId) -> list[Incident]:
        """Currently buffered incidents sorted by occurrence (debug aid)."""
        buffer = self._buffers.get(vehicle_id)
        if buffer is None:
            return []
        return sorted(buffer.incidents, key=lambda incident: incident.occurred_at)

    def drop_vehicle(self, vehicle_id: VehicleId) -> bool:
        """Forget a vehicle's buffer, cancelling any pending timer."""
        buffer = self._buffers.pop(vehicle_id, None)
        if buffer is None:
            return False
        if buffer.pending_timer is not None:
            buffer.pending_timer.cancel()
            buffer.pending_timer = None
        return True

    def sweep(self) -> int:
        """Drop idle buffers so silent vehicles do not pin memory."""
        idle = [vehicle_id for vehicle_id in self._buffers if self.state(vehicle_id) == BufferState.IDLE]
        for vehicle_id in idle:
            del self._buffers[vehicle_id]
        return len(idle)

    def close(self) -> None:
        for buffer in self._buffers.values():
            if buffer.pending_timer is not None:
                buffer.pending_timer.cancel()
                buffer.pending_timer = None
