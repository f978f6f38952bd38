"""High-level async service wiring the alert pipeline together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, TypeVar

import aiohttp
from pydantic import ValidationError

from fleetalert._api import navixy as _navixy_api
from fleetalert._stream import TelemetryStream
from fleetalert._transport import HttpTransport, Transport
from fleetalert.config import FleetAlertConfig
from fleetalert.correlation.aggregator import FlushResult, RecordOutcome, WindowAggregator
from fleetalert.correlation.dedup import Deduplicator
from fleetalert.correlation.dispatcher import FlushDispatcher, FlushListener, Snapshot, VehicleId
from fleetalert.correlation.scheduler import LoopScheduler, Scheduler
from fleetalert.exceptions import FleetAlertError, FleetSessionExpiredError
from fleetalert.ingestion.classifier import EventClassifier, parse_source_state
from fleetalert.models.incident import Incident, IncidentRecord
from fleetalert.models.telemetry import StateBatchMessage
from fleetalert.models.tracker import Tracker
from fleetalert.notify.alert import AlertMessage, build_alert
from fleetalert.notify.whatsapp import WhatsAppNotifier
from fleetalert.persistence import IncidentPersister, SqliteIncidentLog

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class IngestOutcome(StrEnum):
    MALFORMED = "malformed"
    UNKNOWN_SOURCE = "unknown_source"
    NOT_INCIDENT = "not_incident"
    DUPLICATE = "duplicate"
    ACCEPTED = "accepted"


@dataclass(frozen=True, slots=True)
class IngestResult:
    """What happened to one ``source_state_event`` item."""

    outcome: IngestOutcome
    source_id: int | str | None = None
    tracker_id: VehicleId | None = None
    incident: Incident | None = None
    record: RecordOutcome | None = None


class AlertNotifier(Protocol):
    """Structural notifier interface (see :class:`WhatsAppNotifier`)."""

    async def send_alert(self, alert: AlertMessage) -> int: ...


class FleetAlertService:
    """Correlate fleet telemetry into consolidated safety alerts.

    Usage::

        async with FleetAlertService(config) as service:
            await service.start()
            await service.wait_closed()
    """

    def __init__(
        self,
        config: FleetAlertConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        scheduler: Scheduler | None = None,
        persister: IncidentPersister | None = None,
        notifier: AlertNotifier | None = None,
        on_flush_result: Callable[[FlushResult], None] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._persister = persister
        self._notifier = notifier
        self._owned_log: SqliteIncidentLog | None = None

        self._classifier = EventClassifier(config, clock=self._scheduler.now)
        self._dedup = Deduplicator(config.dedup, clock=self._scheduler.now)
        self._dispatcher = FlushDispatcher()
        self._aggregator = WindowAggregator(
            config.aggregation,
            self._dispatcher,
            self._scheduler,
            on_result=on_flush_result,
        )
        self._dispatcher.register(self._notify_flush)

        self._session_hash: str | None = None
        self._source_to_tracker: dict[int | str, int] = {}
        self._stream: TelemetryStream | None = None
        self._tasks: list[asyncio.Task[Any]] = []

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetAlertService:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._transport is None:
            self._transport = HttpTransport(self._config.api_url, self._http_session)
        if self._notifier is None and self._config.notifications_enabled:
            self._notifier = WhatsAppNotifier(self._config, self._http_session)
        if self._persister is None and self._config.database_path:
            self._owned_log = SqliteIncidentLog(self._config.database_path)
            self._persister = self._owned_log
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
        if self._owned_log is not None:
            self._owned_log.close()
            self._owned_log = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    @property
    def aggregator(self) -> WindowAggregator:
        return self._aggregator

    @property
    def deduplicator(self) -> Deduplicator:
        return self._dedup

    @property
    def trackers(self) -> dict[int | str, int]:
        """Current source id → tracker id map."""
        return dict(self._source_to_tracker)

    def add_flush_listener(self, listener: FlushListener) -> None:
        """Register an extra listener; it runs after the built-in notifier."""
        self._dispatcher.register(listener)

    async def start(self, *, stream: bool = True) -> None:
        """Load the fleet, start the sweep loop and (optionally) the stream."""
        await self.refresh_trackers()
        self._tasks.append(asyncio.create_task(self._sweep_loop(), name="fleetalert-sweep"))
        if stream:
            if self._http_session is None:
                raise FleetAlertError("Service not initialized. Use 'async with FleetAlertService(...)'")
            self._stream = TelemetryStream(
                self._config,
                self._http_session,
                hash_provider=self.ensure_session,
                on_message=self.handle_message,
                on_connect=self.refresh_trackers,
            )
            self._tasks.append(asyncio.create_task(self._stream.run(), name="fleetalert-stream"))

    async def wait_closed(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self) -> None:
        if self._stream is not None:
            await self._stream.stop()
            self._stream = None
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._aggregator.close()
        # Flushes whose timer already fired still hold the notifier.
        await self._scheduler.drain()

    # ------------------------------------------------------------------
    # Platform session + lookups
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise FleetAlertError("Service not initialized. Use 'async with FleetAlertService(...)'")
        return self._transport

    async def ensure_session(self) -> str:
        """Return the platform session hash, logging in when needed."""
        if self._session_hash is not None:
            return self._session_hash
        self._session_hash = await _navixy_api.authenticate(self._config, self._require_transport())
        _logger.debug("Authenticated against fleet platform")
        return self._session_hash

    def invalidate_session(self) -> None:
        self._session_hash = None

    async def _call_with_reauth(self, fn: Callable[[str], Awaitable[T]]) -> T:
        """Run a platform call, re-authenticating once on session expiry."""
        session_hash = await self.ensure_session()
        try:
            return await fn(session_hash)
        except FleetSessionExpiredError:
            self.invalidate_session()
            session_hash = await self.ensure_session()
            return await fn(session_hash)

    async def refresh_trackers(self) -> list[Tracker]:
        """Rebuild the source → tracker map; forget vehicles that left the fleet."""
        transport = self._require_transport()
        trackers = await self._call_with_reauth(lambda h: _navixy_api.list_trackers(transport, h))

        previous = set(self._source_to_tracker.values())
        self._source_to_tracker = {
            tracker.source_id: tracker.id for tracker in trackers if tracker.source_id is not None
        }
        for tracker in trackers:
            if tracker.source_id is not None:
                _logger.debug("Tracking %s (%s)", tracker.label, tracker.id)
        for removed in previous - set(self._source_to_tracker.values()):
            self.remove_vehicle(removed)
        _logger.info("Monitoring %d trackers", len(self._source_to_tracker))
        return trackers

    def set_trackers(self, mapping: Mapping[int | str, int]) -> None:
        """Install a source → tracker map without querying the platform."""
        self._source_to_tracker = dict(mapping)

    def remove_vehicle(self, tracker_id: VehicleId) -> None:
        """End a vehicle's lifecycle: drop its window and dedup history."""
        self._aggregator.drop_vehicle(tracker_id)
        self._dedup.forget_vehicle(tracker_id)

    async def resolve_label(self, tracker_id: VehicleId) -> str:
        transport = self._require_transport()
        try:
            return await self._call_with_reauth(lambda h: _navixy_api.read_tracker_label(transport, h, tracker_id))
        except FleetAlertError:
            _logger.warning("Could not resolve label for tracker %s", tracker_id, exc_info=True)
            return str(tracker_id)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _lookup_tracker(self, source_id: int | str) -> int | None:
        tracker_id = self._source_to_tracker.get(source_id)
        if tracker_id is None and isinstance(source_id, str) and source_id.isdigit():
            tracker_id = self._source_to_tracker.get(int(source_id))
        return tracker_id

    async def handle_message(self, message: Mapping[str, Any]) -> list[IngestResult]:
        """Process one decoded telemetry frame."""
        try:
            batch = StateBatchMessage.model_validate(dict(message))
        except (ValidationError, TypeError, ValueError):
            _logger.debug("Dropping malformed telemetry frame")
            return []
        if not batch.is_state_batch:
            return []

        results: list[IngestResult] = []
        for raw_state in batch.source_states():
            results.append(await self._handle_state(batch.event or "", raw_state))
        return results

    async def _handle_state(self, event_type: str, raw_state: dict[str, Any]) -> IngestResult:
        state = parse_source_state(raw_state)
        if state is None:
            return IngestResult(outcome=IngestOutcome.MALFORMED)

        tracker_id = self._lookup_tracker(state.source_id)
        if tracker_id is None:
            return IngestResult(outcome=IngestOutcome.UNKNOWN_SOURCE, source_id=state.source_id)

        incident = self._classifier.classify(state)
        if incident is None:
            return IngestResult(outcome=IngestOutcome.NOT_INCIDENT, source_id=state.source_id, tracker_id=tracker_id)

        if self._dedup.is_duplicate(tracker_id, incident.code, incident.lat, incident.lng):
            return IngestResult(
                outcome=IngestOutcome.DUPLICATE,
                source_id=state.source_id,
                tracker_id=tracker_id,
                incident=incident,
            )

        record_outcome = self._aggregator.record(tracker_id, incident)
        _logger.info("Incident %s | tracker %s | %s", incident.name, tracker_id, record_outcome)

        await self._persist(
            IncidentRecord(
                company_id=self._config.company_id,
                tracker_id=tracker_id,
                source_id=state.source_id,
                event_type=event_type,
                event_code=incident.code,
                event_name=incident.name,
                sub_event_code=state.sub_event_code,
                payload=raw_state,
            )
        )
        return IngestResult(
            outcome=IngestOutcome.ACCEPTED,
            source_id=state.source_id,
            tracker_id=tracker_id,
            incident=incident,
            record=record_outcome,
        )

    async def _persist(self, record: IncidentRecord) -> None:
        if self._persister is None:
            return
        try:
            await self._persister.log_incident(record)
        except Exception:
            _logger.error(
                "Persisting incident %s for tracker %s failed",
                record.event_code,
                record.tracker_id,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Flush handling
    # ------------------------------------------------------------------

    async def _notify_flush(self, vehicle_id: VehicleId, snapshot: Snapshot) -> None:
        label = await self.resolve_label(vehicle_id)
        alert = build_alert(vehicle_id, label, snapshot)
        _logger.warning(
            "Incident pattern detected | tracker=%s (%s) | events=%s",
            vehicle_id,
            label,
            ", ".join(alert.event_names),
        )
        if self._notifier is not None:
            await self._notifier.send_alert(alert)

    async def _sweep_loop(self) -> None:
        interval = self._config.dedup.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            evicted = self._dedup.sweep()
            dropped = self._aggregator.sweep()
            if evicted or dropped:
                _logger.debug("Sweep evicted %d dedup records, %d idle buffers", evicted, dropped)
