from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from conftest import ManualScheduler, state_frame

from fleetalert.config import AggregationSettings, FleetAlertConfig
from fleetalert.correlation.aggregator import BufferState, FlushOutcome, FlushResult, RecordOutcome
from fleetalert.correlation.dispatcher import Snapshot
from fleetalert.correlation.scheduler import LoopScheduler
from fleetalert.models.incident import IncidentRecord
from fleetalert.notify.alert import AlertMessage
from fleetalert.service import FleetAlertService, IngestOutcome

TRACKER_ID = 3051
SOURCE_ID = 101


@dataclass
class FakeFleetBackend:
    trackers: list[dict[str, Any]] = field(
        default_factory=lambda: [{"id": TRACKER_ID, "label": "Unit 12", "source": {"id": SOURCE_ID}}]
    )
    calls: dict[str, int] = field(default_factory=dict)
    login_should_fail: bool = False
    label_should_fail: bool = False
    expire_once_endpoints: set[str] = field(default_factory=set)
    _expired_already: set[str] = field(default_factory=set)

    def _record_call(self, endpoint: str) -> None:
        self.calls[endpoint] = self.calls.get(endpoint, 0) + 1

    async def post_json(self, endpoint: str, payload: Any) -> dict[str, Any]:
        self._record_call(endpoint)

        if endpoint in self.expire_once_endpoints and endpoint not in self._expired_already:
            self._expired_already.add(endpoint)
            return {"success": False, "status": {"code": 4, "description": "User not found or session ended"}}

        if endpoint == "/v2/user/auth":
            if self.login_should_fail:
                return {"success": False, "status": {"code": 11, "description": "Access denied"}}
            return {"success": True, "hash": f"hash-{self.calls[endpoint]}"}

        if endpoint == "/v2/tracker/list":
            return {"success": True, "list": list(self.trackers)}

        if endpoint == "/v2/tracker/read":
            if self.label_should_fail:
                return {"success": False, "status": {"code": 201, "description": "Not found in the database"}}
            for tracker in self.trackers:
                if tracker["id"] == payload["tracker_id"]:
                    return {"success": True, "value": {"id": tracker["id"], "label": tracker["label"]}}
            return {"success": False, "status": {"code": 201, "description": "Not found in the database"}}

        raise AssertionError(f"Unexpected endpoint: {endpoint}")


@dataclass
class RecordingNotifier:
    alerts: list[AlertMessage] = field(default_factory=list)

    async def send_alert(self, alert: AlertMessage) -> int:
        self.alerts.append(alert)
        return 1


@dataclass
class SlowNotifier(RecordingNotifier):
    started: asyncio.Event = field(default_factory=asyncio.Event)

    async def send_alert(self, alert: AlertMessage) -> int:
        self.started.set()
        await asyncio.sleep(0.05)
        return await super().send_alert(alert)


@dataclass
class RecordingPersister:
    records: list[IncidentRecord] = field(default_factory=list)
    should_fail: bool = False

    async def log_incident(self, record: IncidentRecord) -> None:
        if self.should_fail:
            raise OSError("disk full")
        self.records.append(record)


@dataclass
class Harness:
    service: FleetAlertService
    backend: FakeFleetBackend
    scheduler: ManualScheduler
    notifier: RecordingNotifier
    persister: RecordingPersister
    results: list[FlushResult]


def _harness(scheduler: ManualScheduler, backend: FakeFleetBackend | None = None) -> Harness:
    backend = backend or FakeFleetBackend()
    notifier = RecordingNotifier()
    persister = RecordingPersister()
    results: list[FlushResult] = []
    config = FleetAlertConfig(
        login="fleet@example.com",
        password="secret",
        company_id=7,
        aggregation=AggregationSettings(window_seconds=300, grace_seconds=30, required_unique_events=3),
    )
    service = FleetAlertService(
        config,
        transport=backend,
        scheduler=scheduler,
        persister=persister,
        notifier=notifier,
        on_flush_result=results.append,
    )
    return Harness(service, backend, scheduler, notifier, persister, results)


@pytest_asyncio.fixture
async def harness(scheduler: ManualScheduler) -> Harness:
    h = _harness(scheduler)
    await h.service.refresh_trackers()
    return h


@pytest.mark.asyncio
async def test_three_incident_types_produce_one_alert(harness: Harness) -> None:
    service, scheduler = harness.service, harness.scheduler

    for code in ("42", "47", "46"):
        results = await service.handle_message(state_frame(SOURCE_ID, code))
        assert [result.outcome for result in results] == [IngestOutcome.ACCEPTED]
        await scheduler.advance(0.3)

    assert service.aggregator.state(TRACKER_ID) == BufferState.PENDING
    await scheduler.advance(30.0)

    assert len(harness.notifier.alerts) == 1
    alert = harness.notifier.alerts[0]
    assert alert.vehicle_id == TRACKER_ID
    assert alert.label == "Unit 12"
    assert alert.event_names == ("Panic button", "Harsh braking", "Harsh acceleration")
    assert alert.coords == "20.34,-102.47"
    assert alert.event_date == "01 January 2026, 00:00:00"
    assert [result.outcome for result in harness.results] == [FlushOutcome.FLUSHED]
    assert len(harness.persister.records) == 3
    assert harness.persister.records[0].company_id == 7
    assert harness.persister.records[0].event_type == "state_batch"


@pytest.mark.asyncio
async def test_redelivered_event_is_suppressed(harness: Harness) -> None:
    service, scheduler = harness.service, harness.scheduler

    first = await service.handle_message(state_frame(SOURCE_ID, "42"))
    await scheduler.advance(2.0)
    second = await service.handle_message(state_frame(SOURCE_ID, "42"))
    await scheduler.advance(2.0)
    other = await service.handle_message(state_frame(SOURCE_ID, "47"))

    assert first[0].outcome == IngestOutcome.ACCEPTED
    assert second[0].outcome == IngestOutcome.DUPLICATE
    assert other[0].record == RecordOutcome.ACCUMULATING
    assert len(service.aggregator.snapshot(TRACKER_ID)) == 2
    assert len(harness.persister.records) == 2


@pytest.mark.asyncio
async def test_top_level_code_is_accepted(harness: Harness) -> None:
    results = await harness.service.handle_message(state_frame(SOURCE_ID, "12", nested=False))
    assert results[0].outcome == IngestOutcome.ACCEPTED
    assert results[0].incident is not None
    assert results[0].incident.name == "Power cut"


@pytest.mark.asyncio
async def test_unknown_source_and_untracked_codes(harness: Harness) -> None:
    service = harness.service

    unknown = await service.handle_message(state_frame(999, "42"))
    untracked = await service.handle_message(state_frame(SOURCE_ID, "7"))
    slow = await service.handle_message(state_frame(SOURCE_ID, "33", speed=40.0))

    assert unknown[0].outcome == IngestOutcome.UNKNOWN_SOURCE
    assert untracked[0].outcome == IngestOutcome.NOT_INCIDENT
    assert slow[0].outcome == IngestOutcome.NOT_INCIDENT
    assert harness.persister.records == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message",
    [
        {},
        {"type": "response", "event": "subscribe", "data": []},
        {"type": "event", "event": "state_batch", "data": [{"type": "source_state_event", "state": {"gps": {}}}]},
    ],
)
async def test_malformed_or_foreign_frames_are_dropped(harness: Harness, message: dict[str, Any]) -> None:
    results = await harness.service.handle_message(message)
    assert all(result.outcome == IngestOutcome.MALFORMED for result in results)
    assert len(harness.service.aggregator) == 0


@pytest.mark.asyncio
async def test_persistence_failure_does_not_block_aggregation(harness: Harness) -> None:
    harness.persister.should_fail = True

    for code in ("42", "47", "46"):
        results = await harness.service.handle_message(state_frame(SOURCE_ID, code))
        assert results[0].outcome == IngestOutcome.ACCEPTED

    await harness.scheduler.advance(30.0)
    assert len(harness.notifier.alerts) == 1


@pytest.mark.asyncio
async def test_label_lookup_failure_falls_back_to_tracker_id(harness: Harness) -> None:
    harness.backend.label_should_fail = True

    for code in ("42", "47", "46"):
        await harness.service.handle_message(state_frame(SOURCE_ID, code))
    await harness.scheduler.advance(30.0)

    assert harness.notifier.alerts[0].label == str(TRACKER_ID)


@pytest.mark.asyncio
async def test_expired_session_reauthenticates_once(scheduler: ManualScheduler) -> None:
    backend = FakeFleetBackend(expire_once_endpoints={"/v2/tracker/list"})
    h = _harness(scheduler, backend)

    trackers = await h.service.refresh_trackers()

    assert [tracker.id for tracker in trackers] == [TRACKER_ID]
    assert backend.calls["/v2/user/auth"] == 2
    assert backend.calls["/v2/tracker/list"] == 2
    assert await h.service.ensure_session() == "hash-2"


@pytest.mark.asyncio
async def test_removed_tracker_loses_its_window(harness: Harness) -> None:
    service, backend = harness.service, harness.backend

    for code in ("42", "47", "46"):
        await service.handle_message(state_frame(SOURCE_ID, code))
    assert harness.scheduler.pending

    backend.trackers = []
    await service.refresh_trackers()
    await harness.scheduler.advance(60.0)

    assert TRACKER_ID not in service.aggregator
    assert harness.notifier.alerts == []
    assert service.deduplicator.record_for(TRACKER_ID, "42") is None


@pytest.mark.asyncio
async def test_extra_flush_listener_runs_after_notifier(harness: Harness) -> None:
    order: list[str] = []

    async def audit(vehicle_id: str | int, snapshot: Snapshot) -> None:
        order.append(f"audit:{vehicle_id}:{len(snapshot)}")

    harness.service.add_flush_listener(audit)
    for code in ("42", "47", "46"):
        await harness.service.handle_message(state_frame(SOURCE_ID, code))
    await harness.scheduler.advance(30.0)

    assert len(harness.notifier.alerts) == 1
    assert order == [f"audit:{TRACKER_ID}:3"]


@pytest.mark.asyncio
async def test_string_source_ids_are_resolved(harness: Harness) -> None:
    frame = state_frame(SOURCE_ID, "42")
    frame["data"][0]["state"]["source_id"] = str(SOURCE_ID)

    results = await harness.service.handle_message(frame)

    assert results[0].outcome == IngestOutcome.ACCEPTED
    assert results[0].tracker_id == TRACKER_ID


@pytest.mark.asyncio
async def test_stop_waits_for_a_flush_already_in_flight() -> None:
    notifier = SlowNotifier()
    config = FleetAlertConfig(
        login="fleet@example.com",
        password="secret",
        aggregation=AggregationSettings(window_seconds=300, grace_seconds=0.01, required_unique_events=3),
    )
    service = FleetAlertService(
        config,
        transport=FakeFleetBackend(),
        scheduler=LoopScheduler(),
        persister=RecordingPersister(),
        notifier=notifier,
    )
    await service.refresh_trackers()

    for code in ("42", "47", "46"):
        await service.handle_message(state_frame(SOURCE_ID, code))
    await asyncio.wait_for(notifier.started.wait(), timeout=1.0)
    assert notifier.alerts == []

    await service.stop()

    assert len(notifier.alerts) == 1
    assert notifier.alerts[0].event_names == ("Panic button", "Harsh braking", "Harsh acceleration")
