from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from fleetalert.correlation.scheduler import TimerCallback
from fleetalert.models.incident import Incident

T0 = 1_767_225_600.0  # 2026-01-01T00:00:00Z


@dataclass
class ManualTimer:
    due: float
    callback: TimerCallback
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualScheduler:
    """Deterministic scheduler: time only moves through :meth:`advance`."""

    current: float = T0
    timers: list[ManualTimer] = field(default_factory=list)
    results: list[Any] = field(default_factory=list)

    def now(self) -> float:
        return self.current

    def call_later(self, delay: float, callback: TimerCallback) -> ManualTimer:
        timer = ManualTimer(due=self.current + delay, callback=callback)
        self.timers.append(timer)
        return timer

    async def drain(self) -> None:
        return None

    @property
    def pending(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    async def advance(self, seconds: float) -> None:
        target = self.current + seconds
        while True:
            due = [timer for timer in self.pending if timer.due <= target]
            if not due:
                break
            timer = min(due, key=lambda candidate: candidate.due)
            self.current = max(self.current, timer.due)
            timer.fired = True
            self.results.append(await timer.callback())
        self.current = target


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


def make_incident(code: str, occurred_at: float, *, lat: float = 20.34, lng: float = -102.47) -> Incident:
    return Incident(code=code, name=f"Event {code}", occurred_at=occurred_at, lat=lat, lng=lng)


def state_frame(
    source_id: int,
    code: str,
    *,
    lat: float = 20.34,
    lng: float = -102.47,
    speed: float = 0.0,
    nested: bool = True,
    updated: str = "2026-01-01T06:00:00Z",
) -> dict[str, Any]:
    state: dict[str, Any] = {
        "source_id": source_id,
        "gps": {"updated": updated, "location": {"lat": lat, "lng": lng}, "speed": speed},
    }
    if nested:
        state["additional"] = {"event_code": {"value": code}}
    else:
        state["event_code"] = {"value": code}
    return {
        "type": "event",
        "event": "state_batch",
        "data": [{"type": "source_state_event", "state": state}],
    }
