from __future__ import annotations

import asyncio

import pytest

from fleetalert.correlation.scheduler import LoopScheduler


@pytest.mark.asyncio
async def test_loop_scheduler_runs_callback_after_delay() -> None:
    scheduler = LoopScheduler(clock=lambda: 42.0)
    fired = asyncio.Event()

    async def callback() -> str:
        fired.set()
        return "done"

    scheduler.call_later(0.01, callback)
    await asyncio.wait_for(fired.wait(), timeout=1.0)
    await scheduler.drain()

    assert scheduler.now() == 42.0


@pytest.mark.asyncio
async def test_cancelled_timer_never_fires() -> None:
    scheduler = LoopScheduler()
    calls: list[int] = []

    async def callback() -> None:
        calls.append(1)

    handle = scheduler.call_later(0.01, callback)
    handle.cancel()
    await asyncio.sleep(0.05)

    assert calls == []


@pytest.mark.asyncio
async def test_callback_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    scheduler = LoopScheduler()

    async def callback() -> None:
        raise RuntimeError("flush blew up")

    scheduler.call_later(0, callback)
    await asyncio.sleep(0.02)
    await scheduler.drain()

    assert "Scheduled callback failed" in caplog.text
