"""Clock and timer capability used by the window aggregator.

The aggregator never touches the event loop directly: it asks a
:class:`Scheduler` for the current time and for delayed callbacks. Tests
substitute a manually advanced scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

_logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[object]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Structural scheduler interface."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle: ...

    async def drain(self) -> None: ...


class _LoopTimer:
    """Runs an async callback once after a delay on an asyncio loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: TimerCallback,
        tasks: set[asyncio.Task[object]],
    ) -> None:
        self._loop = loop
        self._callback = callback
        self._tasks = tasks
        self._handle = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        task = self._loop.create_task(self._run())
        # Keep a strong reference until the callback completes.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> object:
        try:
            return await self._callback()
        except Exception:
            _logger.exception("Scheduled callback failed")
            return None

    def cancel(self) -> None:
        self._handle.cancel()


class LoopScheduler:
    """:class:`Scheduler` backed by ``loop.call_later``.

    Parameters
    ----------
    loop
        Event loop to schedule on. Defaults to the running loop at the
        time ``call_later`` is invoked.
    clock
        Wall clock in epoch seconds; incidents are stamped with it.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._loop = loop
        self._clock = clock
        self._tasks: set[asyncio.Task[object]] = set()

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _LoopTimer(loop, max(0.0, delay), callback, self._tasks)

    async def drain(self) -> None:
        """Wait for callbacks that already fired to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
