"""Flush fan-out to registered listeners."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from fleetalert.models.incident import Incident

_logger = logging.getLogger(__name__)

VehicleId = str | int
Snapshot = tuple[Incident, ...]
FlushListener = Callable[[VehicleId, Snapshot], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class ListenerFailure:
    """A listener that raised while handling a snapshot."""

    index: int
    listener: str
    error: BaseException


@dataclass(frozen=True, slots=True)
class DispatchReport:
    vehicle_id: VehicleId
    delivered: int
    failures: tuple[ListenerFailure, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.failures


def _describe(listener: FlushListener) -> str:
    return getattr(listener, "__qualname__", None) or repr(listener)


class FlushDispatcher:
    """Ordered registry of flush listeners.

    Listeners run sequentially in registration order; each one is awaited
    before the next starts. A failing listener is logged and reported but
    never prevents the remaining listeners from running.
    """

    def __init__(
        self,
        *,
        on_listener_error: Callable[[VehicleId, ListenerFailure], None] | None = None,
    ) -> None:
        self._listeners: list[FlushListener] = []
        self._on_listener_error = on_listener_error

    @property
    def listeners(self) -> tuple[FlushListener, ...]:
        return tuple(self._listeners)

    def register(self, listener: FlushListener) -> None:
        """Append *listener*. Registering the same callable twice fires it twice."""
        if not callable(listener):
            raise TypeError(f"flush listener must be callable, got {type(listener).__name__}")
        self._listeners.append(listener)

    async def dispatch(self, vehicle_id: VehicleId, snapshot: Sequence[Incident]) -> DispatchReport:
        frozen: Snapshot = tuple(snapshot)
        delivered = 0
        failures: list[ListenerFailure] = []

        # Iterate over a copy: listeners may register further listeners.
        for index, listener in enumerate(list(self._listeners)):
            try:
                result = listener(vehicle_id, frozen)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                failure = ListenerFailure(index=index, listener=_describe(listener), error=exc)
                failures.append(failure)
                _logger.warning(
                    "Flush listener %s failed for vehicle %s",
                    failure.listener,
                    vehicle_id,
                    exc_info=True,
                )
                self._report(vehicle_id, failure)
                continue
            delivered += 1

        return DispatchReport(vehicle_id=vehicle_id, delivered=delivered, failures=tuple(failures))

    def _report(self, vehicle_id: VehicleId, failure: ListenerFailure) -> None:
        if self._on_listener_error is None:
            return
        try:
            self._on_listener_error(vehicle_id, failure)
        except Exception:
            _logger.debug("Listener error sink failed", exc_info=True)
