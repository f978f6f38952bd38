"""Websocket telemetry subscription with automatic reconnection."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from fleetalert.config import FleetAlertConfig
from fleetalert.models.telemetry import STATE_BATCH

MessageHandler = Callable[[dict[str, Any]], Awaitable[object]]
HashProvider = Callable[[], Awaitable[str]]


def build_subscribe_request(session_hash: str, rate_limit: str) -> dict[str, Any]:
    return {
        "action": "subscribe",
        "hash": session_hash,
        "iso_datetime": True,
        "requests": [
            {"type": STATE_BATCH, "target": {"type": "all"}, "rate_limit": rate_limit},
        ],
    }


def decode_frame(text: str) -> dict[str, Any] | None:
    """Parse a text frame; heartbeats and non-object JSON yield ``None``."""
    stripped = text.strip()
    # The platform interleaves plain-text heartbeats with JSON frames.
    if not stripped.startswith("{"):
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class TelemetryStream:
    """Subscribe to ``state_batch`` events and feed them to a handler.

    The connection is re-established ``ws_reconnect_delay`` seconds after
    every close or error until :meth:`stop` is called. Redelivery after a
    reconnect is expected; downstream deduplication absorbs it.
    """

    def __init__(
        self,
        config: FleetAlertConfig,
        http_session: aiohttp.ClientSession,
        *,
        hash_provider: HashProvider,
        on_message: MessageHandler,
        on_connect: Callable[[], Awaitable[object]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._hash_provider = hash_provider
        self._on_message = on_message
        self._on_connect = on_connect
        self._logger = logger or logging.getLogger(__name__)
        self._running = False
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Connect, consume and reconnect until stopped."""
        self._running = True
        while self._running:
            try:
                await self._run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.error("Telemetry stream error", exc_info=True)
            if not self._running:
                break
            self._logger.warning(
                "Telemetry stream closed; reconnecting in %.0fs",
                self._config.ws_reconnect_delay,
            )
            await asyncio.sleep(self._config.ws_reconnect_delay)

    async def _run_once(self) -> None:
        headers: dict[str, str] = {}
        if self._config.ws_origin:
            headers["Origin"] = self._config.ws_origin

        if self._on_connect is not None:
            await self._on_connect()

        async with self._http.ws_connect(self._config.ws_url, headers=headers, heartbeat=30.0) as ws:
            self._ws = ws
            try:
                session_hash = await self._hash_provider()
                await ws.send_json(build_subscribe_request(session_hash, self._config.ws_rate_limit))
                self._logger.info("Subscribed to telemetry state batches")

                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self._handle_text(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        self._logger.error("Telemetry websocket error: %s", ws.exception())
                        break
            finally:
                self._ws = None

    async def _handle_text(self, text: str) -> None:
        message = decode_frame(text)
        if message is None:
            self._logger.debug("Ignoring non-JSON telemetry frame")
            return
        try:
            await self._on_message(message)
        except Exception:
            self._logger.error("Telemetry message handler failed", exc_info=True)

    async def stop(self) -> None:
        self._running = False
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
