"""JSON-over-HTTP transport for the fleet platform API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from fleetalert._redact import redact_for_log
from fleetalert.exceptions import FleetTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Endpoint helpers only depend on this protocol so tests can pass a
    fake backend instead of the aiohttp implementation.
    """

    async def post_json(self, endpoint: str, payload: Mapping[str, Any]) -> dict[str, Any]: ...


class HttpTransport:
    """POST JSON bodies to ``{base_url}{endpoint}`` and decode JSON replies."""

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def post_json(self, endpoint: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{endpoint}"
        _logger.debug("POST %s body=%s", url, redact_for_log(payload))

        try:
            async with self._http.post(url, json=dict(payload), timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise FleetTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except FleetTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise FleetTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FleetTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, dict):
            raise FleetTransportError(f"Response from {endpoint} is not an object", endpoint=endpoint)

        _logger.debug("Response %s body=%s", endpoint, redact_for_log(body))
        return body
