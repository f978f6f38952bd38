"""Fleet platform (Navixy) REST endpoints.

Only the lookups the alert pipeline needs: authentication, the tracker
list used to map telemetry sources to vehicles, and tracker labels
resolved when an alert is built.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from fleetalert._transport import Transport
from fleetalert.config import FleetAlertConfig
from fleetalert.exceptions import FleetApiError, FleetAuthenticationError, FleetSessionExpiredError
from fleetalert.models.tracker import Tracker

_logger = logging.getLogger(__name__)

#: Platform status codes meaning the session hash is no longer valid.
SESSION_EXPIRED_CODES: frozenset[str] = frozenset({"3", "4"})


def _raise_for_status(endpoint: str, response: dict[str, Any]) -> None:
    if response.get("success") is True:
        return
    status = response.get("status")
    code = ""
    description = ""
    if isinstance(status, dict):
        code = str(status.get("code", ""))
        description = str(status.get("description", ""))
    if code in SESSION_EXPIRED_CODES:
        raise FleetSessionExpiredError(
            f"{endpoint} failed: code={code} message={description}",
            code=code,
            endpoint=endpoint,
        )
    raise FleetApiError(
        f"{endpoint} failed: code={code} message={description}",
        code=code,
        endpoint=endpoint,
    )


async def authenticate(config: FleetAlertConfig, transport: Transport) -> str:
    """Log in and return the session hash."""
    endpoint = "/v2/user/auth"
    response = await transport.post_json(endpoint, {"login": config.login, "password": config.password})
    try:
        _raise_for_status(endpoint, response)
    except FleetApiError as exc:
        raise FleetAuthenticationError(str(exc), code=exc.code, endpoint=endpoint) from exc

    session_hash = response.get("hash")
    if not isinstance(session_hash, str) or not session_hash:
        raise FleetAuthenticationError("Authentication response missing hash", endpoint=endpoint)
    return session_hash


async def list_trackers(transport: Transport, session_hash: str) -> list[Tracker]:
    """Fetch every tracker visible to the account."""
    endpoint = "/v2/tracker/list"
    response = await transport.post_json(endpoint, {"hash": session_hash})
    _raise_for_status(endpoint, response)

    items = response.get("list")
    if not isinstance(items, list):
        raise FleetApiError("Tracker list response missing list", endpoint=endpoint)

    trackers: list[Tracker] = []
    for item in items:
        try:
            trackers.append(Tracker.model_validate(item))
        except ValidationError:
            _logger.debug("Skipping unparseable tracker entry %r", item)
    return trackers


async def read_tracker_label(transport: Transport, session_hash: str, tracker_id: int | str) -> str:
    """Resolve the human-readable label of a tracker."""
    endpoint = "/v2/tracker/read"
    response = await transport.post_json(endpoint, {"hash": session_hash, "tracker_id": tracker_id})
    _raise_for_status(endpoint, response)

    value = response.get("value")
    label = value.get("label") if isinstance(value, dict) else None
    if not isinstance(label, str) or not label:
        raise FleetApiError(f"Tracker {tracker_id} has no label", endpoint=endpoint)
    return label
