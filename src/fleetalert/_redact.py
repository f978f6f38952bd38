"""Debug-log scrubbing for platform and messaging payloads.

Navixy calls carry the account login, password and session hash; Graph
API bodies carry the access token and recipient phone numbers. Secrets
are hidden outright. Identifiers keep their last four characters so a
log line can still be matched to a subscriber or session.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset(
    {"password", "token", "access_token", "accesstoken", "authorization", "cookie"}
)
_MASKED_KEYS: frozenset[str] = frozenset({"hash", "login", "to"})

_HIDDEN = "<redacted>"
_MAX_DEPTH = 20


def mask_tail(value: Any, keep: int = 4) -> str:
    """``"5212227086105"`` -> ``"…6105"``; short values are hidden entirely."""
    text = str(value)
    if len(text) <= keep:
        return _HIDDEN
    return f"…{text[-keep:]}"


def _scrub_text(text: str, max_string: int) -> str:
    if text[:7].lower() == "bearer ":
        return f"Bearer {_HIDDEN}"
    if len(text) > max_string:
        return f"{text[:max_string]}…<truncated>"
    return text


def _scrub_entry(key: str, value: Any, max_string: int, depth: int) -> Any:
    lowered = key.lower()
    if lowered in _SECRET_KEYS:
        return _HIDDEN
    if lowered in _MASKED_KEYS and isinstance(value, (str, int)) and not isinstance(value, bool):
        return mask_tail(value)
    return redact_for_log(value, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to emit at DEBUG level.

    Mappings and lists/tuples are walked; scalars pass through; anything
    else is logged by ``repr``.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _scrub_text(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {str(k): _scrub_entry(str(k), v, max_string, _depth) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
