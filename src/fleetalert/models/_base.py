"""Base model for fleet platform payloads.

Every telemetry/API model inherits from :class:`FleetBaseModel` which
provides:

* A ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default is used.
* A ``raw`` dict that captures the original payload.
* ``extra="ignore"`` so new platform fields never break parsing.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

# Sentinel strings the platform uses for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_platform_timestamp(value: Any) -> datetime | None:
    """Convert an ISO string or epoch number (seconds or ms) to a UTC datetime.

    Returns ``None`` when the value cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        # Navixy sends both "2026-01-01T10:00:00Z" and "2026-01-01 10:00:00".
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


PlatformTimestamp = Annotated[datetime | None, BeforeValidator(parse_platform_timestamp)]
"""Annotated type that coerces platform timestamps to UTC datetimes."""


class FleetBaseModel(BaseModel):
    """Base for fleet platform payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_platform_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = FleetBaseModel._clean_dict(values)
        # Only auto-stash raw when not explicitly provided.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
