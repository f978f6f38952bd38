"""Normalization helpers.

Centralizes defensive parsing of loosely typed telemetry values.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text if text else None


def unwrap_value(value: Any) -> Any:
    """Unwrap the platform's ``{"value": ...}`` sensor envelope."""
    if isinstance(value, Mapping):
        return value.get("value")
    return value
