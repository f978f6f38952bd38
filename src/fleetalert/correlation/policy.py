"""Deterministic correlation policy.

Pure predicates shared by the deduplicator and the window aggregator.
No state lives here.
"""

from __future__ import annotations

import math
from enum import StrEnum


class ThresholdPolicy(StrEnum):
    EXACT = "exact"
    AT_LEAST = "at_least"


def threshold_met(unique_count: int, required: int, policy: ThresholdPolicy) -> bool:
    """Decide whether *unique_count* distinct codes form a qualifying pattern.

    The same predicate is used when scheduling a flush and when
    re-validating it at timer-fire time.
    """
    if policy == ThresholdPolicy.AT_LEAST:
        return unique_count >= required
    return unique_count == required


def in_cooldown(now: float, last_flush_at: float | None, window_seconds: float) -> bool:
    return last_flush_at is not None and now - last_flush_at < window_seconds


def window_cutoff(now: float, window_seconds: float) -> float:
    """Oldest ``occurred_at`` still retained in a window ending at *now*."""
    return now - window_seconds


def is_unknown_location(lat: float, lng: float) -> bool:
    """``0,0`` is the platform's sentinel for "no fix"."""
    return lat == 0 and lng == 0


def coordinate_distance(lat_a: float, lng_a: float, lat_b: float, lng_b: float) -> float:
    """Euclidean displacement in degrees.

    Unknown positions match anything: a repeat without a fix cannot be
    told apart from the original delivery by location.
    """
    if is_unknown_location(lat_a, lng_a) or is_unknown_location(lat_b, lng_b):
        return 0.0
    return math.hypot(lat_a - lat_b, lng_a - lng_b)
