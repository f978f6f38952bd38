from __future__ import annotations

import pytest
from conftest import T0

from fleetalert.config import DedupSettings
from fleetalert.correlation.dedup import Deduplicator
from fleetalert.exceptions import FleetConfigError


class _Clock:
    def __init__(self, start: float = T0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


def test_repeat_within_window_at_same_place_is_duplicate(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    assert dedup.is_duplicate("V1", "42", 20.34, -102.47) is False
    clock.value += 5
    assert dedup.is_duplicate("V1", "42", 20.34, -102.47) is True


def test_repeat_after_window_is_admitted(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    dedup.is_duplicate("V1", "42", 20.34, -102.47)
    clock.value += 10
    assert dedup.is_duplicate("V1", "42", 20.34, -102.47) is False


def test_moved_vehicle_is_not_duplicate(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    dedup.is_duplicate("V1", "42", 20.34, -102.47)
    clock.value += 1
    assert dedup.is_duplicate("V1", "42", 20.36, -102.47) is False


def test_small_gps_jitter_is_tolerated(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    dedup.is_duplicate("V1", "42", 20.3400, -102.4700)
    clock.value += 1
    assert dedup.is_duplicate("V1", "42", 20.3403, -102.4702) is True


def test_unknown_location_matches_any_position(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    dedup.is_duplicate("V1", "42", 0.0, 0.0)
    clock.value += 1
    assert dedup.is_duplicate("V1", "42", 20.34, -102.47) is True


def test_keys_are_per_vehicle_and_code(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    dedup.is_duplicate("V1", "42", 20.34, -102.47)
    assert dedup.is_duplicate("V1", "47", 20.34, -102.47) is False
    assert dedup.is_duplicate("V2", "42", 20.34, -102.47) is False
    # Numeric and string tracker ids share a key.
    dedup.is_duplicate(9, "42", 1.0, 1.0)
    assert dedup.is_duplicate("9", "42", 1.0, 1.0) is True


def test_duplicates_do_not_extend_suppression(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)

    dedup.is_duplicate("V1", "42", 20.34, -102.47)
    for _ in range(3):
        clock.value += 3
        assert dedup.is_duplicate("V1", "42", 20.34, -102.47) is True
    clock.value += 1
    # 10s after the admitted delivery, regardless of the repeats in between.
    assert dedup.is_duplicate("V1", "42", 20.34, -102.47) is False
    record = dedup.record_for("V1", "42")
    assert record is not None
    assert record.last_seen_at == clock.value


def test_sweep_evicts_only_expired_records(clock: _Clock) -> None:
    dedup = Deduplicator(DedupSettings(window_seconds=10, retention_seconds=60), clock=clock)

    dedup.is_duplicate("V1", "42", 1.0, 1.0)
    clock.value += 50
    dedup.is_duplicate("V2", "42", 1.0, 1.0)
    clock.value += 20

    assert dedup.sweep() == 1
    assert dedup.record_for("V1", "42") is None
    assert dedup.record_for("V2", "42") is not None
    assert len(dedup) == 1


def test_forget_vehicle(clock: _Clock) -> None:
    dedup = Deduplicator(clock=clock)
    dedup.is_duplicate("V1", "42", 1.0, 1.0)
    dedup.is_duplicate("V1", "47", 1.0, 1.0)
    dedup.is_duplicate("V2", "42", 1.0, 1.0)

    dedup.forget_vehicle("V1")

    assert len(dedup) == 1


def test_retention_shorter_than_window_is_rejected() -> None:
    with pytest.raises(FleetConfigError):
        DedupSettings(window_seconds=30, retention_seconds=10)
