"""Telemetry classification.

Maps a raw ``source_state_event`` state to a canonical :class:`Incident`
and applies the static admission rules. Anything malformed or
inconclusive classifies to ``None``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from fleetalert._constants import EVENT_DATE_FORMAT, IncidentCode, incident_name
from fleetalert.config import FleetAlertConfig
from fleetalert.exceptions import FleetConfigError
from fleetalert.models.incident import Incident
from fleetalert.models.telemetry import SourceState

_logger = logging.getLogger(__name__)

AdmissionRule = Callable[[SourceState], bool]


def parse_source_state(raw_state: Mapping[str, Any] | SourceState) -> SourceState | None:
    """Validate a raw state payload; ``None`` when it is unusable."""
    if isinstance(raw_state, SourceState):
        return raw_state
    if not isinstance(raw_state, Mapping):
        return None
    try:
        return SourceState.model_validate(dict(raw_state))
    except ValidationError:
        return None


class EventClassifier:
    """Turn telemetry states into incidents.

    Parameters
    ----------
    config
        Service configuration (tracked codes, overspeed threshold, zone).
    clock
        Returns the arrival time in epoch seconds. It must be the same
        clock the window aggregator uses.
    """

    def __init__(self, config: FleetAlertConfig, *, clock: Callable[[], float] = time.time) -> None:
        self._tracked = frozenset(config.tracked_codes)
        self._overspeed_threshold = config.overspeed_threshold_kmh
        self._clock = clock
        try:
            self._zone = ZoneInfo(config.time_zone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise FleetConfigError(f"Unknown time zone: {config.time_zone!r}") from exc
        self._rules: dict[str, AdmissionRule] = {
            IncidentCode.OVERSPEED: self._admit_overspeed,
        }

    def _admit_overspeed(self, state: SourceState) -> bool:
        speed = state.gps.speed
        return speed is not None and speed > self._overspeed_threshold

    def render_date(self, moment: datetime, *, fallback: float | None = None) -> str:
        """Render *moment* in the configured zone.

        Moments the zone cannot represent (year 1 and the like) render
        *fallback* instead, or an empty string when none is given.
        """
        try:
            return moment.astimezone(self._zone).strftime(EVENT_DATE_FORMAT)
        except (OverflowError, OSError, ValueError):
            if fallback is None:
                return ""
            return self.render_date(datetime.fromtimestamp(fallback, tz=UTC))

    def classify(self, raw_state: Mapping[str, Any] | SourceState) -> Incident | None:
        """Return the incident described by *raw_state*, or ``None``."""
        state = parse_source_state(raw_state)
        if state is None:
            return None

        code = state.incident_code
        if code is None or code not in self._tracked:
            return None

        rule = self._rules.get(code)
        if rule is not None and not rule(state):
            _logger.debug("Code %s from source %s not admitted", code, state.source_id)
            return None

        now = self._clock()
        reported_at = state.reported_at or datetime.fromtimestamp(now, tz=UTC)
        location = state.gps.location
        return Incident(
            code=code,
            name=incident_name(code),
            occurred_at=now,
            lat=location.lat,
            lng=location.lng,
            speed=state.gps.speed,
            event_date=self.render_date(reported_at, fallback=now),
        )
