"""Telemetry envelope models for the ``state_batch`` subscription.

The platform delivers::

    {"type": "event", "event": "state_batch",
     "data": [{"type": "source_state_event", "state": {...}}]}

Field aliases also accept the neutral names ``kind``/``subtype``/``items``
and camelCase state keys so replayed or re-encoded frames parse the same.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from fleetalert.ingestion.normalize import safe_float, safe_str, unwrap_value
from fleetalert.models._base import FleetBaseModel, PlatformTimestamp

EVENT_KIND = "event"
STATE_BATCH = "state_batch"
SOURCE_STATE_EVENT = "source_state_event"


class GpsLocation(FleetBaseModel):
    lat: float = Field(default=0.0, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(default=0.0, validation_alias=AliasChoices("lng", "lon", "longitude"))

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float:
        parsed = safe_float(value)
        return 0.0 if parsed is None else parsed


class GpsState(FleetBaseModel):
    """GPS block of a source state.

    ``speed`` is in km/h; ``updated`` is the fix time reported by the device.
    """

    location: GpsLocation = Field(default_factory=GpsLocation)
    speed: float | None = None
    updated: PlatformTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("updated", "updatedAt", "updated_at"),
    )

    @field_validator("speed", mode="before")
    @classmethod
    def _coerce_speed(cls, value: Any) -> float | None:
        return safe_float(value)


class SourceState(FleetBaseModel):
    """State of a single telemetry source (device) at a point in time."""

    source_id: int | str = Field(validation_alias=AliasChoices("source_id", "sourceId"))
    gps: GpsState = Field(default_factory=GpsState)
    event_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("event_code", "incidentCode", "incident_code"),
    )
    sub_event_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sub_event_code", "subIncidentCode", "sub_incident_code"),
    )
    additional: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_code", "sub_event_code", mode="before")
    @classmethod
    def _coerce_code(cls, value: Any) -> str | None:
        return safe_str(unwrap_value(value))

    @property
    def additional_event_code(self) -> str | None:
        return safe_str(unwrap_value(self.additional.get("event_code")))

    @property
    def incident_code(self) -> str | None:
        """Top-level code first, then the additional-properties code."""
        if self.event_code is not None:
            return self.event_code
        return self.additional_event_code

    @property
    def reported_at(self) -> datetime | None:
        return self.gps.updated


class SourceStateItem(FleetBaseModel):
    type: str = Field(validation_alias=AliasChoices("type", "kind"))
    state: dict[str, Any] | None = None


class StateBatchMessage(FleetBaseModel):
    """Decoded websocket frame."""

    type: str = Field(validation_alias=AliasChoices("type", "kind"))
    event: str | None = Field(default=None, validation_alias=AliasChoices("event", "subtype"))
    data: list[SourceStateItem] = Field(default_factory=list, validation_alias=AliasChoices("data", "items"))

    @model_validator(mode="before")
    @classmethod
    def _drop_non_object_items(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        for key in ("data", "items"):
            items = values.get(key)
            if isinstance(items, list):
                values = {**values, key: [item for item in items if isinstance(item, dict)]}
        return values

    @property
    def is_state_batch(self) -> bool:
        return self.type == EVENT_KIND and self.event == STATE_BATCH

    def source_states(self) -> list[dict[str, Any]]:
        """Raw ``state`` payloads of the ``source_state_event`` items."""
        return [item.state for item in self.data if item.type == SOURCE_STATE_EVENT and isinstance(item.state, dict)]
