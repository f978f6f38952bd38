"""Classified incident models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleetalert.correlation.policy import is_unknown_location


class Incident(BaseModel):
    """A classified, admitted telemetry event.

    Parameters
    ----------
    code : str
        Incident-type identifier (e.g. ``"42"`` for panic button).
    name : str
        Display label.
    occurred_at : float
        Epoch seconds on the service clock; the sliding window and the
        snapshot ordering use this value.
    lat, lng : float
        Coordinates; ``0,0`` means unknown.
    speed : float or None
        Reported speed in km/h.
    event_date : str
        Human-readable rendering of the telemetry timestamp.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: str
    name: str
    occurred_at: float
    lat: float = 0.0
    lng: float = 0.0
    speed: float | None = None
    event_date: str = ""

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        code = value.strip()
        if not code:
            raise ValueError("code must be non-empty")
        return code

    @property
    def has_location(self) -> bool:
        return not is_unknown_location(self.lat, self.lng)

    @property
    def coords(self) -> str | None:
        """``"lat,lng"`` or ``None`` when the position is unknown."""
        if not self.has_location:
            return None
        return f"{self.lat},{self.lng}"


class IncidentRecord(BaseModel):
    """One persisted row per admitted incident."""

    model_config = ConfigDict(frozen=True)

    company_id: int
    tracker_id: int | str
    source_id: int | str
    event_type: str
    event_code: str
    event_name: str
    sub_event_code: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict, description="Originating state payload (as received)")
