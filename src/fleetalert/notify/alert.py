"""Consolidated alert content built from a flush snapshot."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from fleetalert.models.incident import Incident


class AlertMessage(BaseModel):
    """What a notifier needs to describe one correlated incident pattern."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: int | str
    label: str
    event_date: str
    event_names: tuple[str, ...]
    coords: str | None = None


def last_valid_coords(snapshot: Sequence[Incident]) -> str | None:
    """Coordinates of the latest incident with a known position."""
    for incident in reversed(snapshot):
        if incident.has_location:
            return incident.coords
    return None


def build_alert(vehicle_id: int | str, label: str, snapshot: Sequence[Incident]) -> AlertMessage:
    if not snapshot:
        raise ValueError("cannot build an alert from an empty snapshot")
    return AlertMessage(
        vehicle_id=vehicle_id,
        label=label,
        event_date=snapshot[-1].event_date,
        event_names=tuple(incident.name for incident in snapshot),
        coords=last_valid_coords(snapshot),
    )
