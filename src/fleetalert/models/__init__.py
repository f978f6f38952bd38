"""Typed models for telemetry frames, incidents and trackers."""

from fleetalert.models.incident import Incident, IncidentRecord
from fleetalert.models.telemetry import (
    GpsLocation,
    GpsState,
    SourceState,
    SourceStateItem,
    StateBatchMessage,
)
from fleetalert.models.tracker import Tracker

__all__ = [
    "GpsLocation",
    "GpsState",
    "Incident",
    "IncidentRecord",
    "SourceState",
    "SourceStateItem",
    "StateBatchMessage",
    "Tracker",
]
