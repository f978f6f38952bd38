"""Tracker (vehicle) model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, model_validator

from fleetalert.models._base import FleetBaseModel


class Tracker(FleetBaseModel):
    """A fleet tracker and the telemetry source bound to it.

    ``source_id`` is flattened from the platform's nested ``source.id``.
    """

    id: int
    label: str = ""
    source_id: int | None = Field(default=None, validation_alias=AliasChoices("source_id", "sourceId"))

    @model_validator(mode="before")
    @classmethod
    def _flatten_source(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        source = values.get("source")
        if isinstance(source, dict) and "source_id" not in values:
            return {**values, "source_id": source.get("id"), "raw": values.get("raw", values)}
        return values
