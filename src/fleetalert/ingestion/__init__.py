"""Ingestion layer.

This package turns decoded telemetry frames into classified incidents
that the correlation layer can consume.
"""

__all__: list[str] = []
