"""Correlation layer.

This package is the single owner of the per-vehicle sliding windows,
repeat-delivery suppression and flush fan-out. Ingestion feeds it
classified incidents; nothing else mutates its state.
"""
