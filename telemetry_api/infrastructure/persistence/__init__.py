"""Persistence infrastructure for device telemetry readings."""

from .readings import ReadingStorage

__all__ = [
    "ReadingStorage",
]
