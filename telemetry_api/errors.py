"""Error kinds of the ingestion and query pipeline.

- DecodeError / ValidationError: terminal at the MQTT receiver (logged, dropped).
- PersistenceError: dropped on insert, propagated on reads.
- ClientInputError: raised by the query service before any storage access.
"""

from __future__ import annotations

from typing import Optional


class TelemetryError(Exception):
    """Base for every error raised by this service."""


class DecodeError(TelemetryError):
    """Inbound payload is not a well-formed reading."""


class ValidationError(TelemetryError):
    """Reading decoded fine but is missing a required value."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class PersistenceError(TelemetryError):
    """The backing store could not complete the operation."""


class Cancelled(PersistenceError):
    """The statement was aborted by a deadline before it completed."""


class ClientInputError(TelemetryError):
    """Malformed query parameters."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
