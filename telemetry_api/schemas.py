from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Zero value of a timestamp: what an unset RFC 3339 field ("0001-01-01T00:00:00Z") decodes to.
ZERO_TIMESTAMP = datetime(1, 1, 1, tzinfo=timezone.utc)


_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})",
    re.ASCII,
)


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Only the full date-time form is accepted: seconds and an offset are
    mandatory. Fractional seconds beyond microseconds are truncated.
    Raises ValueError otherwise.
    """
    match = _RFC3339_RE.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    date_part, time_part, fraction, offset = match.groups()
    if fraction:
        time_part = f"{time_part}.{fraction[:6].ljust(6, '0')}"
    if offset in ("Z", "z"):
        offset = "+00:00"
    dt = datetime.fromisoformat(f"{date_part}T{time_part}{offset}")
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"timestamp out of range: {value!r}") from e


class DeviceReading(BaseModel):
    """One telemetry reading as published by a device and stored in device_data."""

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., strict=True)
    humidity: float = Field(..., strict=True)
    temperature: float = Field(..., strict=True)
    timestamp: datetime

    @field_validator("timestamp", mode="before")
    @classmethod
    def validate_timestamp(cls, v):
        if isinstance(v, datetime):
            if v.tzinfo is None:
                return v.replace(tzinfo=timezone.utc)
            return v.astimezone(timezone.utc)
        if not isinstance(v, str):
            raise ValueError("timestamp must be an RFC 3339 string")
        return parse_rfc3339(v)


class AverageReading(BaseModel):
    """Averages over a (device_id, [start, end]) window.

    Both averages are None when the window holds no readings.
    """

    average_humidity: Optional[float] = None
    average_temperature: Optional[float] = None
    sample_count: int = 0
