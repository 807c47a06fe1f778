"""Validadores de payloads MQTT para ingesta.

Payload esperado (UTF-8 JSON):
{
    "device_id": "d1",
    "humidity": 55.2,
    "temperature": 21.0,
    "timestamp": "2024-01-01T00:00:00Z"
}

Zero humidity or temperature is treated as "missing" and rejected. A sensor
that genuinely reads 0.0 is therefore dropped; devices are expected to never
publish exact zeros.
"""

from __future__ import annotations

from typing import Union

import orjson
from pydantic import ValidationError as PydanticValidationError

from ..errors import DecodeError, ValidationError
from ..schemas import ZERO_TIMESTAMP, DeviceReading


def decode_reading(payload: Union[bytes, str]) -> DeviceReading:
    """Decode a raw MQTT payload into a DeviceReading.

    Raises:
        DecodeError: invalid JSON, not an object, missing fields, wrong types
            or a timestamp that is not RFC 3339.
    """
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        return DeviceReading.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise DecodeError(f"Invalid reading fields: {fields}") from e


def validate_reading(reading: DeviceReading) -> DeviceReading:
    """Reject readings with an empty or zero-valued required field.

    Raises:
        ValidationError: device_id empty, humidity == 0, temperature == 0
            or timestamp unset.
    """
    if not reading.device_id or not reading.device_id.strip():
        raise ValidationError("device_id is required")
    if reading.humidity == 0:
        raise ValidationError("humidity is required")
    if reading.temperature == 0:
        raise ValidationError("temperature is required")
    if reading.timestamp == ZERO_TIMESTAMP:
        raise ValidationError("timestamp is required")
    return reading
