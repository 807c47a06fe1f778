"""Procesamiento de lecturas MQTT.

Decode -> validate -> ReadingStorage.insert. Every failure is terminal here:
the message is logged and dropped, never retried or re-queued.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Union

from ..errors import DecodeError, PersistenceError, ValidationError
from ..infrastructure.persistence import ReadingStorage
from .validators import decode_reading, validate_reading

logger = logging.getLogger(__name__)


class ProcessOutcome(str, Enum):
    STORED = "stored"
    REJECTED = "rejected"
    FAILED = "failed"


class ReadingProcessor:
    """Procesa payloads MQTT y persiste las lecturas válidas."""

    def __init__(self, storage: ReadingStorage):
        self._storage = storage

    def process(self, payload: Union[bytes, str]) -> ProcessOutcome:
        try:
            reading = decode_reading(payload)
        except DecodeError as e:
            logger.warning("[PROCESSOR] Dropped undecodable payload: %s", e)
            return ProcessOutcome.REJECTED

        try:
            validate_reading(reading)
        except ValidationError as e:
            logger.warning(
                "[PROCESSOR] Dropped invalid reading device=%r: %s",
                reading.device_id,
                e.reason,
            )
            return ProcessOutcome.REJECTED

        try:
            t0 = time.monotonic()
            self._storage.insert(reading)
        except PersistenceError as e:
            logger.error(
                "[PROCESSOR] Insert failed, dropped device=%s ts=%s error=%s",
                reading.device_id,
                reading.timestamp.isoformat(),
                e,
            )
            return ProcessOutcome.FAILED

        logger.debug(
            "[PROCESSOR] OK device=%s ts=%s ms=%.1f",
            reading.device_id,
            reading.timestamp.isoformat(),
            (time.monotonic() - t0) * 1000,
        )
        return ProcessOutcome.STORED
