"""Query service over ReadingStorage.

Parameters arrive as raw strings from the HTTP layer. Bad input is rejected
with ClientInputError before the storage is touched; storage errors
(PersistenceError) are passed through unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from ..errors import ClientInputError
from ..infrastructure.persistence import ReadingStorage
from ..schemas import AverageReading, DeviceReading, parse_rfc3339

logger = logging.getLogger(__name__)


def parse_time_param(value: Optional[str], field: str) -> datetime:
    if not value:
        raise ClientInputError(f"Missing {field} date", field=field)
    try:
        return parse_rfc3339(value)
    except ValueError as e:
        raise ClientInputError(f"Invalid {field} date format", field=field) from e


def _require_device_id(device_id: Optional[str]) -> str:
    if not device_id or not device_id.strip():
        raise ClientInputError("device_id is required", field="device_id")
    return device_id


def _parse_window(start: Optional[str], end: Optional[str]) -> Tuple[datetime, datetime]:
    # start > end is an empty closed interval, not an error.
    return parse_time_param(start, "start"), parse_time_param(end, "end")


class ReadingQueryService:
    def __init__(self, storage: ReadingStorage):
        self._storage = storage

    def latest(self, device_id: Optional[str] = None) -> List[DeviceReading]:
        return self._storage.latest_per_device((device_id or "").strip() or None)

    def history(
        self, device_id: Optional[str], start: Optional[str], end: Optional[str]
    ) -> List[DeviceReading]:
        device_id = _require_device_id(device_id)
        start_dt, end_dt = _parse_window(start, end)
        logger.debug("[QUERY] history device=%s start=%s end=%s", device_id, start_dt, end_dt)
        return self._storage.history(device_id, start_dt, end_dt)

    def average(
        self, device_id: Optional[str], start: Optional[str], end: Optional[str]
    ) -> AverageReading:
        device_id = _require_device_id(device_id)
        start_dt, end_dt = _parse_window(start, end)
        logger.debug("[QUERY] average device=%s start=%s end=%s", device_id, start_dt, end_dt)
        return self._storage.average(device_id, start_dt, end_dt)
