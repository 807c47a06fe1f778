"""Storage for device telemetry readings.

Owns the append-only ``device_data`` table. The only writer is the MQTT
ingestion path (``insert``); the HTTP query path uses the three reads.
Concurrency control is left to the database: there are no updates, so
concurrent writers only ever append.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy import DateTime, Float, String, bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ...errors import Cancelled, PersistenceError
from ...schemas import AverageReading, DeviceReading

logger = logging.getLogger(__name__)

# SQLSTATE query_canceled (statement_timeout or pg_cancel_backend).
_PG_QUERY_CANCELED = "57014"

# Arbitrary key shared by every process running ensure_schema().
_SCHEMA_LOCK_KEY = 7_306_041

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS device_data (
        device_id TEXT NOT NULL,
        humidity DOUBLE PRECISION NOT NULL,
        temperature DOUBLE PRECISION NOT NULL,
        timestamp TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_device_data_device_ts ON device_data (device_id, timestamp)",
)

_READING_COLUMNS = {
    "device_id": String(),
    "humidity": Float(),
    "temperature": Float(),
    "timestamp": DateTime(),
}

_INSERT_SQL = text(
    """
    INSERT INTO device_data (device_id, humidity, temperature, timestamp)
    VALUES (:device_id, :humidity, :temperature, :timestamp)
    """
).bindparams(bindparam("timestamp", type_=DateTime()))

_LATEST_SQL = """
    SELECT device_id, humidity, temperature, timestamp
    FROM (
        SELECT device_id, humidity, temperature, timestamp,
               ROW_NUMBER() OVER (
                   PARTITION BY device_id
                   ORDER BY timestamp DESC, humidity DESC, temperature DESC
               ) AS rn
        FROM device_data
        {where}
    ) ranked
    WHERE rn = 1
    ORDER BY device_id
"""

_LATEST_ALL = text(_LATEST_SQL.format(where="")).columns(**_READING_COLUMNS)
_LATEST_ONE = text(_LATEST_SQL.format(where="WHERE device_id = :device_id")).columns(
    **_READING_COLUMNS
)

_HISTORY_SQL = (
    text(
        """
        SELECT device_id, humidity, temperature, timestamp
        FROM device_data
        WHERE device_id = :device_id AND timestamp BETWEEN :start AND :end
        ORDER BY timestamp ASC, humidity ASC, temperature ASC
        """
    )
    .bindparams(bindparam("start", type_=DateTime()), bindparam("end", type_=DateTime()))
    .columns(**_READING_COLUMNS)
)

_AVERAGE_SQL = text(
    """
    SELECT
        AVG(humidity) AS average_humidity,
        AVG(temperature) AS average_temperature,
        COUNT(*) AS sample_count
    FROM device_data
    WHERE device_id = :device_id AND timestamp BETWEEN :start AND :end
    """
).bindparams(bindparam("start", type_=DateTime()), bindparam("end", type_=DateTime()))


def to_db_timestamp(value: datetime) -> datetime:
    """Aware datetime -> naive UTC, the form stored in the TIMESTAMP column."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_timestamp(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_average(value) -> Optional[float]:
    """Round half-up to two decimals, the way ROUND(numeric, 2) does."""
    if value is None:
        return None
    return float(Decimal(repr(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _persistence_error(exc: SQLAlchemyError, operation: str) -> PersistenceError:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == _PG_QUERY_CANCELED:
        return Cancelled(f"{operation} cancelled by statement deadline")
    return PersistenceError(f"{operation} failed: {type(exc).__name__}")


def _row_to_reading(row) -> DeviceReading:
    return DeviceReading(
        device_id=row.device_id,
        humidity=float(row.humidity),
        temperature=float(row.temperature),
        timestamp=from_db_timestamp(row.timestamp),
    )


class ReadingStorage:
    """Storage de lecturas en la tabla device_data."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def ensure_schema(self) -> None:
        """Create the table and index if absent. Safe to call repeatedly.

        On PostgreSQL a transaction-scoped advisory lock serialises
        concurrent callers, since CREATE ... IF NOT EXISTS alone can race on
        the catalog.

        Raises:
            PersistenceError: the schema could not be created.
        """
        logger.info("[STORAGE] Ensuring schema exists")
        try:
            with self._engine.begin() as conn:
                if conn.dialect.name == "postgresql":
                    conn.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": _SCHEMA_LOCK_KEY},
                    )
                for statement in _SCHEMA_STATEMENTS:
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            logger.exception("[STORAGE] Schema creation failed")
            raise _persistence_error(e, "ensure_schema") from e
        logger.info("[STORAGE] Schema ready")

    def insert(self, reading: DeviceReading) -> None:
        """Append one reading.

        Raises:
            PersistenceError: the row could not be written.
        """
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    _INSERT_SQL,
                    {
                        "device_id": reading.device_id,
                        "humidity": float(reading.humidity),
                        "temperature": float(reading.temperature),
                        "timestamp": to_db_timestamp(reading.timestamp),
                    },
                )
        except SQLAlchemyError as e:
            raise _persistence_error(e, "insert") from e

    def latest_per_device(self, device_id: Optional[str] = None) -> List[DeviceReading]:
        """Most recent reading of every device (or of one device), ordered by device_id."""
        try:
            with self._engine.connect() as conn:
                if device_id:
                    rows = conn.execute(_LATEST_ONE, {"device_id": device_id}).fetchall()
                else:
                    rows = conn.execute(_LATEST_ALL).fetchall()
        except SQLAlchemyError as e:
            raise _persistence_error(e, "latest_per_device") from e
        return [_row_to_reading(r) for r in rows]

    def history(self, device_id: str, start: datetime, end: datetime) -> List[DeviceReading]:
        """All readings of a device with start <= timestamp <= end, oldest first."""
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    _HISTORY_SQL,
                    {
                        "device_id": device_id,
                        "start": to_db_timestamp(start),
                        "end": to_db_timestamp(end),
                    },
                ).fetchall()
        except SQLAlchemyError as e:
            raise _persistence_error(e, "history") from e
        return [_row_to_reading(r) for r in rows]

    def average(self, device_id: str, start: datetime, end: datetime) -> AverageReading:
        """Average humidity/temperature over the closed window.

        An empty window yields an AverageReading with both averages set to
        None and sample_count 0, never a numeric zero.
        """
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    _AVERAGE_SQL,
                    {
                        "device_id": device_id,
                        "start": to_db_timestamp(start),
                        "end": to_db_timestamp(end),
                    },
                ).one()
        except SQLAlchemyError as e:
            raise _persistence_error(e, "average") from e

        count = int(row.sample_count or 0)
        if count == 0:
            return AverageReading(sample_count=0)
        return AverageReading(
            average_humidity=round_average(row.average_humidity),
            average_temperature=round_average(row.average_temperature),
            sample_count=count,
        )

    def health(self) -> dict:
        """Ping the database and report pool usage. Never raises."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("[STORAGE] Health check failed: %s", type(e).__name__)
            return {"status": "down", "error": f"db down: {type(e).__name__}"}

        stats = {"status": "up", "message": "It's healthy"}
        pool = self._engine.pool
        stats["pool"] = pool.status()
        checkedout = getattr(pool, "checkedout", None)
        size = getattr(pool, "size", None)
        if callable(checkedout) and callable(size):
            in_use = checkedout()
            stats["in_use"] = in_use
            if size() and in_use >= size():
                stats["message"] = "The database is experiencing heavy load."
        return stats

    def close(self) -> None:
        self._engine.dispose()
        logger.info("[STORAGE] Disconnected from database")
