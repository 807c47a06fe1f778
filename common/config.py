from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


_ENV_FILE_ENV = "TELEMETRY_ENV_FILE"


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    db_host: str
    db_port: int
    db_user: str
    db_password: str
    db_name: str
    db_schema: str
    db_statement_timeout_ms: int

    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_topic: str
    mqtt_qos: int
    mqtt_client_id: str
    mqtt_enabled: bool
    mqtt_async_processing: bool
    mqtt_queue_size: int
    mqtt_num_workers: int

    cors_allow_origins: tuple[str, ...]
    log_level: str


def _read_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _read_origins(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name) or default
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@lru_cache
def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv(_ENV_FILE_ENV, ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=_read_int("DB_PORT", 5432),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", ""),
        db_name=os.getenv("DB_NAME", "telemetry"),
        db_schema=os.getenv("DB_SCHEMA", ""),
        db_statement_timeout_ms=_read_int("DB_STATEMENT_TIMEOUT_MS", 5000),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=_read_int("MQTT_BROKER_PORT", 1883),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_topic=os.getenv("MQTT_TOPIC", "devices/data"),
        mqtt_qos=_read_int("MQTT_QOS", 1),
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "telemetry-receiver"),
        mqtt_enabled=_read_bool("MQTT_ENABLED", True),
        mqtt_async_processing=_read_bool("MQTT_ASYNC_PROCESSING", True),
        mqtt_queue_size=_read_int("MQTT_QUEUE_SIZE", 1000),
        mqtt_num_workers=_read_int("MQTT_NUM_WORKERS", 4),
        cors_allow_origins=_read_origins("CORS_ALLOW_ORIGINS", "*"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )
