"""Fixtures compartidos: settings aislados del entorno y storage SQLite."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from common.config import get_settings
from common.db import create_db_engine
from telemetry_api.infrastructure.persistence import ReadingStorage
from telemetry_api.schemas import DeviceReading


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def settings(monkeypatch, tmp_path):
    """Settings leídos de un entorno controlado (sin .env, sin MQTT)."""
    monkeypatch.setenv("TELEMETRY_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("MQTT_ENABLED", "false")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def storage(settings, tmp_path):
    """ReadingStorage sobre un fichero SQLite con el schema creado."""
    engine = create_db_engine(settings, url=f"sqlite:///{tmp_path / 'telemetry.db'}")
    store = ReadingStorage(engine)
    store.ensure_schema()
    yield store
    store.close()


@pytest.fixture
def storage_stub():
    """Storage falso que registra las llamadas a insert."""
    return MagicMock(spec=ReadingStorage)


def make_reading(device_id="d1", humidity=55.2, temperature=21.0, timestamp=T0):
    return DeviceReading(
        device_id=device_id,
        humidity=humidity,
        temperature=temperature,
        timestamp=timestamp,
    )
