"""Tests de la API HTTP (FastAPI TestClient sobre storage SQLite)."""

from datetime import timedelta
from typing import Iterator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from telemetry_api.errors import Cancelled, PersistenceError
from telemetry_api.infrastructure.persistence import ReadingStorage
from telemetry_api.main import create_app

from conftest import T0, make_reading


@pytest.fixture
def api_client(storage, settings) -> Iterator[TestClient]:
    app = create_app(storage=storage, settings=settings)
    with TestClient(app) as client:
        yield client


def _failing_client(settings, error) -> TestClient:
    store = MagicMock(spec=ReadingStorage)
    store.history.side_effect = error
    store.latest_per_device.side_effect = error
    return TestClient(create_app(storage=store, settings=settings))


class TestReadEndpoints:
    def test_root(self, api_client):
        assert api_client.get("/").json() == {"message": "Hello World!"}

    def test_latest(self, api_client, storage):
        storage.insert(make_reading("d1", 50.0, 20.0, T0))
        storage.insert(make_reading("d1", 51.0, 21.0, T0 + timedelta(minutes=5)))
        storage.insert(make_reading("d2", 60.0, 30.0, T0))

        resp = api_client.get("/api/data/latest")

        assert resp.status_code == 200
        body = resp.json()
        assert [r["device_id"] for r in body] == ["d1", "d2"]
        assert body[0]["humidity"] == 51.0
        assert body[0]["timestamp"] == "2024-01-01T00:05:00Z"

    def test_latest_empty(self, api_client):
        resp = api_client.get("/api/data/latest")

        assert resp.status_code == 200
        assert resp.json() == []

    def test_history(self, api_client, storage):
        storage.insert(make_reading(timestamp=T0))
        storage.insert(make_reading(timestamp=T0 + timedelta(hours=3)))

        resp = api_client.get(
            "/api/data/history",
            params={"device_id": "d1", "start": "2024-01-01T00:00:00Z", "end": "2024-01-01T01:00:00Z"},
        )

        assert resp.status_code == 200
        assert len(resp.json()) == 1

    def test_average(self, api_client, storage):
        storage.insert(make_reading(humidity=50.0, temperature=20.0, timestamp=T0))
        storage.insert(make_reading(humidity=55.0, temperature=21.5, timestamp=T0 + timedelta(hours=1)))

        resp = api_client.get(
            "/api/data/average",
            params={"device_id": "d1", "start": "2024-01-01T00:00:00Z", "end": "2024-01-02T00:00:00Z"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["average_humidity"] == 52.5
        assert body["average_temperature"] == 20.75
        assert body["sample_count"] == 2

    def test_average_empty_window_is_null(self, api_client):
        resp = api_client.get(
            "/api/data/average",
            params={"device_id": "d1", "start": "2024-01-01T00:00:00Z", "end": "2024-01-02T00:00:00Z"},
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "average_humidity": None,
            "average_temperature": None,
            "sample_count": 0,
        }

    def test_inverted_window_is_empty(self, api_client, storage):
        storage.insert(make_reading(timestamp=T0))

        resp = api_client.get(
            "/api/data/history",
            params={"device_id": "d1", "start": "2024-01-02T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        )

        assert resp.status_code == 200
        assert resp.json() == []


class TestErrors:
    def test_bad_start_is_400(self, api_client):
        resp = api_client.get(
            "/api/data/history",
            params={"device_id": "d1", "start": "01/01/2024", "end": "2024-01-02T00:00:00Z"},
        )

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid start date format"

    def test_non_rfc3339_start_is_400(self, api_client):
        resp = api_client.get(
            "/api/data/history",
            params={"device_id": "d1", "start": "20240101T000000Z", "end": "2024-01-02T00:00:00Z"},
        )

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid start date format"

    def test_missing_end_is_400(self, api_client):
        resp = api_client.get(
            "/api/data/average",
            params={"device_id": "d1", "start": "2024-01-01T00:00:00Z"},
        )

        assert resp.status_code == 400

    def test_storage_failure_is_500(self, settings):
        error = PersistenceError("history failed: OperationalError")
        with _failing_client(settings, error) as client:
            resp = client.get(
                "/api/data/history",
                params={"device_id": "d1", "start": "2024-01-01T00:00:00Z", "end": "2024-01-02T00:00:00Z"},
            )

        assert resp.status_code == 500
        assert resp.json()["detail"].startswith("DB error")

    def test_deadline_is_504(self, settings):
        with _failing_client(settings, Cancelled("latest_per_device cancelled")) as client:
            resp = client.get("/api/data/latest")

        assert resp.status_code == 504

    def test_schema_failure_aborts_startup(self, settings):
        store = MagicMock(spec=ReadingStorage)
        store.ensure_schema.side_effect = PersistenceError("ensure_schema failed")

        with pytest.raises(PersistenceError):
            with TestClient(create_app(storage=store, settings=settings)):
                pass
        store.close.assert_called_once()

    def test_receiver_start_failure_releases_storage(self, settings):
        store = MagicMock(spec=ReadingStorage)
        receiver = MagicMock()
        receiver.start.side_effect = RuntimeError("broker unreachable")

        with pytest.raises(RuntimeError):
            with TestClient(create_app(storage=store, receiver=receiver, settings=settings)):
                pass
        store.close.assert_called_once()


class TestHealthAndLifecycle:
    def test_health(self, api_client):
        resp = api_client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "up"

    def test_health_down_is_503(self, settings):
        store = MagicMock(spec=ReadingStorage)
        store.health.return_value = {"status": "down", "error": "db down: OperationalError"}

        with TestClient(create_app(storage=store, settings=settings)) as client:
            resp = client.get("/health")

        assert resp.status_code == 503

    def test_receiver_started_and_stopped(self, storage, settings):
        receiver = MagicMock()
        receiver.health_check.return_value = {"healthy": True}

        with TestClient(create_app(storage=storage, receiver=receiver, settings=settings)) as client:
            receiver.start.assert_called_once()
            assert client.get("/health").json()["mqtt"] == {"healthy": True}

        receiver.stop.assert_called_once()

    def test_cors_headers(self, api_client):
        resp = api_client.get("/api/data/latest", headers={"Origin": "http://example.com"})

        assert resp.headers["access-control-allow-origin"] == "*"
