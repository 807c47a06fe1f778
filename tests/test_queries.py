"""Tests del servicio de consultas: validación de parámetros antes del storage."""

from datetime import timedelta

import pytest

from telemetry_api.errors import ClientInputError, PersistenceError
from telemetry_api.queries import ReadingQueryService, parse_time_param

from conftest import T0, make_reading


class TestParameterValidation:
    @pytest.mark.parametrize(
        "start,end,field",
        [
            ("2024-01-01", "2024-01-02T00:00:00Z", "start"),
            ("2024-01-01T00:00:00Z", "tomorrow", "end"),
            (None, "2024-01-02T00:00:00Z", "start"),
            ("2024-01-01T00:00:00Z", "", "end"),
            ("2024-01-01T00:00Z", "2024-01-02T00:00:00Z", "start"),
            ("2024-01-01T00:00:00Z", "20240102T000000Z", "end"),
        ],
    )
    def test_bad_window_never_touches_storage(self, storage_stub, start, end, field):
        service = ReadingQueryService(storage_stub)

        with pytest.raises(ClientInputError) as exc:
            service.history("d1", start, end)
        assert exc.value.field == field

        with pytest.raises(ClientInputError):
            service.average("d1", start, end)

        storage_stub.history.assert_not_called()
        storage_stub.average.assert_not_called()

    @pytest.mark.parametrize("device_id", [None, "", "  "])
    def test_device_id_required(self, storage_stub, device_id):
        service = ReadingQueryService(storage_stub)

        with pytest.raises(ClientInputError) as exc:
            service.history(device_id, "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")
        assert exc.value.field == "device_id"
        storage_stub.history.assert_not_called()

    def test_parse_time_param(self):
        assert parse_time_param("2024-01-01T01:00:00+01:00", "start") == T0


class TestDelegation:
    def test_history_passes_typed_window(self, storage_stub):
        storage_stub.history.return_value = []
        service = ReadingQueryService(storage_stub)

        service.history("d1", "2024-01-01T00:00:00Z", "2024-01-01T02:00:00Z")

        storage_stub.history.assert_called_once_with("d1", T0, T0 + timedelta(hours=2))

    def test_latest_device_is_optional(self, storage_stub):
        storage_stub.latest_per_device.return_value = []
        service = ReadingQueryService(storage_stub)

        service.latest()
        service.latest("")
        service.latest("  ")
        service.latest("d1")

        assert [c.args for c in storage_stub.latest_per_device.call_args_list] == [
            (None,),
            (None,),
            (None,),
            ("d1",),
        ]

    def test_persistence_error_propagates(self, storage_stub):
        storage_stub.average.side_effect = PersistenceError("average failed: OperationalError")
        service = ReadingQueryService(storage_stub)

        with pytest.raises(PersistenceError):
            service.average("d1", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")

    def test_results_returned_verbatim(self, storage):
        reading = make_reading()
        storage.insert(reading)
        service = ReadingQueryService(storage)

        assert service.history("d1", "2024-01-01T00:00:00Z", "2024-01-01T00:00:00Z") == [reading]
        avg = service.average("d1", "2024-01-01T00:00:00Z", "2024-01-01T00:00:00Z")
        assert avg.average_humidity == 55.2
        assert avg.average_temperature == 21.0

    def test_inverted_window_is_empty(self, storage):
        storage.insert(make_reading(timestamp=T0))
        service = ReadingQueryService(storage)

        assert service.history("d1", "2024-01-02T00:00:00Z", "2024-01-01T00:00:00Z") == []
        avg = service.average("d1", "2024-01-02T00:00:00Z", "2024-01-01T00:00:00Z")
        assert avg.average_humidity is None
        assert avg.average_temperature is None
        assert avg.sample_count == 0
