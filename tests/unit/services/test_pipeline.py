"""Unit tests for services/pipeline.py."""

from datetime import date, datetime, timezone
from typing import Any
from unittest.mock import Mock

import pytest

from pms_sync.adapters.base import AdapterConfig, PmsAdapter, SyncOptions
from pms_sync.adapters.smoobu import SmoobuAdapter
from pms_sync.config import SyncSettings
from pms_sync.network.errors import ErrorCode, Result, unsupported
from pms_sync.schemas.entities import (
    AvailabilityDay,
    Pricing,
    Property,
    RateDay,
    Reservation,
    RoomType,
    SyncStatus,
    SyncType,
)
from pms_sync.services.pipeline import SyncPipeline, call_with_retry
from tests.conftest import FakeGateway, make_response, routed_session

SETTINGS = SyncSettings(step_max_retries=3, retry_backoff_seconds=2.0, availability_window_days=3)


def smoobu_routes() -> dict[str, Any]:
    return {
        "/apartments": make_response(200, {"apartments": [{"id": 101, "name": "Loft"}]}),
        "/apartments/101": make_response(200, {"rooms": {"maxOccupancy": 4}, "currency": "EUR"}),
        "/rates": make_response(
            200,
            {
                "data": {
                    "101": {
                        "2026-05-01": {"price": 90, "min_length_of_stay": 2, "available": 1},
                        "2026-05-02": {"price": 95, "min_length_of_stay": 2, "available": 0},
                    }
                }
            },
        ),
        "/reservations": make_response(
            200,
            {
                "bookings": [
                    {"id": 1, "arrival": "2026-05-01", "departure": "2026-05-03", "apartment": {"id": 101}},
                    {"id": 2, "arrivalDate": "2026-05-05", "departureDate": "2026-05-06", "apartmentId": 101},
                ],
                "page_count": 1,
            },
        ),
    }


def make_property(external_id: str, room_ids: list[str]) -> Property:
    prop = Property(external_id=external_id, name=external_id, currency="EUR")
    prop.room_types = [
        RoomType(external_id=rid, property_external_id=external_id, name=rid, currency="EUR") for rid in room_ids
    ]
    return prop


def mock_adapter(**results: Any) -> Mock:
    adapter = Mock(spec=PmsAdapter)
    adapter.code = "test"
    adapter.get_properties.return_value = Result.ok([])
    adapter.get_availability.return_value = Result.ok([])
    adapter.get_rates.return_value = Result.ok([])
    adapter.get_reservations.return_value = Result.ok([])
    for name, value in results.items():
        getattr(adapter, name).return_value = value
    return adapter


def day(room_id: str, on: date) -> AvailabilityDay:
    return AvailabilityDay(room_type_external_id=room_id, date=on, is_available=True, units_available=1)


@pytest.mark.unit
def test_full_sync_is_idempotent() -> None:
    """Test that repeating a full sync over unchanged PMS data leaves stored state unchanged."""
    gateway = FakeGateway()
    adapter = SmoobuAdapter(
        AdapterConfig(connection_id=1, gateway=gateway, session=routed_session(smoobu_routes()), settings=SETTINGS),
        api_key="k",
    )

    first = adapter.full_sync()
    snapshot = gateway.snapshot()
    second = adapter.full_sync()

    assert first.status == SyncStatus.SUCCESS
    assert first.sync_type == SyncType.FULL
    assert first.properties.synced == 1
    assert first.room_types.synced == 1
    assert first.availability.synced == 2
    assert first.rates.synced == 2
    assert first.reservations.synced == 2
    assert second.model_dump() == first.model_dump()
    assert gateway.snapshot() == snapshot
    assert len(gateway.reservations) == 2
    stored = gateway.reservations[(1, "2")]
    assert stored.check_in == date(2026, 5, 5)


@pytest.mark.unit
def test_failed_room_type_does_not_block_others() -> None:
    """Test that one failing calendar fetch is recorded while other room types still sync."""
    gateway = FakeGateway()
    adapter = mock_adapter(get_properties=Result.ok([make_property("p1", ["r1", "r2"])]))

    def availability(room_id: str, start: date, end: date) -> Result[Any]:
        if room_id == "r1":
            return Result.fail(ErrorCode.UNKNOWN, "HTTP 500")
        return Result.ok([day(room_id, start)])

    adapter.get_availability.side_effect = availability
    pipeline = SyncPipeline(adapter, gateway, 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions(sync_rates=False))

    assert stats.availability.errors == 1
    assert stats.availability.synced == 1
    assert stats.status == SyncStatus.PARTIAL_SUCCESS
    assert "room type r1: HTTP 500" in (stats.error_summary() or "")
    assert any(key[1] == "r2" for key in gateway.availability)


@pytest.mark.unit
def test_raising_property_fetch_does_not_skip_reservations() -> None:
    """Test that an exception from get_properties is recorded and reservations still sync."""
    reservation = Reservation(external_id="1", pricing=Pricing(currency="EUR"))
    adapter = mock_adapter(get_reservations=Result.ok([reservation]))
    adapter.get_properties.side_effect = ValueError("No JSON")
    gateway = FakeGateway()
    pipeline = SyncPipeline(adapter, gateway, 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions())

    assert stats.properties.errors == 1
    assert "properties: No JSON" in (stats.error_summary() or "")
    assert stats.reservations.synced == 1
    assert stats.status == SyncStatus.PARTIAL_SUCCESS
    assert (1, "1") in gateway.reservations


@pytest.mark.unit
def test_raising_reservation_fetch_is_recorded() -> None:
    """Test that an exception from get_reservations is counted instead of aborting the sync."""
    adapter = mock_adapter(get_properties=Result.ok([make_property("p1", ["r1"])]))
    adapter.get_availability.return_value = Result.ok([day("r1", date(2026, 5, 1))])
    adapter.get_reservations.side_effect = ValueError("invalid literal for int()")
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions(sync_rates=False))

    assert stats.reservations.errors == 1
    assert stats.availability.synced == 1
    assert stats.status == SyncStatus.PARTIAL_SUCCESS


@pytest.mark.unit
def test_mapping_errors_are_counted() -> None:
    """Test that per-item mapping failures count as errors without failing the step."""
    reservation = Reservation(external_id="1", pricing=Pricing(currency="EUR"))
    adapter = mock_adapter(get_reservations=Result.ok([reservation], errors=("reservation None: bad",)))
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions(sync_properties=False))

    assert stats.reservations.synced == 1
    assert stats.reservations.errors == 1
    assert stats.status == SyncStatus.PARTIAL_SUCCESS


@pytest.mark.unit
def test_everything_failing_is_failed() -> None:
    """Test that a sync with errors and nothing written is FAILED."""
    failure = Result.fail(ErrorCode.AUTH_FAILED, "bad key")
    adapter = mock_adapter(get_properties=failure, get_reservations=failure)
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions())

    assert stats.status == SyncStatus.FAILED
    assert stats.properties.errors == 1
    assert stats.reservations.errors == 1


@pytest.mark.unit
def test_rate_limited_step_is_retried_with_backoff() -> None:
    """Test that a RATE_LIMIT result is retried and the retry succeeds."""
    adapter = mock_adapter()
    adapter.get_properties.side_effect = [
        Result.fail(ErrorCode.RATE_LIMIT, "slow down", status_code=429),
        Result.fail(ErrorCode.TIMEOUT, "timed out"),
        Result.ok([make_property("p1", ["r1"])]),
    ]
    sleep = Mock()
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=sleep)

    stats = pipeline.full_sync(SyncOptions(sync_availability=False, sync_rates=False, sync_bookings=False))

    assert adapter.get_properties.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]
    assert stats.properties.synced == 1
    assert stats.status == SyncStatus.SUCCESS


@pytest.mark.unit
def test_auth_failure_is_not_retried() -> None:
    """Test that AUTH_FAILED is returned on first occurrence."""
    fn = Mock(return_value=Result.fail(ErrorCode.AUTH_FAILED, "nope"))
    sleep = Mock()

    result = call_with_retry(fn, SETTINGS, sleep=sleep)

    assert result.code == ErrorCode.AUTH_FAILED
    fn.assert_called_once()
    sleep.assert_not_called()


@pytest.mark.unit
def test_retries_are_bounded() -> None:
    """Test that retryable failures stop after step_max_retries retries."""
    fn = Mock(return_value=Result.fail(ErrorCode.NETWORK, "down"))
    sleep = Mock()

    result = call_with_retry(fn, SyncSettings(step_max_retries=2, retry_backoff_seconds=1.0), sleep=sleep)

    assert result.code == ErrorCode.NETWORK
    assert fn.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]


@pytest.mark.unit
def test_unsupported_calendar_step_is_skipped() -> None:
    """Test that a capability gap is not counted as an error."""
    adapter = mock_adapter(
        get_properties=Result.ok([make_property("p1", ["r1"])]),
        get_rates=unsupported("test", "get_rates"),
    )
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions(sync_bookings=False))

    assert stats.rates.errors == 0
    assert stats.status == SyncStatus.SUCCESS


@pytest.mark.unit
def test_room_types_fetched_when_not_embedded() -> None:
    """Test that properties without embedded room types trigger get_room_types."""
    gateway = FakeGateway()
    adapter = mock_adapter(
        get_properties=Result.ok([make_property("p1", []), make_property("p2", [])]),
        get_room_types=Result.ok([RoomType(external_id="r1", property_external_id="p1", name="r", currency="EUR")]),
    )
    adapter.get_room_types.side_effect = lambda pid: (
        Result.fail(ErrorCode.NOT_FOUND, "gone")
        if pid == "p2"
        else Result.ok([RoomType(external_id="r1", property_external_id="p1", name="r", currency="EUR")])
    )
    pipeline = SyncPipeline(adapter, gateway, 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions(sync_availability=False, sync_rates=False, sync_bookings=False))

    assert stats.room_types.synced == 1
    assert stats.room_types.errors == 1
    assert list(gateway.room_type_ids(1)) == ["r1"]


@pytest.mark.unit
def test_full_sync_without_properties_uses_stored_room_types() -> None:
    """Test that disabling property sync walks the room types already stored."""
    gateway = FakeGateway()
    gateway.upsert_properties(1, [make_property("p1", ["r1"])])
    gateway.upsert_room_types(1, make_property("p1", ["r1"]).room_types)
    adapter = mock_adapter()
    pipeline = SyncPipeline(adapter, gateway, 1, SETTINGS, sleep=Mock())

    pipeline.full_sync(SyncOptions(sync_properties=False, sync_bookings=False))

    adapter.get_properties.assert_not_called()
    assert adapter.get_availability.call_args.args[0] == "r1"
    start, end = adapter.get_availability.call_args.args[1:]
    assert (end - start).days == SETTINGS.availability_window_days - 1


@pytest.mark.unit
def test_incremental_uses_modified_since() -> None:
    """Test that an incremental pass asks only for recently modified reservations."""
    gateway = FakeGateway()
    gateway.upsert_properties(1, [make_property("p1", ["r1"])])
    gateway.upsert_room_types(1, make_property("p1", ["r1"]).room_types)
    adapter = mock_adapter()
    since = datetime(2026, 5, 1, 12, tzinfo=timezone.utc)
    pipeline = SyncPipeline(adapter, gateway, 1, SyncSettings(incremental_window_days=7), sleep=Mock())

    stats = pipeline.incremental_sync(since, SyncOptions())

    assert stats.sync_type == SyncType.INCREMENTAL
    adapter.get_properties.assert_not_called()
    assert adapter.get_reservations.call_args.kwargs["modified_since"] == since
    start, end = adapter.get_rates.call_args.args[1:]
    assert (end - start).days == 6


@pytest.mark.unit
def test_incremental_without_history_is_full() -> None:
    """Test that an incremental pass without a last success runs as full."""
    adapter = mock_adapter()
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=Mock())

    stats = pipeline.incremental_sync(None, SyncOptions())

    assert stats.sync_type == SyncType.FULL
    adapter.get_properties.assert_called_once()


@pytest.mark.unit
def test_dry_run_counts_without_writing() -> None:
    """Test that a dry-run gateway reports would-write counts and stores nothing."""
    gateway = FakeGateway(dry_run=True)
    adapter = mock_adapter(
        get_properties=Result.ok([make_property("p1", ["r1"])]),
        get_rates=Result.ok([RateDay(room_type_external_id="r1", date=date(2026, 5, 1), currency="EUR", price=10)]),
    )
    pipeline = SyncPipeline(adapter, gateway, 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions(sync_availability=False, sync_bookings=False))

    assert stats.properties.synced == 1
    assert stats.rates.synced == 1
    assert gateway.snapshot()["properties"] == {}


@pytest.mark.unit
def test_gateway_crash_is_isolated() -> None:
    """Test that an exception while storing one category does not abort the sync."""
    gateway = FakeGateway()
    gateway.upsert_properties = Mock(side_effect=RuntimeError("db down"))  # type: ignore[method-assign]
    reservation = Reservation(external_id="1", pricing=Pricing(currency="EUR"))
    adapter = mock_adapter(
        get_properties=Result.ok([make_property("p1", ["r1"])]), get_reservations=Result.ok([reservation])
    )
    pipeline = SyncPipeline(adapter, gateway, 1, SETTINGS, sleep=Mock())

    stats = pipeline.full_sync(SyncOptions())

    assert stats.properties.errors == 1
    assert stats.reservations.synced == 1
    assert stats.status == SyncStatus.PARTIAL_SUCCESS


@pytest.mark.unit
def test_refresh_calendar_reports_failure() -> None:
    """Test that a failed single-room refresh returns a failure for retry scheduling."""
    adapter = mock_adapter(get_availability=Result.fail(ErrorCode.UNKNOWN, "HTTP 500"))
    pipeline = SyncPipeline(adapter, FakeGateway(), 1, SETTINGS, sleep=Mock())

    result = pipeline.refresh_calendar("r1", date(2026, 5, 1), date(2026, 5, 2), rates=False)

    assert not result.success
    assert "HTTP 500" in (result.message or "")
