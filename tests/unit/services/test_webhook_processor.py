"""Unit tests for services/webhooks.py."""

import hashlib
import hmac
import json
from datetime import date, timedelta
from typing import Any
from unittest.mock import Mock

import pytest

from pms_sync.adapters.base import AdapterConfig
from pms_sync.adapters.beds24 import Beds24Adapter
from pms_sync.adapters.hostaway import HostawayAdapter
from pms_sync.adapters.smoobu import SmoobuAdapter
from pms_sync.config import SyncSettings
from pms_sync.db.gateway import ConnectionNotFoundError
from pms_sync.schemas.entities import Pricing, Property, Reservation, ReservationStatus, RoomType
from pms_sync.services.webhooks import (
    WebhookProcessor,
    WebhookVerificationError,
    derive_event_id,
    retry_delay,
)
from pms_sync.utils.datetime import utc_now
from tests.conftest import FakeGateway, make_connection, make_response, routed_session

SETTINGS = SyncSettings(webhook_max_retries=3, webhook_retry_base_seconds=60, step_max_retries=0)

RESERVATION = {"id": 55, "arrival": "2026-06-01", "departure": "2026-06-04", "apartment": {"id": 101}}


def created(reservation_id: int = 55) -> dict[str, Any]:
    return {"action": "newReservation", "data": {"id": reservation_id, "apartment": {"id": 101}}}


def build(routes: dict[str, Any], gateway: FakeGateway | None = None) -> tuple[WebhookProcessor, FakeGateway, Mock]:
    gateway = gateway or FakeGateway([make_connection()])
    session = routed_session(routes)
    adapter = SmoobuAdapter(AdapterConfig(connection_id=1, gateway=gateway, session=session), api_key="k")
    registry = Mock()
    registry.adapter_for_connection.return_value = adapter
    return WebhookProcessor(registry, gateway, SETTINGS), gateway, session


def store_apartment(gateway: FakeGateway) -> None:
    gateway.upsert_properties(1, [Property(external_id="101", name="Loft", currency="EUR")])
    gateway.upsert_room_types(
        1, [RoomType(external_id="101", property_external_id="101", name="Loft", currency="EUR")]
    )


@pytest.mark.unit
def test_reservation_created_is_fetched_and_stored() -> None:
    """Test that a reservation event re-fetches the reservation and marks the event processed."""
    processor, gateway, _ = build({"/reservations/55": make_response(200, RESERVATION)})

    event = processor.process_webhook(1, created(), {})

    assert event.event == "reservation.created"
    assert not event.duplicate
    assert event.event_id is not None and len(event.event_id) == 64
    assert gateway.reservations[(1, "55")].check_in == date(2026, 6, 1)
    row = gateway.webhook_events[1]
    assert row["status"] == "processed"
    assert row["processed_at"] is not None


@pytest.mark.unit
def test_redelivery_is_deduplicated() -> None:
    """Test that the same delivery twice is processed once."""
    processor, gateway, session = build({"/reservations/55": make_response(200, RESERVATION)})

    processor.process_webhook(1, created(), {})
    calls_after_first = session.request.call_count
    second = processor.process_webhook(1, created(), {})

    assert second.duplicate
    assert session.request.call_count == calls_after_first
    assert len(gateway.webhook_events) == 1


@pytest.mark.unit
def test_header_event_id_wins() -> None:
    """Test that a provider delivery id header is used for deduplication."""
    processor, gateway, _ = build({"/reservations/55": make_response(200, RESERVATION)})

    first = processor.process_webhook(1, created(), {"X-Event-Id": "evt-1"})
    second = processor.process_webhook(1, created(56), {"x-event-id": "evt-1"})

    assert first.event_id == "evt-1"
    assert second.duplicate


@pytest.mark.unit
def test_failure_schedules_retry() -> None:
    """Test that a failed refresh stays pending with an exponential retry time."""
    processor, gateway, _ = build({"/reservations/55": make_response(500, {"message": "upstream"})})
    before = utc_now()

    processor.process_webhook(1, created(), {})

    row = gateway.webhook_events[1]
    assert row["status"] == "pending"
    assert row["retry_count"] == 1
    assert row["last_error"] == "upstream"
    assert before + timedelta(seconds=59) <= row["next_retry_at"] <= utc_now() + timedelta(seconds=61)


@pytest.mark.unit
def test_retry_until_max_then_failed() -> None:
    """Test that an event failing webhook_max_retries times ends up failed."""
    processor, gateway, _ = build({"/reservations/55": make_response(500, {"message": "upstream"})})
    later = utc_now() + timedelta(days=1)

    processor.process_webhook(1, created(), {})
    assert processor.retry_failed_events(now=later) == 1
    assert gateway.webhook_events[1]["retry_count"] == 2
    assert gateway.webhook_events[1]["status"] == "pending"
    assert processor.retry_failed_events(now=later) == 1

    row = gateway.webhook_events[1]
    assert row["status"] == "failed"
    assert row["retry_count"] == 3
    assert processor.retry_failed_events(now=later) == 0


@pytest.mark.unit
def test_retry_succeeds_later() -> None:
    """Test that a retried event that now succeeds is marked processed."""
    responses = iter([make_response(500, {"message": "upstream"}), make_response(200, RESERVATION)])
    processor, gateway, _ = build({"/reservations/55": lambda method, url, **kw: next(responses)})

    processor.process_webhook(1, created(), {})
    processor.retry_failed_events(now=utc_now() + timedelta(days=1))

    assert gateway.webhook_events[1]["status"] == "processed"
    assert (1, "55") in gateway.reservations


@pytest.mark.unit
def test_retry_not_due_is_left_alone() -> None:
    """Test that events are only retried once their retry time has come."""
    processor, gateway, _ = build({"/reservations/55": make_response(500, {"message": "upstream"})})

    processor.process_webhook(1, created(), {})

    assert processor.retry_failed_events(now=utc_now()) == 0
    assert gateway.webhook_events[1]["retry_count"] == 1


@pytest.mark.unit
def test_retry_for_deleted_connection_fails_event() -> None:
    """Test that events of a removed connection are failed instead of retried forever."""
    processor, gateway, _ = build({"/reservations/55": make_response(500, {"message": "upstream"})})
    processor.process_webhook(1, created(), {})
    del gateway.connections[1]

    processor.retry_failed_events(now=utc_now() + timedelta(days=1))

    assert gateway.webhook_events[1]["status"] == "failed"


@pytest.mark.unit
def test_unknown_event_is_processed_without_fetching() -> None:
    """Test that unsupported event types are acknowledged and marked processed."""
    processor, gateway, session = build({})

    event = processor.process_webhook(1, {"action": "somethingNew", "data": {}}, {})

    assert event.event == "somethingNew"
    assert gateway.webhook_events[1]["status"] == "processed"
    session.request.assert_not_called()


@pytest.mark.unit
def test_cancellation_of_stored_reservation() -> None:
    """Test that cancelling a stored reservation updates it without an API call."""
    processor, gateway, session = build({})
    gateway.upsert_reservations(1, [Reservation(external_id="55", pricing=Pricing(currency="EUR"))])

    processor.process_webhook(1, {"action": "cancelReservation", "data": {"id": 55}}, {})

    assert gateway.reservations[(1, "55")].status == ReservationStatus.CANCELLED
    session.request.assert_not_called()
    assert gateway.webhook_events[1]["status"] == "processed"


@pytest.mark.unit
def test_cancellation_of_unknown_reservation_fetches_it() -> None:
    """Test that cancelling a reservation never stored locally fetches it."""
    cancelled = {**RESERVATION, "type": "cancellation"}
    processor, gateway, _ = build({"/reservations/55": make_response(200, cancelled)})

    processor.process_webhook(1, {"action": "cancelReservation", "data": {"id": 55}}, {})

    assert gateway.reservations[(1, "55")].status == ReservationStatus.CANCELLED


@pytest.mark.unit
def test_calendar_event_refreshes_window() -> None:
    """Test that a rates/availability push re-fetches the room type's calendar."""
    rates = {"data": {"101": {"2026-06-01": {"price": 120, "available": 1}}}}
    processor, gateway, session = build({"/rates": make_response(200, rates)})
    store_apartment(gateway)

    processor.process_webhook(1, {"action": "updateRates", "data": {"apartment": {"id": 101}}}, {})

    assert (1, "101", date(2026, 6, 1)) in gateway.availability
    assert gateway.webhook_events[1]["status"] == "processed"
    params = session.request.call_args[1]["params"]
    start = date.fromisoformat(params["start_date"])
    end = date.fromisoformat(params["end_date"])
    assert (end - start).days == SETTINGS.webhook_availability_window_days - 1


@pytest.mark.unit
def test_missing_connection_raises() -> None:
    """Test that deliveries for unknown connections raise ConnectionNotFoundError."""
    processor, _, _ = build({})

    with pytest.raises(ConnectionNotFoundError):
        processor.process_webhook(42, created(), {})


def beds24_processor(routes: dict[str, Any]) -> tuple[WebhookProcessor, FakeGateway]:
    gateway = FakeGateway([make_connection(adapter_code="beds24", credentials={"token": "tok"})])
    adapter = Beds24Adapter(
        AdapterConfig(connection_id=1, gateway=gateway, session=routed_session(routes)), token="tok"
    )
    registry = Mock()
    registry.adapter_for_connection.return_value = adapter
    return WebhookProcessor(registry, gateway, SETTINGS), gateway


@pytest.mark.unit
def test_later_push_for_same_booking_is_not_a_duplicate() -> None:
    """Test that a cancellation posted after the creation of one Beds24 booking is applied."""
    booking = {"id": 77, "propertyId": 3, "roomId": 31, "arrival": "2026-07-01", "departure": "2026-07-03"}
    processor, gateway = beds24_processor(
        {"/bookings": make_response(200, {"success": True, "data": [{**booking, "status": "confirmed"}]})}
    )

    created_event = processor.process_webhook(1, {**booking, "status": "confirmed"}, {})
    cancelled_event = processor.process_webhook(1, {**booking, "status": "cancelled"}, {})
    redelivered = processor.process_webhook(1, {**booking, "status": "cancelled"}, {})

    assert created_event.event == "reservation.created"
    assert cancelled_event.event == "reservation.cancelled"
    assert not cancelled_event.duplicate
    assert cancelled_event.event_id != created_event.event_id
    assert redelivered.duplicate
    assert gateway.reservations[(1, "77")].status == ReservationStatus.CANCELLED
    assert [row["status"] for row in gateway.webhook_events.values()] == ["processed", "processed"]


@pytest.mark.unit
def test_event_left_pending_by_a_crash_is_retried() -> None:
    """Test that an event whose outcome was never recorded is picked up once its lease expires."""
    processor, gateway, _ = build({"/reservations/55": make_response(200, RESERVATION)})
    record_outcome = gateway.update_webhook_event
    attempts: list[str] = []

    def flaky_update(row_id: int, status: str, **fields: Any) -> None:
        attempts.append(status)
        if len(attempts) == 1:
            raise RuntimeError("server closed the connection unexpectedly")
        record_outcome(row_id, status, **fields)

    gateway.update_webhook_event = flaky_update  # type: ignore[method-assign]

    with pytest.raises(RuntimeError):
        processor.process_webhook(1, created(), {})

    row = gateway.webhook_events[1]
    assert row["status"] == "pending"
    assert row["next_retry_at"] is not None
    assert processor.process_webhook(1, created(), {}).duplicate
    assert processor.retry_failed_events(now=utc_now()) == 0
    lease_expired = utc_now() + timedelta(seconds=SETTINGS.webhook_retry_base_seconds + 1)
    assert processor.retry_failed_events(now=lease_expired) == 1
    assert row["status"] == "processed"


@pytest.mark.unit
def test_unparseable_stored_payload_counts_toward_retries() -> None:
    """Test that a stored payload the adapter can no longer parse ends up failed."""
    processor, gateway, _ = build({"/reservations/55": make_response(500, {"message": "upstream"})})
    later = utc_now() + timedelta(days=1)
    processor.process_webhook(1, created(), {})
    adapter = processor.registry.adapter_for_connection.return_value
    adapter.parse_webhook_payload = Mock(side_effect=KeyError("data"))

    processor.retry_failed_events(now=later)
    assert gateway.webhook_events[1]["retry_count"] == 2
    assert "data" in gateway.webhook_events[1]["last_error"]
    processor.retry_failed_events(now=later)

    assert gateway.webhook_events[1]["status"] == "failed"


def hostaway_processor(secret: str) -> tuple[WebhookProcessor, FakeGateway]:
    gateway = FakeGateway([make_connection(adapter_code="hostaway", webhook_secret=secret)])
    adapter = HostawayAdapter(
        AdapterConfig(connection_id=1, gateway=gateway, session=routed_session({})),
        client_id="1",
        client_secret="s",
    )
    registry = Mock()
    registry.adapter_for_connection.return_value = adapter
    return WebhookProcessor(registry, gateway, SETTINGS), gateway


@pytest.mark.unit
def test_invalid_signature_is_rejected() -> None:
    """Test that a bad signature raises and nothing is stored."""
    processor, gateway = hostaway_processor("secret")
    body = b'{"event":"unknown.thing"}'

    with pytest.raises(WebhookVerificationError):
        processor.process_webhook(1, json.loads(body), {"X-Hostaway-Signature": "nope"}, raw_body=body)

    assert gateway.webhook_events == {}


@pytest.mark.unit
def test_valid_signature_over_raw_body() -> None:
    """Test that a correct HMAC over the raw bytes is accepted."""
    processor, gateway = hostaway_processor("secret")
    body = b'{"event": "unknown.thing", "webhookId": "w-1"}'
    signature = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    event = processor.process_webhook(1, json.loads(body), {"X-Hostaway-Signature": signature}, raw_body=body)

    assert event.event_id == "w-1"
    assert gateway.webhook_events[1]["status"] == "processed"


@pytest.mark.unit
def test_derive_event_id_precedence() -> None:
    """Test header ids, then payload ids, then a content fingerprint."""
    payload = {"webhookId": "w-9", "data": {"id": 1}}

    assert derive_event_id(payload, {"X-Webhook-Id": "h-1"}) == "h-1"
    assert derive_event_id(payload, {}) == "w-9"
    assert len(derive_event_id({"id": 77, "status": "confirmed"}, {})) == 64
    fingerprint = derive_event_id({"b": 1, "a": 2}, {})
    assert fingerprint == derive_event_id({"a": 2, "b": 1}, {})
    assert fingerprint != derive_event_id({"a": 3, "b": 1}, {})


@pytest.mark.unit
@pytest.mark.parametrize("retry_count,seconds", [(1, 60), (2, 120), (3, 240), (5, 960)])
def test_retry_delay_doubles(retry_count: int, seconds: int) -> None:
    """Test the exponential retry schedule."""
    assert retry_delay(retry_count, 60) == timedelta(seconds=seconds)
