"""Unit tests for the Hostaway adapter."""

import hashlib
import hmac
from datetime import date
from typing import Any
from unittest.mock import Mock

import pytest

from pms_sync.adapters.base import AdapterConfig
from pms_sync.adapters.hostaway import HostawayAdapter
from pms_sync.network.errors import ErrorCode
from tests.conftest import make_response, routed_session

TOKEN = make_response(200, {"access_token": "tok", "expires_in": 3600})


def listings_page(method: str, url: str, **kwargs: Any) -> Any:
    offset = kwargs["params"]["offset"]
    pages = {0: [{"id": 1}, {"id": 2}], 2: [{"id": 3}]}
    return make_response(200, {"status": "success", "result": pages[offset], "count": 3})


def build(session: Any, **config: Any) -> HostawayAdapter:
    return HostawayAdapter(AdapterConfig(session=session, **config), client_id="123", client_secret="s")


@pytest.mark.unit
def test_token_fetched_lazily_and_persisted() -> None:
    """Test that the first call mints a token and hands it to the persistence callback."""
    on_token = Mock()
    session = routed_session(
        {"/accessTokens": TOKEN, "/listings/1": make_response(200, {"status": "success", "result": {"id": 1}})}
    )
    adapter = build(session, on_token=on_token)

    result = adapter.get_property("1")

    assert result.success
    assert result.data.external_id == "1"
    on_token.assert_called_once()
    assert session.request.call_args[1]["headers"]["Authorization"] == "Bearer tok"


@pytest.mark.unit
def test_listings_paginate_by_offset() -> None:
    """Test offset pagination until the reported count is reached."""
    session = routed_session({"/accessTokens": TOKEN, "/listings": listings_page})
    adapter = build(session)

    result = adapter.get_properties(limit=2)

    assert [p.external_id for p in result.data] == ["1", "2", "3"]
    assert all(len(p.room_types) == 1 for p in result.data)


@pytest.mark.unit
def test_error_envelope_is_failure() -> None:
    """Test that a 200 with status=fail is still a failure."""
    session = routed_session(
        {"/accessTokens": TOKEN, "/reservations/9": make_response(200, {"status": "fail", "message": "Not allowed"})}
    )

    result = build(session).get_reservation("9")

    assert not result.success
    assert result.message == "Not allowed"


@pytest.mark.unit
def test_forbidden_clears_token() -> None:
    """Test that a 403 drops the cached token so the next call re-authenticates."""
    session = routed_session({"/accessTokens": TOKEN, "/listings/1": make_response(403, {"message": "expired"})})
    adapter = build(session)

    result = adapter.get_property("1")

    assert result.code == ErrorCode.AUTH_FAILED
    assert adapter.auth.access_token is None


@pytest.mark.unit
def test_webhook_cancellation_by_status() -> None:
    """Test that an update carrying a cancelled status is treated as a cancellation."""
    adapter = build(routed_session({}))

    event = adapter.parse_webhook_payload(
        {"event": "reservation.updated", "data": {"id": 9, "listingMapId": 1, "status": "cancelled"}}, {}
    )

    assert event.event == "reservation.cancelled"
    assert event.external_id == "9"
    assert event.property_external_id == "1"


@pytest.mark.unit
def test_webhook_calendar_targets_listing() -> None:
    """Test that calendar events use the listing id as external id."""
    adapter = build(routed_session({}))

    event = adapter.parse_webhook_payload({"eventType": "listing.calendar.updated", "data": {"listingId": 7}}, {})

    assert event.event == "availability.updated"
    assert event.external_id == "7"


@pytest.mark.unit
def test_webhook_signature() -> None:
    """Test HMAC signature verification over the raw body."""
    adapter = build(routed_session({}))
    body = b'{"event":"reservation.created"}'
    signature = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    assert adapter.verify_webhook_signature(body, {"X-Hostaway-Signature": signature}, "secret")
    assert adapter.verify_webhook_signature(body, {"x-hostaway-signature": f"sha256={signature}"}, "secret")
    assert not adapter.verify_webhook_signature(body, {"X-Hostaway-Signature": "bad"}, "secret")
    assert not adapter.verify_webhook_signature(body, {}, "secret")
    assert adapter.verify_webhook_signature(body, {}, None)


@pytest.mark.unit
def test_failed_page_ends_pagination_as_failure() -> None:
    """Test that a status=fail envelope on a later page fails the whole listing fetch."""

    def pages(method: str, url: str, **kwargs: Any) -> Any:
        if kwargs["params"]["offset"] == 0:
            return make_response(200, {"status": "success", "result": [{"id": 1}, {"id": 2}], "count": 4})
        return make_response(200, {"status": "fail", "message": "Request limit reached"})

    session = routed_session({"/accessTokens": TOKEN, "/listings": pages})

    result = build(session).get_properties(limit=2)

    assert not result.success
    assert result.message == "Request limit reached"


@pytest.mark.unit
def test_calendar_window_fetched_once_for_availability_and_rates() -> None:
    """Test that availability and rates for the same window share one calendar call."""
    calendar_calls: list[dict[str, Any]] = []

    def calendar(method: str, url: str, **kwargs: Any) -> Any:
        calendar_calls.append(kwargs["params"])
        days = [{"date": "2026-06-01", "isAvailable": 1, "price": 120, "minimumStay": 2}]
        return make_response(200, {"status": "success", "result": days})

    session = routed_session(
        {
            "/accessTokens": TOKEN,
            "/listings/7/calendar": calendar,
            "/listings/7/calendarIntervals": make_response(200, {"status": "success", "result": []}),
        }
    )
    adapter = build(session)
    start, end = date(2026, 6, 1), date(2026, 6, 30)

    availability = adapter.get_availability("7", start, end)
    rates = adapter.get_rates("7", start, end)

    assert availability.data[0].is_available
    assert rates.data[0].price == 120.0
    assert len(calendar_calls) == 1

    adapter.get_availability("7", start, end)
    adapter.update_rates("7", rates.data)
    adapter.get_rates("7", start, end)

    assert len(calendar_calls) == 3


@pytest.mark.unit
def test_register_unified_webhook() -> None:
    """Test that registration creates an enabled unified webhook without basic-auth credentials."""
    session = routed_session(
        {
            "/accessTokens": TOKEN,
            "/webhooks/unifiedWebhooks": make_response(200, {"status": "success", "result": {"id": 318}}),
        }
    )

    result = build(session).register_webhook("https://sync.example.com/connections/2/webhooks", ["reservation.created"])

    assert result.success
    assert result.data.webhook_id == "318"
    assert session.request.call_args[1]["json"] == {
        "isEnabled": 1,
        "url": "https://sync.example.com/connections/2/webhooks",
        "login": None,
        "password": None,
        "alertingEmailAddress": None,
    }


@pytest.mark.unit
def test_unregister_unified_webhook_reports_envelope_failure() -> None:
    """Test that a 200 answer with status fail is not treated as removed."""
    session = routed_session(
        {
            "/accessTokens": TOKEN,
            "/webhooks/unifiedWebhooks/318": make_response(200, {"status": "fail", "message": "Webhook not found"}),
        }
    )

    result = build(session).unregister_webhook("318")

    assert not result.success
    assert result.message == "Webhook not found"
    assert session.request.call_args[0][0] == "DELETE"
