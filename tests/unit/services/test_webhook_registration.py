"""Unit tests for services/webhook_registration.py."""

from typing import Any
from unittest.mock import Mock

import pytest

from pms_sync.adapters.base import AdapterConfig
from pms_sync.adapters.calry import CalryAdapter
from pms_sync.adapters.smoobu import SmoobuAdapter
from pms_sync.db.gateway import ConnectionNotFoundError
from pms_sync.network.errors import ErrorCode
from pms_sync.services.webhook_registration import (
    register_connection_webhook,
    unregister_connection_webhook,
    webhook_url,
)
from tests.conftest import FakeGateway, make_connection, make_response, routed_session


def registry_for(adapter: Any) -> Mock:
    registry = Mock()
    registry.adapter_for_connection.return_value = adapter
    return registry


def calry(routes: dict[str, Any]) -> tuple[CalryAdapter, Mock]:
    session = routed_session(routes)
    adapter = CalryAdapter(AdapterConfig(session=session), token="tok", workspace_id="ws", integration_account_id="ia")
    return adapter, session


@pytest.mark.unit
def test_webhook_url_points_at_connection_receiver() -> None:
    assert webhook_url(4, "https://sync.example.com/") == "https://sync.example.com/connections/4/webhooks"


@pytest.mark.unit
def test_register_subscribes_receiver_url() -> None:
    """Test that the connection's receiver route is registered with the configured events."""
    adapter, session = calry({"/webhooks": make_response(200, {"data": {"id": "wh-1"}})})
    gateway = FakeGateway([make_connection(id=4, adapter_code="calry")])

    result = register_connection_webhook(
        registry_for(adapter), gateway, 4, base_url="https://sync.example.com", events=["reservation.updated"]
    )

    assert result.success
    assert result.data.webhook_id == "wh-1"
    assert session.request.call_args[1]["json"] == {
        "url": "https://sync.example.com/connections/4/webhooks",
        "events": ["reservation.updated"],
    }


@pytest.mark.unit
def test_register_without_base_url_fails_before_any_call() -> None:
    """Test that a missing public URL is reported instead of registering a relative path."""
    registry = Mock()

    result = register_connection_webhook(registry, FakeGateway([make_connection()]), 1, base_url="")

    assert not result.success
    assert "WEBHOOK_BASE_URL" in result.message
    registry.adapter_for_connection.assert_not_called()


@pytest.mark.unit
def test_register_on_pms_without_registration_api_is_unsupported() -> None:
    """Test that direct adapters report the capability gap."""
    adapter = SmoobuAdapter(AdapterConfig(session=routed_session({})), api_key="k")

    result = register_connection_webhook(
        registry_for(adapter), FakeGateway([make_connection()]), 1, base_url="https://sync.example.com"
    )

    assert result.code == ErrorCode.UNSUPPORTED


@pytest.mark.unit
def test_register_unknown_connection_raises() -> None:
    with pytest.raises(ConnectionNotFoundError):
        register_connection_webhook(Mock(), FakeGateway(), 9, base_url="https://sync.example.com")


@pytest.mark.unit
def test_unregister_passes_refusal_through() -> None:
    """Test that a refused removal surfaces the broker's error."""
    adapter, _ = calry({"/webhooks/wh-1": make_response(404, {"message": "webhook not found"})})
    gateway = FakeGateway([make_connection(id=4, adapter_code="calry")])

    result = unregister_connection_webhook(registry_for(adapter), gateway, 4, "wh-1")

    assert not result.success
    assert result.code == ErrorCode.NOT_FOUND
    assert "webhook not found" in result.message
