"""
Push-notification registration for connections whose PMS exposes an API for it.

The subscribed URL is the connection's own receiver route, so deliveries land
in ``WebhookProcessor.process_webhook`` like any manually configured webhook.
"""

from __future__ import annotations

from typing import Any

import structlog

from pms_sync.adapters.registry import AdapterRegistry
from pms_sync.config import WEBHOOK_BASE_URL, WEBHOOK_EVENTS, SyncSettings
from pms_sync.db.gateway import PersistenceGateway
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.schemas.entities import WebhookSubscription

logger = structlog.get_logger(__name__)


def webhook_url(connection_id: int, base_url: str = WEBHOOK_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/connections/{connection_id}/webhooks"


def register_connection_webhook(
    registry: AdapterRegistry,
    gateway: PersistenceGateway,
    connection_id: int,
    base_url: str = WEBHOOK_BASE_URL,
    events: list[str] | None = None,
    settings: SyncSettings | None = None,
) -> Result[WebhookSubscription]:
    """
    Subscribe the connection's receiver route with its PMS.

    Args:
        registry: Adapter registry
        gateway: Persistence gateway
        connection_id: Connection to subscribe
        base_url: Public root of this service
        events: Event names to subscribe to; ``WEBHOOK_EVENTS`` when omitted
        settings: Sync policy handed to the adapter

    Returns:
        Result: The subscription, or UNSUPPORTED when the PMS has no
        registration API

    Raises:
        ConnectionNotFoundError: If the connection does not exist
    """
    if not base_url:
        return Result.fail(ErrorCode.UNKNOWN, "WEBHOOK_BASE_URL is not configured")

    connection = gateway.get_connection(connection_id)
    adapter = registry.adapter_for_connection(connection, gateway, settings)
    url = webhook_url(connection_id, base_url)

    logger.info("webhook_registration_started", connection_id=connection_id, adapter=adapter.code, url=url)
    result = adapter.register_webhook(url, list(events or WEBHOOK_EVENTS))
    if result.success:
        logger.info(
            "webhook_registration_completed",
            connection_id=connection_id,
            adapter=adapter.code,
            webhook_id=result.data.webhook_id,
        )
    else:
        logger.warning(
            "webhook_registration_failed",
            connection_id=connection_id,
            adapter=adapter.code,
            code=result.code,
            error=result.message,
        )
    return result


def unregister_connection_webhook(
    registry: AdapterRegistry,
    gateway: PersistenceGateway,
    connection_id: int,
    webhook_id: str,
    settings: SyncSettings | None = None,
) -> Result[Any]:
    connection = gateway.get_connection(connection_id)
    adapter = registry.adapter_for_connection(connection, gateway, settings)
    result = adapter.unregister_webhook(webhook_id)
    if not result.success:
        logger.warning(
            "webhook_unregistration_failed",
            connection_id=connection_id,
            adapter=adapter.code,
            webhook_id=webhook_id,
            error=result.message,
        )
    return result
