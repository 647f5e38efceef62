"""
FastAPI dependency providers.

Routes receive the gateway and webhook processor through ``Depends`` so tests
can replace them via ``app.dependency_overrides`` without a database.
"""

from __future__ import annotations

from functools import lru_cache

from pms_sync.adapters.registry import AdapterRegistry, default_registry
from pms_sync.config import SyncSettings
from pms_sync.db.gateway import PersistenceGateway
from pms_sync.services.webhooks import WebhookProcessor


@lru_cache(maxsize=1)
def get_registry() -> AdapterRegistry:
    """Process-wide adapter registry, built once at first use."""
    return default_registry()


@lru_cache(maxsize=1)
def get_gateway() -> PersistenceGateway:
    return PersistenceGateway()


def get_webhook_processor() -> WebhookProcessor:
    """
    Provide a webhook processor wired to the shared registry and gateway.

    Testing Example:
        >>> app.dependency_overrides[get_webhook_processor] = lambda: fake_processor
    """
    return WebhookProcessor(get_registry(), get_gateway(), SyncSettings.from_env())
