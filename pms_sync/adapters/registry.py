"""
Adapter registry and factory.

Resolves an integration code to a concrete adapter: a directly registered
adapter wins; otherwise codes on the broker's supported-PMS list are routed
to the broker adapter with ``pms_type`` set to the code. The registry is the
only place that knows how a connection's credential bag maps onto adapter
constructor arguments.
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

import structlog

from pms_sync.adapters.base import AdapterConfig, PmsAdapter, SyncOptions
from pms_sync.adapters.beds24 import Beds24Adapter
from pms_sync.adapters.beds24_v1 import Beds24V1Adapter
from pms_sync.adapters.calry import CalryAdapter
from pms_sync.adapters.hostaway import HostawayAdapter
from pms_sync.adapters.smoobu import SmoobuAdapter
from pms_sync.config import SyncSettings
from pms_sync.schemas.connections import ConnectionRecord
from pms_sync.schemas.entities import TokenInfo

if TYPE_CHECKING:
    from pms_sync.db.gateway import PersistenceGateway

logger = structlog.get_logger(__name__)

CALRY_SUPPORTED_PMS = (
    "guesty",
    "hostfully",
    "hospitable",
    "bookingsync",
    "smily",
    "apaleo",
    "cloudbeds",
    "lodgify",
    "ownerrez",
    "tokeet",
    "streamline",
    "track",
    "escapia",
    "liverez",
    "barefoot",
    "resly",
    "elina",
    "uplisting",
    "fantasticstay",
    "avantio",
    "rentlio",
    "ciirus",
    "myvr",
    "hostify",
    "bookeye",
    "stayntouch",
    "webrezpro",
    "roomracoon",
    "little_hotelier",
    "newbook",
    "sirvoy",
    "clock_pms",
    "mews",
    "hotelogix",
)

# Canonical credential name -> accepted spellings in a connection's bag
CREDENTIAL_ALIASES: dict[str, tuple[str, ...]] = {
    "token": ("token", "access_token", "accessToken"),
    "refresh_token": ("refresh_token", "refreshToken"),
    "invite_code": ("invite_code", "inviteCode"),
    "api_key": ("api_key", "apiKey", "v1ApiKey"),
    "prop_key": ("prop_key", "propKey"),
    "prop_keys": ("prop_keys", "propKeys"),
    "client_id": ("client_id", "clientId", "accountId", "account_id"),
    "client_secret": ("client_secret", "clientSecret"),
    "workspace_id": ("workspace_id", "workspaceId"),
    "integration_account_id": ("integration_account_id", "integrationAccountId"),
}


class UnknownAdapterError(ValueError):
    """Raised when no adapter (direct or brokered) serves an integration code."""


class MissingCredentialsError(ValueError):
    """Raised when a credential bag lacks a field the adapter requires."""


def normalize_credentials(bag: dict[str, Any] | None) -> dict[str, Any]:
    """
    Translate a credential bag into canonical credential names.

    Blank values are dropped so that an empty alias never shadows a
    populated one.
    """
    bag = bag or {}
    canonical: dict[str, Any] = {}
    for name, aliases in CREDENTIAL_ALIASES.items():
        for alias in aliases:
            value = bag.get(alias)
            if value not in (None, ""):
                canonical[name] = value
                break
    return canonical


def _constructor_params(adapter_cls: type[PmsAdapter]) -> set[str]:
    params = inspect.signature(adapter_cls.__init__).parameters
    return {name for name in params if name not in ("self", "config")}


class AdapterRegistry:
    """
    Explicit, constructed registry of adapter classes.

    Args:
        broker_code: Code of the broker adapter used for routed PMSs
        broker_supported: PMS codes the broker fronts
    """

    def __init__(self, broker_code: str = "calry", broker_supported: tuple[str, ...] = CALRY_SUPPORTED_PMS):
        self._adapters: dict[str, type[PmsAdapter]] = {}
        self.broker_code = broker_code
        self.broker_supported = frozenset(broker_supported)

    def register(self, adapter_cls: type[PmsAdapter]) -> None:
        self._adapters[adapter_cls.code] = adapter_cls

    def resolve(self, code: str) -> tuple[type[PmsAdapter], str | None]:
        """
        Find the adapter class serving ``code``.

        Returns:
            tuple: (adapter class, downstream pms_type or None for direct adapters)

        Raises:
            UnknownAdapterError: If neither a direct nor a brokered adapter matches
        """
        normalized = code.strip().lower()
        if normalized in self._adapters:
            return self._adapters[normalized], None
        if normalized in self.broker_supported and self.broker_code in self._adapters:
            return self._adapters[self.broker_code], normalized
        raise UnknownAdapterError(
            f"Unknown adapter type: {code}. Available: {', '.join(self.available_adapters())}"
        )

    def get_adapter(
        self,
        code: str,
        config: AdapterConfig | None = None,
        credentials: dict[str, Any] | None = None,
    ) -> PmsAdapter:
        """
        Construct an adapter for an integration code.

        Args:
            code: Integration code, direct ("beds24") or brokered ("guesty")
            config: Adapter configuration; defaults are used when omitted
            credentials: Generic credential bag in any accepted spelling

        Raises:
            UnknownAdapterError: If the code is not served
            MissingCredentialsError: If a required credential group is empty
        """
        adapter_cls, pms_type = self.resolve(code)
        config = config or AdapterConfig()
        if pms_type and not config.pms_type:
            config.pms_type = pms_type

        canonical = normalize_credentials(credentials)
        for group in adapter_cls.required_credentials:
            if not any(name in canonical for name in group):
                raise MissingCredentialsError(
                    f"{adapter_cls.code} requires one of: {', '.join(group)}"
                )

        accepted = _constructor_params(adapter_cls)
        kwargs = {name: value for name, value in canonical.items() if name in accepted}
        return adapter_cls(config, **kwargs)

    def available_adapters(self) -> list[str]:
        routed = [f"{pms} (via {self.broker_code})" for pms in sorted(self.broker_supported)]
        return sorted(self._adapters) + routed

    def is_available(self, code: str) -> bool:
        try:
            self.resolve(code)
        except UnknownAdapterError:
            return False
        return True

    def adapter_info(self, code: str) -> dict[str, Any] | None:
        try:
            adapter_cls, pms_type = self.resolve(code)
        except UnknownAdapterError:
            return None
        return {
            "code": pms_type or adapter_cls.code,
            "name": adapter_cls.name if pms_type is None else pms_type,
            "auth_type": adapter_cls.auth_type,
            "capabilities": sorted(adapter_cls.capabilities),
            "requests_per_minute": adapter_cls.requests_per_minute,
            "routed_via": adapter_cls.code if pms_type else None,
        }

    def adapter_for_connection(
        self,
        connection: ConnectionRecord,
        gateway: "PersistenceGateway",
        settings: SyncSettings | None = None,
    ) -> PmsAdapter:
        """
        Build the adapter for a stored connection.

        Runtime tokens stored on the connection override the credential bag,
        and freshly minted tokens are persisted back through the gateway.
        """
        credentials = dict(connection.credentials or {})
        if connection.access_token:
            credentials["token"] = connection.access_token
        if connection.refresh_token:
            credentials["refresh_token"] = connection.refresh_token

        def persist_token(info: TokenInfo) -> None:
            gateway.update_tokens(connection.id, info)

        config = AdapterConfig(
            connection_id=connection.id,
            gateway=gateway,
            default_currency=connection.default_currency,
            on_token=persist_token,
            settings=settings or SyncSettings.from_env(),
            options=SyncOptions(
                sync_properties=connection.sync_properties,
                sync_availability=connection.sync_availability,
                sync_rates=connection.sync_rates,
                sync_bookings=connection.sync_bookings,
                availability_window_days=connection.availability_window_days,
            ),
            pms_type=connection.pms_type,
        )
        logger.debug(
            "adapter_resolved",
            connection_id=connection.id,
            adapter_code=connection.adapter_code,
            pms_type=connection.pms_type,
            credential_keys=sorted(normalize_credentials(credentials)),
        )
        return self.get_adapter(connection.adapter_code, config, credentials)


def default_registry() -> AdapterRegistry:
    """Registry with every built-in adapter registered."""
    registry = AdapterRegistry()
    for adapter_cls in (Beds24Adapter, Beds24V1Adapter, HostawayAdapter, SmoobuAdapter, CalryAdapter):
        registry.register(adapter_cls)
    return registry
