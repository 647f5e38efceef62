"""
Capability contract shared by every PMS adapter.

Concrete adapters subclass ``PmsAdapter`` once and compose their transport
(``ApiClient``), auth strategy and private ``RateLimiter``; no state is shared
between adapter instances. Sync drivers (``full_sync``/``incremental_sync``)
delegate to ``SyncPipeline`` so polling and webhooks share one
fetch -> map -> upsert path.
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

import requests
import structlog

from pms_sync.config import DEFAULT_CURRENCY, REQUEST_TIMEOUT_SECONDS, SyncSettings
from pms_sync.network.auth import AuthStrategy, TokenCallback
from pms_sync.network.client import ApiClient
from pms_sync.network.errors import ErrorCode, Result, unsupported
from pms_sync.network.rate_limiter import RateLimiter
from pms_sync.schemas.entities import (
    AvailabilityCheck,
    AvailabilityDay,
    ConnectionCheck,
    NormalizedEvent,
    Property,
    Quote,
    RateDay,
    Reservation,
    RoomType,
    SyncStats,
    TokenInfo,
    WebhookSubscription,
)

if TYPE_CHECKING:
    from pms_sync.db.gateway import PersistenceGateway

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CAPABILITIES = frozenset(
    {
        "properties",
        "room_types",
        "availability",
        "availability_write",
        "rates",
        "rates_write",
        "reservations",
        "reservations_write",
        "webhooks",
    }
)


@dataclass
class SyncOptions:
    """Per-connection toggles for which data categories a sync touches."""

    sync_properties: bool = True
    sync_availability: bool = True
    sync_rates: bool = True
    sync_bookings: bool = True
    availability_window_days: int | None = None


@dataclass
class AdapterConfig:
    """
    Everything an adapter needs besides its PMS-specific credentials.

    Attributes:
        connection_id: Internal connection id (None for ad-hoc use, e.g. onboarding)
        gateway: Persistence handle used by sync drivers and token persistence
        default_currency: Currency used when a payload carries none
        timeout: Default per-request timeout in seconds
        requests_per_minute: Override of the adapter's default rate limit
        session: HTTP session (injected in tests)
        on_token: Callback receiving refreshed tokens
        settings: Sync policy used by the sync drivers
        options: Per-connection category toggles
        pms_type: Downstream PMS code when served through a broker
        base_url: Override of the adapter's API root (sandbox environments)
    """

    connection_id: int | None = None
    gateway: "PersistenceGateway | None" = None
    default_currency: str = DEFAULT_CURRENCY
    timeout: float = REQUEST_TIMEOUT_SECONDS
    requests_per_minute: int | None = None
    session: requests.Session | None = None
    on_token: TokenCallback | None = None
    settings: SyncSettings = field(default_factory=SyncSettings)
    options: SyncOptions = field(default_factory=SyncOptions)
    pms_type: str | None = None
    base_url: str | None = None


class PmsAdapter(ABC):
    """
    Uniform operation set over one PMS integration.

    Class attributes describe the integration; ``capabilities`` lists what
    the PMS API actually supports. Operations outside the capability set
    return an UNSUPPORTED result instead of raising.
    """

    code: str = ""
    name: str = ""
    auth_type: str = ""
    base_url: str = ""
    requests_per_minute: int = 60
    capabilities: frozenset[str] = CAPABILITIES
    signature_header: str | None = None
    # Credential groups; each group needs at least one member present
    required_credentials: tuple[tuple[str, ...], ...] = ()

    def __init__(self, config: AdapterConfig):
        self.config = config
        self.connection_id = config.connection_id
        self.gateway = config.gateway
        self.default_currency = config.default_currency
        self.session = config.session or requests.Session()
        self.rate_limiter = RateLimiter(
            config.requests_per_minute or self.requests_per_minute, name=self.code
        )
        self.api_url = config.base_url or self.base_url
        self.client: ApiClient | None = None
        self._calendar_window: tuple[tuple[Any, ...], Result[Any]] | None = None

    def _build_client(self, auth: AuthStrategy, **kwargs: Any) -> ApiClient:
        self.client = ApiClient(
            adapter=self.code,
            base_url=self.api_url,
            auth=auth,
            rate_limiter=self.rate_limiter,
            session=self.session,
            timeout=self.config.timeout,
            **kwargs,
        )
        return self.client

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
        **options: Any,
    ) -> Result[Any]:
        """Single funnel for every network call made by this adapter."""
        if self.client is None:
            raise RuntimeError(f"{type(self).__name__} did not build its API client")
        return self.client.request(endpoint, method=method, body=body, params=params, **options)

    def shared_calendar(self, key: tuple[Any, ...], fetch: Callable[[], Result[T]]) -> Result[T]:
        """
        Serve one calendar window to both availability and rates.

        PMSs that return availability and prices from a single endpoint would
        otherwise be called twice per room type. A successful fetch is kept
        for exactly one further read of the same window; calendar writes
        drop it.
        """
        if self._calendar_window is not None and self._calendar_window[0] == key:
            _, cached = self._calendar_window
            self._calendar_window = None
            return cached
        result = fetch()
        self._calendar_window = (key, result) if result.success else None
        return result

    def forget_calendar(self) -> None:
        self._calendar_window = None

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def numeric_id(self, value: Any, kind: str) -> Result[int]:
        """Parse an id the PMS only accepts as an integer."""
        try:
            return Result.ok(int(str(value).strip()))
        except (TypeError, ValueError):
            return Result.fail(ErrorCode.UNKNOWN, f"{self.name} {kind} id must be numeric, got {value!r}")

    def map_each(self, items: Iterable[Any], mapper: Callable[[Any], T | None], kind: str) -> Result[list[T]]:
        """
        Map a list of raw items, skipping (and reporting) the ones that fail.

        Returns:
            Result: mapped entities, with per-item failures in ``errors``
        """
        mapped: list[T] = []
        errors: list[str] = []
        for item in items or []:
            try:
                entity = mapper(item)
            except (KeyError, TypeError, ValueError) as err:
                item_id = item.get("id") if isinstance(item, dict) else None
                logger.warning(
                    "mapping_failed", adapter=self.code, kind=kind, item_id=item_id, error=str(err)
                )
                errors.append(f"{kind} {item_id}: {err}")
                continue
            if entity is not None:
                mapped.append(entity)
        return Result.ok(mapped, errors=tuple(errors))

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @abstractmethod
    def authenticate(self) -> Result[TokenInfo]: ...

    @abstractmethod
    def test_connection(self) -> Result[ConnectionCheck]: ...

    # ------------------------------------------------------------------
    # Properties and room types
    # ------------------------------------------------------------------

    @abstractmethod
    def get_properties(self, page: int | None = None, limit: int | None = None) -> Result[list[Property]]: ...

    @abstractmethod
    def get_property(self, property_id: str) -> Result[Property]: ...

    @abstractmethod
    def get_room_types(self, property_id: str) -> Result[list[RoomType]]: ...

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    @abstractmethod
    def get_availability(self, room_type_id: str, start: date, end: date) -> Result[list[AvailabilityDay]]: ...

    def update_availability(self, room_type_id: str, days: list[AvailabilityDay]) -> Result[Any]:
        return unsupported(self.code, "update_availability")

    @abstractmethod
    def get_rates(self, room_type_id: str, start: date, end: date) -> Result[list[RateDay]]: ...

    def update_rates(self, room_type_id: str, days: list[RateDay]) -> Result[Any]:
        return unsupported(self.code, "update_rates")

    def get_quote(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        adults: int = 1,
        children: int = 0,
        infants: int = 0,
    ) -> Result[Quote]:
        return unsupported(self.code, "get_quote")

    def check_availability(
        self, room_type_ids: list[str], check_in: date, check_out: date
    ) -> Result[AvailabilityCheck]:
        return unsupported(self.code, "check_availability")

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    @abstractmethod
    def get_reservations(
        self,
        start: date | None = None,
        end: date | None = None,
        modified_since: datetime | None = None,
        property_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[Reservation]]:
        """
        Fetch reservations, following pagination until exhausted.

        Args:
            start: Earliest arrival date to include
            end: Latest arrival date to include
            modified_since: Only reservations changed after this instant
            property_id: Restrict to one external property
            limit: Page size
        """

    @abstractmethod
    def get_reservation(self, reservation_id: str) -> Result[Reservation]: ...

    @abstractmethod
    def create_reservation(self, reservation: Reservation) -> Result[Reservation]: ...

    @abstractmethod
    def update_reservation(self, reservation_id: str, changes: dict[str, Any]) -> Result[Reservation]: ...

    @abstractmethod
    def cancel_reservation(self, reservation_id: str, reason: str = "") -> Result[Any]: ...

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @abstractmethod
    def parse_webhook_payload(self, payload: dict[str, Any], headers: dict[str, str]) -> NormalizedEvent: ...

    def register_webhook(self, url: str, events: list[str]) -> Result[WebhookSubscription]:
        """Subscribe ``url`` to push notifications, for PMSs that expose an API for it."""
        return unsupported(self.code, "register_webhook")

    def unregister_webhook(self, webhook_id: str) -> Result[Any]:
        return unsupported(self.code, "unregister_webhook")

    def verify_webhook_signature(self, raw_body: bytes, headers: dict[str, str], secret: str | None) -> bool:
        """
        Check an HMAC-SHA256 hex signature over the raw request body.

        Connections without a webhook secret, and adapters whose PMS does not
        sign deliveries, accept every request.
        """
        if not secret or not self.signature_header:
            return True
        lowered = {k.lower(): v for k, v in headers.items()}
        provided = lowered.get(self.signature_header.lower())
        if not provided:
            return False
        provided = provided.split("=", 1)[1] if provided.startswith("sha256=") else provided
        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, provided)

    # ------------------------------------------------------------------
    # Sync drivers
    # ------------------------------------------------------------------

    def _pipeline(self) -> Any:
        from pms_sync.services.pipeline import SyncPipeline

        if self.gateway is None or self.connection_id is None:
            raise RuntimeError("Sync requires an adapter bound to a connection and gateway")
        return SyncPipeline(self, self.gateway, self.connection_id, self.config.settings)

    def full_sync(self, options: SyncOptions | None = None) -> SyncStats:
        return self._pipeline().full_sync(options or self.config.options)

    def incremental_sync(self, since: datetime | None, options: SyncOptions | None = None) -> SyncStats:
        return self._pipeline().incremental_sync(since, options or self.config.options)
