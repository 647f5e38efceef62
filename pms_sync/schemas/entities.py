"""
Canonical entities produced by every adapter's mapping layer.

These models are PMS-agnostic: adapters translate provider payloads into
them, and the persistence gateway only ever sees these shapes. Every entity
keeps the provider payload in ``raw`` for audit and later re-mapping.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    ACTIVE = "active"
    ERROR = "error"
    EXPIRED = "expired"
    DISCONNECTED = "disconnected"


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    NO_SHOW = "no_show"


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class TokenInfo(BaseModel):
    """Credentials obtained or refreshed by an auth strategy."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: dt.datetime | None = None
    token_type: str = "Bearer"


class ConnectionCheck(BaseModel):
    """Outcome of a lightweight authenticated check against the PMS."""

    ok: bool
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class Address(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    country_code: str | None = None


class Property(BaseModel):
    """An external listing or hotel as known by the PMS."""

    external_id: str
    name: str
    description: str | None = None
    property_type: str | None = None
    status: str = "active"
    address: Address = Field(default_factory=Address)
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None
    currency: str
    check_in_time: str = "15:00"
    check_out_time: str = "11:00"
    max_guests: int | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    amenities: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    room_types: list[RoomType] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class RoomType(BaseModel):
    """
    Bookable entity under a property.

    For PMSs without room types the property is aliased as its own room type,
    sharing the property's ``external_id``.
    """

    external_id: str
    property_external_id: str
    name: str
    description: str | None = None
    max_guests: int = 2
    max_adults: int | None = None
    max_children: int | None = None
    bedrooms: int | None = None
    beds: int | None = None
    bathrooms: float | None = None
    base_price: float | None = None
    currency: str
    unit_count: int = 1
    amenities: list[str] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class AvailabilityDay(BaseModel):
    room_type_external_id: str
    date: dt.date
    is_available: bool
    units_available: int = 0
    min_stay: int | None = None
    max_stay: int | None = None
    check_in_allowed: bool = True
    check_out_allowed: bool = True
    price: float | None = None
    currency: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class RateDay(BaseModel):
    room_type_external_id: str
    date: dt.date
    price: float | None = None
    currency: str
    extra_guest_fee: float | None = None
    weekly_discount_percent: float | None = None
    monthly_discount_percent: float | None = None
    min_stay: int | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class Guest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or "Guest"


class Pricing(BaseModel):
    currency: str
    total: float = 0.0
    subtotal: float | None = None
    cleaning_fee: float | None = None
    taxes: float | None = None
    fees: float | None = None
    discount: float | None = None
    paid: float | None = None
    balance: float | None = None


class Reservation(BaseModel):
    """An external booking, keyed by the PMS reservation id."""

    external_id: str
    property_external_id: str | None = None
    room_type_external_id: str | None = None
    check_in: dt.date | None = None
    check_out: dt.date | None = None
    status: ReservationStatus = ReservationStatus.CONFIRMED
    guest: Guest = Field(default_factory=Guest)
    adults: int = 1
    children: int = 0
    infants: int = 0
    pricing: Pricing
    channel: str | None = None
    channel_reservation_id: str | None = None
    source: str | None = None
    notes: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def nights(self) -> int | None:
        if self.check_in is None or self.check_out is None:
            return None
        return (self.check_out - self.check_in).days


class Quote(BaseModel):
    """Price of a prospective stay, as computed by the PMS."""

    room_type_external_id: str
    check_in: dt.date
    check_out: dt.date
    nights: int | None = None
    pricing: Pricing
    rate_plans: list[dict[str, Any]] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class AvailabilityCheck(BaseModel):
    """Which of several room types can be booked for one arrival/departure pair."""

    check_in: dt.date
    check_out: dt.date
    available_room_types: list[str] = Field(default_factory=list)
    prices: dict[str, float | None] = Field(default_factory=dict)
    currency: str | None = None
    errors: dict[str, str] = Field(default_factory=dict)


class WebhookSubscription(BaseModel):
    webhook_id: str
    url: str
    events: list[str] = Field(default_factory=list)
    listener_url: str | None = None


class NormalizedEvent(BaseModel):
    """A webhook delivery translated into a PMS-agnostic event."""

    event: str
    external_id: str | None = None
    event_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: dt.datetime | None = None
    property_external_id: str | None = None
    room_type_external_id: str | None = None
    duplicate: bool = False
    raw: dict[str, Any] = Field(default_factory=dict)


class EntityCounts(BaseModel):
    synced: int = 0
    errors: int = 0


class SyncStats(BaseModel):
    """Per-category counters and error summary for one sync attempt."""

    sync_type: SyncType = SyncType.FULL
    properties: EntityCounts = Field(default_factory=EntityCounts)
    room_types: EntityCounts = Field(default_factory=EntityCounts)
    availability: EntityCounts = Field(default_factory=EntityCounts)
    rates: EntityCounts = Field(default_factory=EntityCounts)
    reservations: EntityCounts = Field(default_factory=EntityCounts)
    errors: list[str] = Field(default_factory=list)

    def categories(self) -> dict[str, EntityCounts]:
        return {
            "properties": self.properties,
            "room_types": self.room_types,
            "availability": self.availability,
            "rates": self.rates,
            "reservations": self.reservations,
        }

    def record_error(self, category: str, message: str) -> None:
        self.categories()[category].errors += 1
        self.errors.append(f"{category}: {message}")

    @property
    def total_synced(self) -> int:
        return sum(c.synced for c in self.categories().values())

    @property
    def total_errors(self) -> int:
        return sum(c.errors for c in self.categories().values())

    @property
    def status(self) -> SyncStatus:
        """Derive the terminal status: any error with some progress is partial."""
        if self.total_errors == 0:
            return SyncStatus.SUCCESS
        if self.total_synced > 0:
            return SyncStatus.PARTIAL_SUCCESS
        return SyncStatus.FAILED

    def error_summary(self, limit: int = 20) -> str | None:
        if not self.errors:
            return None
        summary = "; ".join(self.errors[:limit])
        if len(self.errors) > limit:
            summary += f"; ... {len(self.errors) - limit} more"
        return summary


Property.model_rebuild()
