"""
Beds24 legacy JSON API (V1) adapter.

Every call is a POST to ``/json/<function>`` carrying an ``authentication``
object with the account ``apiKey`` and, for property-scoped functions, that
property's ``propKey``. Errors come back as HTTP 200 with an ``error`` body.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

import structlog

from pms_sync.adapters.base import AdapterConfig, PmsAdapter
from pms_sync.network.auth import ApiKeyAuth
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.normalizers import beds24 as mapping
from pms_sync.normalizers.fields import pick, to_str
from pms_sync.schemas.entities import (
    AvailabilityDay,
    ConnectionCheck,
    NormalizedEvent,
    Property,
    RateDay,
    Reservation,
    ReservationStatus,
    RoomType,
    TokenInfo,
)

logger = structlog.get_logger(__name__)

BASE_URL = "https://api.beds24.com/json"


def _v1_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def _error_result(body: Any) -> Result[Any] | None:
    """Translate a V1 ``{"error": ..., "errorCode": ...}`` body into a failure."""
    if not isinstance(body, dict) or "error" not in body:
        return None
    message = str(body.get("error"))
    lowered = message.lower()
    if "unauthori" in lowered or "key" in lowered or "auth" in lowered:
        code = ErrorCode.AUTH_FAILED
    elif "limit" in lowered or "too many" in lowered:
        code = ErrorCode.RATE_LIMIT
    elif "not found" in lowered or "no property" in lowered:
        code = ErrorCode.NOT_FOUND
    else:
        code = ErrorCode.UNKNOWN
    return Result.fail(code, message, details=body)


class Beds24V1Adapter(PmsAdapter):
    code = "beds24_v1"
    name = "Beds24 (JSON API v1)"
    auth_type = "api_key"
    base_url = BASE_URL
    requests_per_minute = 60
    required_credentials = (("api_key",),)

    def __init__(
        self,
        config: AdapterConfig,
        api_key: str,
        prop_key: str | None = None,
        prop_keys: dict[str, str] | None = None,
    ):
        super().__init__(config)
        self.prop_keys = {str(k): v for k, v in (prop_keys or {}).items()}
        self.auth = ApiKeyAuth(
            api_key,
            header_name=None,
            secondary_key=prop_key,
            body_field="authentication",
            key_name="apiKey",
            secondary_key_name="propKey",
        )
        self._build_client(self.auth)
        self._room_parents: dict[str, str] = {}

    def call(self, function: str, body: dict[str, Any] | None = None, property_id: str | None = None) -> Result[Any]:
        """POST one V1 function, scoping credentials to ``property_id`` when a key is known."""
        payload = dict(body or {})
        if property_id and property_id in self.prop_keys:
            payload["authentication"] = {"propKey": self.prop_keys[property_id]}
        response = self.request(f"/{function}", method="POST", body=payload)
        if not response.success:
            return response
        return _error_result(response.data) or response

    def authenticate(self) -> Result[TokenInfo]:
        return self.auth.authenticate()

    def test_connection(self) -> Result[ConnectionCheck]:
        response = self.call("getProperties")
        if not response.success:
            return response
        return Result.ok(ConnectionCheck(ok=True, message="Beds24 V1 connection successful"))

    def _remember_rooms(self, properties: list[Property]) -> None:
        for prop in properties:
            for room in prop.room_types:
                self._room_parents[room.external_id] = prop.external_id

    def get_properties(self, page: int | None = None, limit: int | None = None) -> Result[list[Property]]:
        response = self.call("getProperties", {"getProperties": {"includeRooms": True}})
        if not response.success:
            return response
        body = response.data or {}
        raw = body.get("getProperties", body) if isinstance(body, dict) else body
        mapped = self.map_each(raw or [], lambda item: mapping.map_property(item, self.default_currency), "property")
        self._remember_rooms(mapped.data or [])
        return mapped

    def get_property(self, property_id: str) -> Result[Property]:
        response = self.call(
            "getProperty", {"getProperty": {"propId": property_id, "includeRooms": True}}, property_id
        )
        if not response.success:
            return response
        body = response.data or {}
        raw = body.get("getProperty", body) if isinstance(body, dict) else body
        if isinstance(raw, list):
            raw = raw[0] if raw else None
        if not raw:
            return Result.fail(ErrorCode.NOT_FOUND, f"Property {property_id} not found", status_code=404)
        prop = mapping.map_property(raw, self.default_currency)
        self._remember_rooms([prop])
        return Result.ok(prop)

    def get_room_types(self, property_id: str) -> Result[list[RoomType]]:
        prop = self.get_property(property_id)
        if not prop.success:
            return prop
        return Result.ok(prop.data.room_types)

    def _room_property(self, room_id: str) -> str | None:
        if room_id in self._room_parents:
            return self._room_parents[room_id]
        if self.gateway is not None and self.connection_id is not None:
            return self.gateway.room_type_parent(self.connection_id, room_id)
        return None

    def _room_dates(self, room_id: str, start: date, end: date) -> Result[list[dict[str, Any]]]:
        response = self.call(
            "getRoomDates",
            {"roomId": room_id, "from": _v1_date(start), "to": _v1_date(end)},
            self._room_property(room_id),
        )
        if not response.success:
            return response
        return Result.ok(list(mapping.expand_calendar(response.data or {})))

    def get_availability(self, room_type_id: str, start: date, end: date) -> Result[list[AvailabilityDay]]:
        response = self._room_dates(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_availability_day(raw, room_type_id, self.default_currency),
            "room_date",
        )

    def get_rates(self, room_type_id: str, start: date, end: date) -> Result[list[RateDay]]:
        response = self._room_dates(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_rate_day(raw, room_type_id, self.default_currency),
            "room_date",
        )

    def _set_room_dates(self, room_id: str, dates: dict[str, dict[str, Any]]) -> Result[Any]:
        return self.call("setRoomDates", {"roomId": room_id, "dates": dates}, self._room_property(room_id))

    def update_availability(self, room_type_id: str, days: list[AvailabilityDay]) -> Result[Any]:
        dates = {}
        for day in days:
            values: dict[str, Any] = {"i": day.units_available if day.is_available else 0}
            if day.min_stay is not None:
                values["m"] = day.min_stay
            dates[_v1_date(day.date)] = values
        return self._set_room_dates(room_type_id, dates)

    def update_rates(self, room_type_id: str, days: list[RateDay]) -> Result[Any]:
        dates = {_v1_date(day.date): {"p1": day.price} for day in days if day.price is not None}
        return self._set_room_dates(room_type_id, dates)

    def get_reservations(
        self,
        start: date | None = None,
        end: date | None = None,
        modified_since: datetime | None = None,
        property_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[Reservation]]:
        """
        Fetch bookings via ``getBookings``.

        V1 has no pagination; without ``property_id`` every property with a
        known prop key is queried in turn.
        """
        criteria: dict[str, Any] = {"includeInvoice": False}
        if start:
            criteria["arrivalFrom"] = _v1_date(start)
        if end:
            criteria["arrivalTo"] = _v1_date(end)
        if modified_since:
            criteria["modifiedSince"] = modified_since.strftime("%Y%m%d %H:%M:%S")

        scopes = [property_id] if property_id else (list(self.prop_keys) or [None])
        bookings: list[dict[str, Any]] = []
        for scope in scopes:
            body = dict(criteria)
            if scope:
                body["propId"] = scope
            response = self.call("getBookings", body, scope)
            if not response.success:
                return response
            if isinstance(response.data, list):
                bookings.extend(response.data)

        return self.map_each(
            bookings, lambda raw: mapping.map_reservation(raw, self.default_currency), "booking"
        )

    def get_reservation(self, reservation_id: str) -> Result[Reservation]:
        response = self.call("getBookings", {"bookId": reservation_id})
        if not response.success:
            return response
        data = response.data if isinstance(response.data, list) else []
        if not data:
            return Result.fail(ErrorCode.NOT_FOUND, f"Booking {reservation_id} not found", status_code=404)
        return Result.ok(mapping.map_reservation(data[0], self.default_currency))

    def _set_booking(self, booking: dict[str, Any], property_id: str | None = None) -> Result[str]:
        response = self.call("setBooking", booking, property_id)
        if not response.success:
            return response
        booking_id = pick(response.data or {}, "bookId", "id", default=booking.get("bookId"))
        return Result.ok(str(booking_id))

    def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        last_night = reservation.check_out - timedelta(days=1) if reservation.check_out else None
        written = self._set_booking(
            {
                "roomId": reservation.room_type_external_id,
                "status": "1" if reservation.status == ReservationStatus.CONFIRMED else "3",
                "firstNight": _v1_date(reservation.check_in) if reservation.check_in else None,
                # V1 stores the last night, not the departure date
                "lastNight": _v1_date(last_night) if last_night else None,
                "numAdult": reservation.adults,
                "numChild": reservation.children,
                "guestFirstName": reservation.guest.first_name,
                "guestName": reservation.guest.last_name,
                "guestEmail": reservation.guest.email,
                "guestPhone": reservation.guest.phone,
                "price": reservation.pricing.total,
                "notes": reservation.notes,
            },
            reservation.property_external_id,
        )
        if not written.success:
            return written
        return self.get_reservation(written.data)

    def update_reservation(self, reservation_id: str, changes: dict[str, Any]) -> Result[Reservation]:
        written = self._set_booking({**changes, "bookId": reservation_id})
        if not written.success:
            return written
        return self.get_reservation(reservation_id)

    def cancel_reservation(self, reservation_id: str, reason: str = "") -> Result[Any]:
        booking: dict[str, Any] = {"bookId": reservation_id, "status": "0"}
        if reason:
            booking["notes"] = reason
        return self._set_booking(booking)

    def parse_webhook_payload(self, payload: dict[str, Any], headers: dict[str, str]) -> NormalizedEvent:
        """Normalise a V1 booking notification (auto action ``bookid``/``status`` fields)."""
        booking_id = to_str(pick(payload, "bookId", "bookid", "id"))
        status = mapping.map_status(payload.get("status"))
        action = (to_str(payload.get("action")) or "").lower()
        if status == ReservationStatus.CANCELLED or action == "cancel":
            event = "reservation.cancelled"
        elif action in ("new", "create"):
            event = "reservation.created"
        else:
            event = "reservation.updated"
        return NormalizedEvent(
            event=event,
            external_id=booking_id,
            data=payload,
            property_external_id=to_str(pick(payload, "propId", "propid")),
            room_type_external_id=to_str(pick(payload, "roomId", "roomid")),
            raw=payload,
        )
