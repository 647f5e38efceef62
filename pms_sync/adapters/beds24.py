"""
Beds24 API V2 adapter.

Auth is a long-lived ``token`` header paired with a refresh token; a new
connection is bootstrapped from a one-time invite code exchanged at
``/authentication/setup``. Every list endpoint wraps results as
``{"success": true, "data": [...], "pages": {"nextPageExists": bool}}``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog

from pms_sync.adapters.base import AdapterConfig, PmsAdapter
from pms_sync.config import BULK_REQUEST_TIMEOUT_SECONDS
from pms_sync.network.auth import BearerRefreshAuth
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
from pms_sync.utils.datetime import parse_datetime

logger = structlog.get_logger(__name__)

BASE_URL = "https://beds24.com/api/v2"
MAX_PAGES = 1000


class Beds24Adapter(PmsAdapter):
    code = "beds24"
    name = "Beds24"
    auth_type = "bearer_refresh"
    base_url = BASE_URL
    requests_per_minute = 100
    signature_header = "X-Beds24-Signature"
    required_credentials = (("token", "refresh_token", "invite_code"),)

    def __init__(
        self,
        config: AdapterConfig,
        token: str | None = None,
        refresh_token: str | None = None,
        invite_code: str | None = None,
    ):
        super().__init__(config)
        self.auth = BearerRefreshAuth(
            session=self.session,
            base_url=self.api_url,
            token=token,
            refresh_token=refresh_token,
            header_name="token",
            scheme="",
            refresh_path="/authentication/token",
            refresh_header="refreshToken",
            setup_path="/authentication/setup",
            invite_code=invite_code,
            on_token=config.on_token,
            adapter=self.code,
            timeout=config.timeout,
        )
        self._build_client(self.auth)

    def _paginate(self, endpoint: str, params: dict[str, Any], **options: Any) -> Result[list[Any]]:
        items: list[Any] = []
        page = 1
        while page <= MAX_PAGES:
            response = self.request(endpoint, params={**params, "page": page}, **options)
            if not response.success:
                return response
            body = response.data or {}
            if body.get("success") is False:
                return Result.fail(ErrorCode.UNKNOWN, str(body.get("error") or body), details=body)
            items.extend(body.get("data") or [])
            if not (body.get("pages") or {}).get("nextPageExists"):
                break
            page += 1
        return Result.ok(items)

    def authenticate(self) -> Result[TokenInfo]:
        return self.auth.authenticate()

    def test_connection(self) -> Result[ConnectionCheck]:
        response = self.request("/authentication/details")
        if not response.success:
            return response
        body = response.data or {}
        if not body.get("validToken", True):
            return Result.fail(ErrorCode.AUTH_FAILED, "Beds24 token is not valid", details=body)
        return Result.ok(
            ConnectionCheck(
                ok=True,
                message="Beds24 connection successful",
                details={"scopes": (body.get("token") or {}).get("scopes", [])},
            )
        )

    def get_properties(self, page: int | None = None, limit: int | None = None) -> Result[list[Property]]:
        params = {"includeAllRooms": "true", "includeTexts": "all"}
        if page is not None:
            response = self.request("/properties", params={**params, "page": page})
            if response.success:
                response = response.with_data((response.data or {}).get("data") or [])
        else:
            response = self._paginate("/properties", params)
        if not response.success:
            return response
        return self.map_each(
            response.data, lambda raw: mapping.map_property(raw, self.default_currency), "property"
        )

    def get_property(self, property_id: str) -> Result[Property]:
        response = self.request("/properties", params={"id": property_id, "includeAllRooms": "true"})
        if not response.success:
            return response
        data = (response.data or {}).get("data") or []
        if not data:
            return Result.fail(ErrorCode.NOT_FOUND, f"Property {property_id} not found", status_code=404)
        return Result.ok(mapping.map_property(data[0], self.default_currency))

    def get_room_types(self, property_id: str) -> Result[list[RoomType]]:
        prop = self.get_property(property_id)
        if not prop.success:
            return prop
        return Result.ok(prop.data.room_types)

    def _calendar(self, room_id: str, start: date, end: date) -> Result[list[dict[str, Any]]]:
        return self.shared_calendar((room_id, start, end), lambda: self._fetch_calendar(room_id, start, end))

    def _fetch_calendar(self, room_id: str, start: date, end: date) -> Result[list[dict[str, Any]]]:
        response = self._paginate(
            "/inventory/rooms/calendar",
            {
                "roomId": room_id,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
                "includeNumAvail": "true",
                "includeMinStay": "true",
                "includeMaxStay": "true",
                "includePrices": "true",
            },
            timeout=BULK_REQUEST_TIMEOUT_SECONDS,
        )
        if not response.success:
            return response
        days: list[dict[str, Any]] = []
        for room in response.data:
            days.extend(mapping.expand_calendar(room.get("calendar") or []))
        return Result.ok(days)

    def get_availability(self, room_type_id: str, start: date, end: date) -> Result[list[AvailabilityDay]]:
        response = self._calendar(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_availability_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def get_rates(self, room_type_id: str, start: date, end: date) -> Result[list[RateDay]]:
        response = self._calendar(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_rate_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def _push_calendar(self, room_type_id: str, days: list[dict[str, Any]]) -> Result[Any]:
        self.forget_calendar()
        room_id = self.numeric_id(room_type_id, "room")
        if not room_id.success:
            return room_id
        body = [{"roomId": room_id.data, "calendar": mapping.to_calendar_ranges(days)}]
        return self.request(
            "/inventory/rooms/calendar", method="POST", body=body, timeout=BULK_REQUEST_TIMEOUT_SECONDS
        )

    def update_availability(self, room_type_id: str, days: list[AvailabilityDay]) -> Result[Any]:
        return self._push_calendar(
            room_type_id,
            [
                {
                    "date": day.date,
                    "numAvail": day.units_available if day.is_available else 0,
                    "minStay": day.min_stay,
                    "maxStay": day.max_stay,
                }
                for day in days
            ],
        )

    def update_rates(self, room_type_id: str, days: list[RateDay]) -> Result[Any]:
        return self._push_calendar(
            room_type_id,
            [{"date": day.date, "price1": day.price, "minStay": day.min_stay} for day in days],
        )

    def get_reservations(
        self,
        start: date | None = None,
        end: date | None = None,
        modified_since: datetime | None = None,
        property_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[Reservation]]:
        params: dict[str, Any] = {"includeInvoiceItems": "false"}
        if start:
            params["arrivalFrom"] = start.isoformat()
        if end:
            params["arrivalTo"] = end.isoformat()
        if modified_since:
            params["modifiedFrom"] = modified_since.isoformat()
        if property_id:
            params["propertyId"] = property_id

        response = self._paginate("/bookings", params, timeout=BULK_REQUEST_TIMEOUT_SECONDS)
        if not response.success:
            return response
        return self.map_each(
            response.data, lambda raw: mapping.map_reservation(raw, self.default_currency), "booking"
        )

    def get_reservation(self, reservation_id: str) -> Result[Reservation]:
        response = self.request("/bookings", params={"id": reservation_id})
        if not response.success:
            return response
        data = (response.data or {}).get("data") or []
        if not data:
            return Result.fail(ErrorCode.NOT_FOUND, f"Booking {reservation_id} not found", status_code=404)
        return Result.ok(mapping.map_reservation(data[0], self.default_currency))

    def _write_booking(self, booking: dict[str, Any]) -> Result[str]:
        """POST one booking and return its id from the per-item write result."""
        response = self.request("/bookings", method="POST", body=[booking])
        if not response.success:
            return response
        outcome = (response.data or [{}])[0] if isinstance(response.data, list) else response.data or {}
        if not outcome.get("success", False):
            errors = outcome.get("errors") or [{}]
            message = errors[0].get("message") if isinstance(errors[0], dict) else str(errors[0])
            return Result.fail(ErrorCode.UNKNOWN, message or "Beds24 rejected the booking", details=outcome)
        booking_id = pick(outcome, "new.id", "modified.id", default=booking.get("id"))
        return Result.ok(str(booking_id))

    def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        room_id = None
        if reservation.room_type_external_id:
            parsed = self.numeric_id(reservation.room_type_external_id, "room")
            if not parsed.success:
                return parsed
            room_id = parsed.data
        written = self._write_booking(
            {
                "roomId": room_id,
                "propertyId": reservation.property_external_id,
                "status": "confirmed" if reservation.status == ReservationStatus.CONFIRMED else "request",
                "arrival": reservation.check_in.isoformat() if reservation.check_in else None,
                "departure": reservation.check_out.isoformat() if reservation.check_out else None,
                "numAdult": reservation.adults,
                "numChild": reservation.children,
                "firstName": reservation.guest.first_name,
                "lastName": reservation.guest.last_name,
                "email": reservation.guest.email,
                "phone": reservation.guest.phone,
                "price": reservation.pricing.total,
                "notes": reservation.notes,
            }
        )
        if not written.success:
            return written
        return self.get_reservation(written.data)

    def update_reservation(self, reservation_id: str, changes: dict[str, Any]) -> Result[Reservation]:
        booking_id = self.numeric_id(reservation_id, "booking")
        if not booking_id.success:
            return booking_id
        written = self._write_booking({**changes, "id": booking_id.data})
        if not written.success:
            return written
        return self.get_reservation(reservation_id)

    def cancel_reservation(self, reservation_id: str, reason: str = "") -> Result[Any]:
        booking_id = self.numeric_id(reservation_id, "booking")
        if not booking_id.success:
            return booking_id
        booking: dict[str, Any] = {"id": booking_id.data, "status": "cancelled"}
        if reason:
            booking["notes"] = reason
        return self._write_booking(booking)

    def parse_webhook_payload(self, payload: dict[str, Any], headers: dict[str, str]) -> NormalizedEvent:
        """
        Normalise a Beds24 booking webhook.

        Beds24 posts the booking itself (optionally wrapped in ``booking``)
        without an event name, so creation is told apart from modification
        by comparing the booking and modification timestamps.
        """
        booking = payload.get("booking") if isinstance(payload.get("booking"), dict) else payload
        status = mapping.map_status(booking.get("status"))
        if status == ReservationStatus.CANCELLED:
            event = "reservation.cancelled"
        elif booking.get("modifiedTime") and booking.get("modifiedTime") != booking.get("bookingTime"):
            event = "reservation.updated"
        else:
            event = "reservation.created"

        return NormalizedEvent(
            event=event,
            external_id=to_str(pick(booking, "id", "bookId")),
            data=booking,
            timestamp=parse_datetime(pick(payload, "timeStamp", "booking.modifiedTime")),
            property_external_id=to_str(pick(booking, "propertyId", "propId")),
            room_type_external_id=to_str(booking.get("roomId")),
            raw=payload,
        )
