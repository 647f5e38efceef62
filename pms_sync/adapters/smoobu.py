"""Smoobu adapter (static API key, apartment == room type)."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog

from pms_sync.adapters.base import CAPABILITIES, AdapterConfig, PmsAdapter
from pms_sync.network.auth import ApiKeyAuth
from pms_sync.network.errors import Result
from pms_sync.normalizers import smoobu as mapping
from pms_sync.normalizers.fields import pick, to_int, to_str
from pms_sync.schemas.entities import (
    AvailabilityCheck,
    AvailabilityDay,
    ConnectionCheck,
    NormalizedEvent,
    Property,
    RateDay,
    Reservation,
    RoomType,
    TokenInfo,
)
from pms_sync.utils.datetime import parse_datetime

logger = structlog.get_logger(__name__)

BASE_URL = "https://login.smoobu.com/api"
BOOKING_URL = "https://login.smoobu.com/booking"
PAGE_SIZE = 100

ACTION_MAP = {
    "newreservation": "reservation.created",
    "updatereservation": "reservation.updated",
    "cancelreservation": "reservation.cancelled",
    "deletereservation": "reservation.cancelled",
    "updaterates": "availability.updated",
}


class SmoobuAdapter(PmsAdapter):
    code = "smoobu"
    name = "Smoobu"
    auth_type = "api_key"
    base_url = BASE_URL
    requests_per_minute = 60
    required_credentials = (("api_key",),)
    # Availability is derived from bookings in Smoobu and cannot be pushed
    capabilities = (CAPABILITIES - {"availability_write"}) | {"availability_check"}

    def __init__(self, config: AdapterConfig, api_key: str):
        super().__init__(config)
        self.auth = ApiKeyAuth(api_key, header_name="Api-Key")
        self._build_client(self.auth, default_headers={"Cache-Control": "no-cache"})

    def authenticate(self) -> Result[TokenInfo]:
        return self.auth.authenticate()

    def test_connection(self) -> Result[ConnectionCheck]:
        response = self.request("/me")
        if not response.success:
            return response
        body = response.data or {}
        return Result.ok(
            ConnectionCheck(
                ok=True,
                message="Smoobu connection successful",
                details={"user_id": body.get("id"), "email": body.get("email")},
            )
        )

    def get_properties(self, page: int | None = None, limit: int | None = None) -> Result[list[Property]]:
        """
        List apartments with their full details.

        ``/apartments`` only returns ids and names, so each apartment is
        fetched individually. Smoobu does not paginate apartments.
        """
        response = self.request("/apartments")
        if not response.success:
            return response

        listed = (response.data or {}).get("apartments") or []
        details: list[dict[str, Any]] = []
        errors: list[str] = []
        for apartment in listed:
            detail = self.request(f"/apartments/{apartment['id']}")
            if detail.success and isinstance(detail.data, dict):
                details.append({**apartment, **detail.data})
            else:
                logger.warning(
                    "apartment_detail_failed", apartment_id=apartment.get("id"), error=detail.message
                )
                errors.append(f"apartment {apartment.get('id')}: {detail.message}")
                details.append(apartment)

        mapped = self.map_each(details, lambda raw: mapping.map_property(raw, self.default_currency), "apartment")
        return Result.ok(mapped.data, errors=mapped.errors + tuple(errors))

    def get_property(self, property_id: str) -> Result[Property]:
        response = self.request(f"/apartments/{property_id}")
        if not response.success:
            return response
        raw = {"id": property_id, **(response.data or {})}
        return Result.ok(mapping.map_property(raw, self.default_currency))

    def get_room_types(self, property_id: str) -> Result[list[RoomType]]:
        apartment = self.get_property(property_id)
        if not apartment.success:
            return apartment
        return Result.ok(apartment.data.room_types)

    def _rates(self, apartment_id: str, start: date, end: date) -> Result[list[dict[str, Any]]]:
        return self.shared_calendar((apartment_id, start, end), lambda: self._fetch_rates(apartment_id, start, end))

    def _fetch_rates(self, apartment_id: str, start: date, end: date) -> Result[list[dict[str, Any]]]:
        response = self.request(
            "/rates",
            params={
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "apartments[]": apartment_id,
            },
        )
        if not response.success:
            return response
        return Result.ok(list(mapping.iter_calendar(response.data or {}, apartment_id)))

    def get_availability(self, room_type_id: str, start: date, end: date) -> Result[list[AvailabilityDay]]:
        response = self._rates(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_availability_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def get_rates(self, room_type_id: str, start: date, end: date) -> Result[list[RateDay]]:
        response = self._rates(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_rate_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def update_rates(self, room_type_id: str, days: list[RateDay]) -> Result[Any]:
        self.forget_calendar()
        apartment_id = self.numeric_id(room_type_id, "apartment")
        if not apartment_id.success:
            return apartment_id
        operations = []
        for day in days:
            operation: dict[str, Any] = {"dates": [day.date.isoformat()], "daily_price": day.price}
            if day.min_stay is not None:
                operation["min_length_of_stay"] = day.min_stay
            operations.append(operation)
        return self.request(
            "/rates",
            method="POST",
            body={"apartments": [apartment_id.data], "operations": operations},
        )

    def check_availability(
        self, room_type_ids: list[str], check_in: date, check_out: date
    ) -> Result[AvailabilityCheck]:
        """Ask Smoobu which apartments can be booked for a stay, with prices."""
        apartments = []
        for room_type_id in room_type_ids:
            apartment_id = self.numeric_id(room_type_id, "apartment")
            if not apartment_id.success:
                return apartment_id
            apartments.append(apartment_id.data)
        response = self.request(
            "/checkApartmentAvailability",
            method="POST",
            body={
                "arrivalDate": check_in.isoformat(),
                "departureDate": check_out.isoformat(),
                "apartments": apartments,
            },
            base_url=BOOKING_URL,
        )
        if not response.success:
            return response
        return Result.ok(mapping.map_availability_check(response.data or {}, check_in, check_out))

    def get_reservations(
        self,
        start: date | None = None,
        end: date | None = None,
        modified_since: datetime | None = None,
        property_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[Reservation]]:
        params: dict[str, Any] = {"pageSize": limit or PAGE_SIZE, "showCancellation": "true"}
        if start:
            params["from"] = start.isoformat()
        if end:
            params["to"] = end.isoformat()
        if modified_since:
            params["modifiedFrom"] = modified_since.date().isoformat()
        if property_id:
            params["apartmentId"] = property_id

        bookings: list[dict[str, Any]] = []
        page = 1
        while True:
            response = self.request("/reservations", params={**params, "page": page})
            if not response.success:
                return response
            body = response.data or {}
            bookings.extend(body.get("bookings") or [])
            if page >= (to_int(body.get("page_count")) or 1):
                break
            page += 1

        return self.map_each(
            bookings, lambda raw: mapping.map_reservation(raw, self.default_currency), "reservation"
        )

    def get_reservation(self, reservation_id: str) -> Result[Reservation]:
        response = self.request(f"/reservations/{reservation_id}")
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(response.data, self.default_currency))

    def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        body = {
            "arrivalDate": reservation.check_in.isoformat() if reservation.check_in else None,
            "departureDate": reservation.check_out.isoformat() if reservation.check_out else None,
            "apartmentId": reservation.room_type_external_id or reservation.property_external_id,
            "channelId": 70,  # "Direct booking" channel
            "firstName": reservation.guest.first_name,
            "lastName": reservation.guest.last_name,
            "email": reservation.guest.email,
            "phone": reservation.guest.phone,
            "adults": reservation.adults,
            "children": reservation.children,
            "price": reservation.pricing.total,
            "notice": reservation.notes,
        }
        response = self.request("/reservations", method="POST", body=body)
        if not response.success:
            return response
        # Smoobu answers with {"id": ...} only
        return self.get_reservation(str((response.data or {}).get("id")))

    def update_reservation(self, reservation_id: str, changes: dict[str, Any]) -> Result[Reservation]:
        response = self.request(f"/reservations/{reservation_id}", method="PUT", body=changes)
        if not response.success:
            return response
        return self.get_reservation(reservation_id)

    def cancel_reservation(self, reservation_id: str, reason: str = "") -> Result[Any]:
        return self.request(f"/reservations/{reservation_id}", method="DELETE")

    def parse_webhook_payload(self, payload: dict[str, Any], headers: dict[str, str]) -> NormalizedEvent:
        action = to_str(payload.get("action")) or "unknown"
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        event = ACTION_MAP.get(action.lower(), action)

        apartment_id = to_str(pick(data, "apartment.id", "apartmentId"))
        external_id = to_str(data.get("id"))
        if event == "availability.updated":
            external_id = apartment_id or external_id

        return NormalizedEvent(
            event=event,
            external_id=external_id,
            data=data,
            timestamp=parse_datetime(data.get("modifiedAt") or data.get("created-at")),
            property_external_id=apartment_id,
            room_type_external_id=apartment_id,
            raw=payload,
        )
