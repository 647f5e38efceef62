"""
Calry broker adapter.

One adapter class serves every PMS that Calry unifies; the integration
account id selects the downstream PMS and ``pms_type`` records which one it
is. Calendar endpoints are addressed by property, so room types are mapped
back to their parent property before each calendar call.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog

from pms_sync.adapters.base import CAPABILITIES, AdapterConfig, PmsAdapter
from pms_sync.network.auth import BearerRefreshAuth, WorkspaceTokenAuth
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.normalizers import calry as mapping
from pms_sync.normalizers.fields import pick, to_str
from pms_sync.schemas.entities import (
    AvailabilityDay,
    ConnectionCheck,
    NormalizedEvent,
    Property,
    Quote,
    RateDay,
    Reservation,
    RoomType,
    TokenInfo,
    WebhookSubscription,
)
from pms_sync.utils.datetime import parse_datetime

logger = structlog.get_logger(__name__)

BASE_URL = "https://prod.calry.app/api/v2"
V1_BASE_URL = "https://prod.calry.app/api/v1"
PAGE_SIZE = 100
MAX_PAGES = 1000

EVENT_MAP = {
    "reservation.created": "reservation.created",
    "reservation_created": "reservation.created",
    "booking.created": "reservation.created",
    "reservation.updated": "reservation.updated",
    "reservation_updated": "reservation.updated",
    "booking.updated": "reservation.updated",
    "reservation.cancelled": "reservation.cancelled",
    "reservation.canceled": "reservation.cancelled",
    "reservation_cancelled": "reservation.cancelled",
    "booking.cancelled": "reservation.cancelled",
    "availability.updated": "availability.updated",
    "calendar.updated": "availability.updated",
    "rates.updated": "rates.updated",
    "rate.updated": "rates.updated",
    "property.updated": "property.updated",
}


def _unwrap(body: Any) -> Any:
    """Calry wraps most payloads as ``{"data": ...}``; some endpoints do not."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class CalryAdapter(PmsAdapter):
    code = "calry"
    name = "Calry"
    auth_type = "workspace_token"
    base_url = BASE_URL
    requests_per_minute = 100
    signature_header = "X-Calry-Signature"
    capabilities = CAPABILITIES | {"quotes", "webhook_registration"}
    required_credentials = (("token",), ("workspace_id",))

    def __init__(
        self,
        config: AdapterConfig,
        token: str,
        workspace_id: str,
        integration_account_id: str | None = None,
    ):
        super().__init__(config)
        self.pms_type = config.pms_type
        self.auth = WorkspaceTokenAuth(
            BearerRefreshAuth(
                session=self.session,
                base_url=self.api_url,
                token=token,
                adapter=self.code,
                timeout=config.timeout,
            ),
            workspace_id=str(workspace_id),
            integration_account_id=str(integration_account_id) if integration_account_id else None,
        )
        self._build_client(self.auth)
        self._room_parents: dict[str, str] = {}

    def authenticate(self) -> Result[TokenInfo]:
        return self.auth.authenticate()

    def test_connection(self) -> Result[ConnectionCheck]:
        response = self.request("/vrs/properties", params={"limit": 1})
        if not response.success:
            return response
        return Result.ok(
            ConnectionCheck(
                ok=True,
                message="Calry connection successful",
                details={"pms_type": self.pms_type, "integration_account_id": self.auth.integration_account_id},
            )
        )

    def get_integration_accounts(self) -> Result[list[dict[str, Any]]]:
        """List the downstream PMS accounts linked to the workspace (v1 API)."""
        response = self.request("/integration-accounts", base_url=V1_BASE_URL)
        if not response.success:
            return response
        accounts = _unwrap(response.data) or []
        return Result.ok(
            [
                {
                    "id": to_str(account.get("id")),
                    "name": account.get("name"),
                    "pms": pick(account, "integrationDefinition.name", "pms", "type"),
                    "status": account.get("status"),
                }
                for account in accounts
                if isinstance(account, dict)
            ]
        )

    def _remember_rooms(self, properties: list[Property]) -> None:
        for prop in properties:
            for room in prop.room_types:
                self._room_parents[room.external_id] = prop.external_id

    def get_properties(self, page: int | None = None, limit: int | None = None) -> Result[list[Property]]:
        page_size = limit or PAGE_SIZE
        pages = [page] if page is not None else range(1, MAX_PAGES + 1)
        raw_items: list[Any] = []
        for current in pages:
            response = self.request("/vrs/properties", params={"page": current, "limit": page_size})
            if not response.success:
                return response
            batch = _unwrap(response.data) or []
            raw_items.extend(batch)
            has_more = isinstance(response.data, dict) and response.data.get("hasMore")
            if not batch or not has_more:
                break

        mapped = self.map_each(
            raw_items, lambda raw: mapping.map_property(raw, self.default_currency), "property"
        )
        self._remember_rooms(mapped.data or [])
        return mapped

    def get_property(self, property_id: str) -> Result[Property]:
        response = self.request(f"/vrs/properties/{property_id}")
        if not response.success:
            return response
        prop = mapping.map_property(_unwrap(response.data), self.default_currency)
        self._remember_rooms([prop])
        return Result.ok(prop)

    def get_room_types(self, property_id: str) -> Result[list[RoomType]]:
        response = self.request(f"/vrs/room-types/{property_id}")
        if not response.success:
            return response
        mapped = self.map_each(
            _unwrap(response.data) or [],
            lambda raw: mapping.map_room_type(raw, property_id, self.default_currency),
            "room_type",
        )
        if mapped.data:
            for room in mapped.data:
                self._room_parents[room.external_id] = property_id
            return mapped

        # Downstream PMSs without room types: the property is its own room type
        prop = self.get_property(property_id)
        if not prop.success:
            return prop
        alias = mapping.property_as_room_type(prop.data)
        self._room_parents[alias.external_id] = property_id
        return Result.ok([alias], errors=mapped.errors)

    def property_for_room_type(self, room_type_id: str) -> str:
        """Resolve a room type's parent property; unknown ids are assumed to be aliases."""
        if room_type_id in self._room_parents:
            return self._room_parents[room_type_id]
        if self.gateway is not None and self.connection_id is not None:
            parent = self.gateway.room_type_parent(self.connection_id, room_type_id)
            if parent:
                self._room_parents[room_type_id] = parent
                return parent
        return room_type_id

    def _calendar_days(self, body: Any) -> list[dict[str, Any]]:
        data = _unwrap(body)
        if isinstance(data, dict):
            data = pick(data, "dateWiseAvailability", "availability", "rates", default=[])
        return [day for day in data or [] if isinstance(day, dict)]

    def get_availability(self, room_type_id: str, start: date, end: date) -> Result[list[AvailabilityDay]]:
        property_id = self.property_for_room_type(room_type_id)
        response = self.request(
            f"/vrs/availability/{property_id}",
            params={
                "roomTypeId": room_type_id,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
                "rates": "true",
            },
        )
        if not response.success:
            return response
        return self.map_each(
            self._calendar_days(response.data),
            lambda raw: mapping.map_availability_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def update_availability(self, room_type_id: str, days: list[AvailabilityDay]) -> Result[Any]:
        property_id = self.property_for_room_type(room_type_id)
        updates = [
            {
                "date": day.date.isoformat(),
                "available": day.is_available,
                "unitsAvailable": day.units_available,
                "minStay": day.min_stay,
                "maxStay": day.max_stay,
                "checkInAllowed": day.check_in_allowed,
                "checkOutAllowed": day.check_out_allowed,
            }
            for day in days
        ]
        return self.request(
            f"/vrs/availability/{property_id}",
            method="PUT",
            body={"roomTypeId": room_type_id, "availability": updates},
        )

    def get_rates(self, room_type_id: str, start: date, end: date) -> Result[list[RateDay]]:
        property_id = self.property_for_room_type(room_type_id)
        response = self.request(
            f"/vrs/rates/{property_id}",
            params={"roomTypeId": room_type_id, "startDate": start.isoformat(), "endDate": end.isoformat()},
        )
        if not response.success:
            return response
        return self.map_each(
            self._calendar_days(response.data),
            lambda raw: mapping.map_rate_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def update_rates(self, room_type_id: str, days: list[RateDay]) -> Result[Any]:
        property_id = self.property_for_room_type(room_type_id)
        updates = [
            {
                "date": day.date.isoformat(),
                "price": day.price,
                "currency": day.currency,
                "extraGuestFee": day.extra_guest_fee,
                "minStay": day.min_stay,
            }
            for day in days
        ]
        return self.request(
            f"/vrs/rates/{property_id}",
            method="PUT",
            body={"roomTypeId": room_type_id, "rates": updates},
        )

    def batch_availability(
        self, room_type_ids: list[str], start: date, end: date
    ) -> Result[dict[str, list[AvailabilityDay]]]:
        """
        Availability of several room types in one call.

        Downstream PMSs without batch support make Calry refuse the call; the
        room types are then fetched one by one and a room type that still
        fails is reported in ``errors`` and left out.
        """
        response = self.request(
            "/vrs/availability/batch",
            method="POST",
            body={"roomTypeIds": room_type_ids, "startDate": start.isoformat(), "endDate": end.isoformat()},
        )
        if response.success:
            return self._map_batch(response.data, room_type_ids)

        logger.info("batch_availability_fallback", adapter=self.code, rooms=len(room_type_ids), error=response.message)
        by_room: dict[str, list[AvailabilityDay]] = {}
        errors: list[str] = []
        for room_type_id in room_type_ids:
            single = self.get_availability(room_type_id, start, end)
            if single.success:
                by_room[room_type_id] = single.data or []
                errors.extend(single.errors)
            else:
                errors.append(f"room type {room_type_id}: {single.message}")
        return Result.ok(by_room, errors=tuple(errors))

    def _map_batch(self, body: Any, room_type_ids: list[str]) -> Result[dict[str, list[AvailabilityDay]]]:
        data = _unwrap(body)
        if isinstance(data, list):
            data = {
                to_str(entry.get("roomTypeId")): entry
                for entry in data
                if isinstance(entry, dict) and entry.get("roomTypeId") is not None
            }
        by_room: dict[str, list[AvailabilityDay]] = {}
        errors: list[str] = []
        for room_type_id, days in (data or {}).items():
            mapped = self.map_each(
                self._calendar_days(days),
                lambda raw, room=str(room_type_id): mapping.map_availability_day(raw, room, self.default_currency),
                "calendar_day",
            )
            by_room[str(room_type_id)] = mapped.data or []
            errors.extend(mapped.errors)
        missing = [room for room in room_type_ids if room not in by_room]
        errors.extend(f"room type {room}: missing from batch response" for room in missing)
        return Result.ok(by_room, errors=tuple(errors))

    def get_quote(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        adults: int = 1,
        children: int = 0,
        infants: int = 0,
    ) -> Result[Quote]:
        response = self.request(
            "/vrs/quotes",
            method="POST",
            body={
                "roomTypeId": room_type_id,
                "checkIn": check_in.isoformat(),
                "checkOut": check_out.isoformat(),
                "adults": adults,
                "children": children,
                "infants": infants,
            },
        )
        if not response.success:
            return response
        raw = _unwrap(response.data)
        if not isinstance(raw, dict):
            return Result.fail(ErrorCode.UNKNOWN, "Calry quote response has no price breakdown", details=raw)
        return Result.ok(mapping.map_quote(raw, room_type_id, check_in, check_out, self.default_currency))

    def get_reservations(
        self,
        start: date | None = None,
        end: date | None = None,
        modified_since: datetime | None = None,
        property_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[Reservation]]:
        params: dict[str, Any] = {"limit": limit or PAGE_SIZE}
        if start:
            params["startDate"] = start.isoformat()
        if end:
            params["endDate"] = end.isoformat()
        if modified_since:
            params["modifiedSince"] = modified_since.isoformat()
        if property_id:
            params["propertyId"] = property_id

        raw_items: list[Any] = []
        for page in range(1, MAX_PAGES + 1):
            response = self.request("/vrs/reservations", params={**params, "page": page})
            if not response.success:
                return response
            batch = _unwrap(response.data) or []
            raw_items.extend(batch)
            has_more = isinstance(response.data, dict) and response.data.get("hasMore")
            if not batch or not has_more:
                break

        return self.map_each(
            raw_items, lambda raw: mapping.map_reservation(raw, self.default_currency), "reservation"
        )

    def get_reservation(self, reservation_id: str) -> Result[Reservation]:
        response = self.request(f"/vrs/reservations/{reservation_id}")
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(_unwrap(response.data), self.default_currency))

    def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        payload = {
            "propertyId": reservation.property_external_id,
            "roomTypeId": reservation.room_type_external_id,
            "checkIn": reservation.check_in.isoformat() if reservation.check_in else None,
            "checkOut": reservation.check_out.isoformat() if reservation.check_out else None,
            "guest": {
                "firstName": reservation.guest.first_name,
                "lastName": reservation.guest.last_name,
                "email": reservation.guest.email,
                "phone": reservation.guest.phone,
            },
            "adults": reservation.adults,
            "children": reservation.children,
            "infants": reservation.infants,
            "notes": reservation.notes,
        }
        response = self.request("/vrs/reservations", method="POST", body=payload)
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(_unwrap(response.data), self.default_currency))

    def update_reservation(self, reservation_id: str, changes: dict[str, Any]) -> Result[Reservation]:
        response = self.request(f"/vrs/reservations/{reservation_id}", method="PUT", body=changes)
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(_unwrap(response.data), self.default_currency))

    def cancel_reservation(self, reservation_id: str, reason: str = "") -> Result[Any]:
        changes: dict[str, Any] = {"status": "cancelled"}
        if reason:
            changes["notes"] = reason
        return self.update_reservation(reservation_id, changes)

    def register_webhook(self, url: str, events: list[str]) -> Result[WebhookSubscription]:
        response = self.request("/webhooks", method="POST", body={"url": url, "events": events})
        if not response.success:
            return response
        data = _unwrap(response.data) or {}
        webhook_id = to_str(data.get("id")) if isinstance(data, dict) else None
        if not webhook_id:
            return Result.fail(ErrorCode.UNKNOWN, "Calry webhook registration returned no id", details=response.data)
        logger.info("webhook_registered", adapter=self.code, webhook_id=webhook_id, url=url)
        return Result.ok(
            WebhookSubscription(
                webhook_id=webhook_id,
                url=url,
                events=list(events),
                listener_url=to_str(data.get("listenerUrl")),
            )
        )

    def unregister_webhook(self, webhook_id: str) -> Result[Any]:
        response = self.request(f"/webhooks/{webhook_id}", method="DELETE")
        if response.success:
            logger.info("webhook_unregistered", adapter=self.code, webhook_id=webhook_id)
        return response

    def parse_webhook_payload(self, payload: dict[str, Any], headers: dict[str, str]) -> NormalizedEvent:
        raw_event = to_str(payload.get("event") or payload.get("type")) or "unknown"
        data = payload.get("data") or payload.get("payload") or {}
        if not isinstance(data, dict):
            data = {}
        event = EVENT_MAP.get(raw_event.lower(), raw_event.lower())

        external_id = to_str(data.get("id") or payload.get("resourceId"))
        room_type_id = to_str(data.get("roomTypeId"))
        property_id = to_str(data.get("propertyId"))
        if event in ("availability.updated", "rates.updated"):
            external_id = room_type_id or property_id or external_id

        return NormalizedEvent(
            event=event,
            external_id=external_id,
            event_id=to_str(payload.get("eventId")),
            data=data,
            timestamp=parse_datetime(payload.get("timestamp")),
            property_external_id=property_id,
            room_type_external_id=room_type_id or property_id,
            raw=payload,
        )
