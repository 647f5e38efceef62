"""Hostaway adapter (OAuth2 client credentials, listing == room type)."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog

from pms_sync.adapters.base import CAPABILITIES, AdapterConfig, PmsAdapter
from pms_sync.network.auth import ClientCredentialsAuth
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.normalizers import hostaway as mapping
from pms_sync.normalizers.fields import to_int, to_str
from pms_sync.schemas.entities import (
    AvailabilityDay,
    ConnectionCheck,
    NormalizedEvent,
    Property,
    RateDay,
    Reservation,
    RoomType,
    TokenInfo,
    WebhookSubscription,
)
from pms_sync.utils.datetime import parse_datetime

logger = structlog.get_logger(__name__)

BASE_URL = "https://api.hostaway.com/v1"
DIRECT_CHANNEL_ID = 2000
PAGE_SIZE = 100

EVENT_MAP = {
    "reservation.created": "reservation.created",
    "reservation created": "reservation.created",
    "reservation.updated": "reservation.updated",
    "reservation updated": "reservation.updated",
    "reservation.modified": "reservation.updated",
    "reservation.cancelled": "reservation.cancelled",
    "reservation.canceled": "reservation.cancelled",
    "calendar.updated": "availability.updated",
    "listing.calendar.updated": "availability.updated",
    "listing.updated": "property.updated",
}


class HostawayAdapter(PmsAdapter):
    code = "hostaway"
    name = "Hostaway"
    auth_type = "oauth2_client_credentials"
    base_url = BASE_URL
    requests_per_minute = 100
    signature_header = "X-Hostaway-Signature"
    required_credentials = (("client_id",), ("client_secret",))
    capabilities = CAPABILITIES | {"webhook_registration"}

    def __init__(
        self,
        config: AdapterConfig,
        client_id: str,
        client_secret: str,
        token: str | None = None,
    ):
        super().__init__(config)
        self.auth = ClientCredentialsAuth(
            session=self.session,
            token_url=f"{self.api_url}/accessTokens",
            client_id=str(client_id),
            client_secret=client_secret,
            access_token=token,
            on_token=config.on_token,
            adapter=self.code,
            timeout=config.timeout,
        )
        # Hostaway answers 403 for expired tokens as well as 401
        self._build_client(self.auth, refresh_statuses=(401, 403))

    def _result(self, response: Result[Any]) -> Result[Any]:
        """Unwrap Hostaway's ``{"status": "success", "result": ...}`` envelope."""
        if not response.success:
            return response
        body = response.data or {}
        if isinstance(body, dict) and body.get("status") not in (None, "success"):
            return Result.fail(ErrorCode.UNKNOWN, str(body.get("message") or body), details=body)
        return Result.ok(body.get("result") if isinstance(body, dict) else body)

    def _paginate(self, endpoint: str, params: dict[str, Any], limit: int | None) -> Result[list[Any]]:
        page_size = limit or PAGE_SIZE
        offset = 0
        items: list[Any] = []
        while True:
            response = self.request(endpoint, params={**params, "limit": page_size, "offset": offset})
            page = self._result(response)
            if not page.success:
                return page
            body = response.data if isinstance(response.data, dict) else {}
            batch = page.data or []
            items.extend(batch)
            total = body.get("count")
            offset += page_size
            if not batch or len(batch) < page_size or (total is not None and offset >= (to_int(total) or 0)):
                return Result.ok(items)

    def authenticate(self) -> Result[TokenInfo]:
        return self.auth.authenticate()

    def test_connection(self) -> Result[ConnectionCheck]:
        response = self.request("/listings", params={"limit": 1})
        if not response.success:
            return response
        return Result.ok(ConnectionCheck(ok=True, message="Hostaway connection successful"))

    def get_properties(self, page: int | None = None, limit: int | None = None) -> Result[list[Property]]:
        params = {"includeResources": 1}
        if page is not None:
            page_size = limit or PAGE_SIZE
            response = self._result(
                self.request(
                    "/listings",
                    params={**params, "limit": page_size, "offset": (page - 1) * page_size},
                )
            )
        else:
            response = self._paginate("/listings", params, limit)
        if not response.success:
            return response
        return self.map_each(
            response.data, lambda raw: mapping.map_property(raw, self.default_currency), "listing"
        )

    def get_property(self, property_id: str) -> Result[Property]:
        response = self._result(self.request(f"/listings/{property_id}", params={"includeResources": 1}))
        if not response.success:
            return response
        return Result.ok(mapping.map_property(response.data, self.default_currency))

    def get_room_types(self, property_id: str) -> Result[list[RoomType]]:
        listing = self.get_property(property_id)
        if not listing.success:
            return listing
        return Result.ok(listing.data.room_types)

    def _calendar(self, listing_id: str, start: date, end: date) -> Result[list[dict[str, Any]]]:
        return self.shared_calendar(
            (listing_id, start, end),
            lambda: self._result(
                self.request(
                    f"/listings/{listing_id}/calendar",
                    params={"startDate": start.isoformat(), "endDate": end.isoformat()},
                )
            ),
        )

    def get_availability(self, room_type_id: str, start: date, end: date) -> Result[list[AvailabilityDay]]:
        response = self._calendar(room_type_id, start, end)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_availability_day(raw, room_type_id, self.default_currency),
            "calendar_day",
        )

    def update_availability(self, room_type_id: str, days: list[AvailabilityDay]) -> Result[Any]:
        intervals = [
            {
                "startDate": day.date.isoformat(),
                "endDate": day.date.isoformat(),
                "isAvailable": 1 if day.is_available else 0,
                "minimumStay": day.min_stay,
                "maximumStay": day.max_stay,
                "closedOnArrival": 0 if day.check_in_allowed else 1,
                "closedOnDeparture": 0 if day.check_out_allowed else 1,
            }
            for day in days
        ]
        self.forget_calendar()
        return self._result(
            self.request(f"/listings/{room_type_id}/calendarIntervals", method="PUT", body=intervals)
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

    def update_rates(self, room_type_id: str, days: list[RateDay]) -> Result[Any]:
        intervals = [
            {
                "startDate": day.date.isoformat(),
                "endDate": day.date.isoformat(),
                "price": day.price,
                "minimumStay": day.min_stay,
            }
            for day in days
        ]
        self.forget_calendar()
        return self._result(
            self.request(f"/listings/{room_type_id}/calendarIntervals", method="PUT", body=intervals)
        )

    def get_reservations(
        self,
        start: date | None = None,
        end: date | None = None,
        modified_since: datetime | None = None,
        property_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[Reservation]]:
        params: dict[str, Any] = {"sortOrder": "latestActivityDesc"}
        if start:
            params["arrivalStartDate"] = start.isoformat()
        if end:
            params["arrivalEndDate"] = end.isoformat()
        if modified_since:
            params["latestActivityStart"] = modified_since.strftime("%Y-%m-%d %H:%M:%S")
        if property_id:
            params["listingId"] = property_id

        response = self._paginate("/reservations", params, limit)
        if not response.success:
            return response
        return self.map_each(
            response.data,
            lambda raw: mapping.map_reservation(raw, self.default_currency),
            "reservation",
        )

    def get_reservation(self, reservation_id: str) -> Result[Reservation]:
        response = self._result(self.request(f"/reservations/{reservation_id}"))
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(response.data, self.default_currency))

    def _reservation_body(self, reservation: Reservation) -> dict[str, Any]:
        return {
            "channelId": DIRECT_CHANNEL_ID,
            "listingMapId": reservation.room_type_external_id or reservation.property_external_id,
            "arrivalDate": reservation.check_in.isoformat() if reservation.check_in else None,
            "departureDate": reservation.check_out.isoformat() if reservation.check_out else None,
            "guestFirstName": reservation.guest.first_name,
            "guestLastName": reservation.guest.last_name,
            "guestName": reservation.guest.full_name,
            "guestEmail": reservation.guest.email,
            "phone": reservation.guest.phone,
            "numberOfGuests": reservation.adults + reservation.children,
            "adults": reservation.adults,
            "children": reservation.children,
            "infants": reservation.infants,
            "totalPrice": reservation.pricing.total,
            "currency": reservation.pricing.currency,
            "status": "new",
        }

    def create_reservation(self, reservation: Reservation) -> Result[Reservation]:
        response = self._result(
            self.request("/reservations", method="POST", body=self._reservation_body(reservation))
        )
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(response.data, self.default_currency))

    def update_reservation(self, reservation_id: str, changes: dict[str, Any]) -> Result[Reservation]:
        response = self._result(
            self.request(f"/reservations/{reservation_id}", method="PUT", body=changes)
        )
        if not response.success:
            return response
        return Result.ok(mapping.map_reservation(response.data, self.default_currency))

    def cancel_reservation(self, reservation_id: str, reason: str = "") -> Result[Any]:
        return self._result(
            self.request(
                f"/reservations/{reservation_id}/statuses/cancelled",
                method="PUT",
                body={"cancelledBy": "host", "comment": reason or None},
            )
        )

    def register_webhook(self, url: str, events: list[str]) -> Result[WebhookSubscription]:
        """
        Create a unified webhook; Hostaway delivers every event type to it.

        Per-webhook basic-auth credentials are left unset, deliveries are
        authenticated by the connection's signature secret instead.
        """
        response = self._result(
            self.request(
                "/webhooks/unifiedWebhooks",
                method="POST",
                body={"isEnabled": 1, "url": url, "login": None, "password": None, "alertingEmailAddress": None},
            )
        )
        if not response.success:
            return response
        webhook_id = to_str((response.data or {}).get("id")) if isinstance(response.data, dict) else None
        if not webhook_id:
            return Result.fail(ErrorCode.UNKNOWN, "Hostaway webhook registration returned no id", details=response.data)
        logger.info("webhook_registered", adapter=self.code, webhook_id=webhook_id, url=url)
        return Result.ok(WebhookSubscription(webhook_id=webhook_id, url=url, events=list(events)))

    def unregister_webhook(self, webhook_id: str) -> Result[Any]:
        return self._result(self.request(f"/webhooks/unifiedWebhooks/{webhook_id}", method="DELETE"))

    def parse_webhook_payload(self, payload: dict[str, Any], headers: dict[str, str]) -> NormalizedEvent:
        """
        Normalise Hostaway's unified webhook body.

        Deliveries look like ``{"event": "reservation.created", "accountId": 1,
        "data": {...}}``; some older integrations send ``eventType`` instead.
        """
        raw_event = to_str(payload.get("event") or payload.get("eventType")) or "unknown"
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        event = EVENT_MAP.get(raw_event.lower(), raw_event.lower())

        if event == "reservation.updated" and mapping.map_status(data.get("status")).value == "cancelled":
            event = "reservation.cancelled"

        listing_id = to_str(data.get("listingMapId") or data.get("listingId"))
        external_id = to_str(data.get("id"))
        if event in ("availability.updated", "property.updated"):
            external_id = listing_id or external_id

        return NormalizedEvent(
            event=event,
            external_id=external_id,
            event_id=to_str(payload.get("webhookId") or payload.get("eventId")),
            data=data,
            timestamp=parse_datetime(data.get("updatedOn") or payload.get("timestamp")),
            property_external_id=listing_id,
            room_type_external_id=listing_id,
            raw=payload,
        )
