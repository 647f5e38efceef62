"""
Smoobu payload -> canonical entity mapping.

Smoobu apartments are single-unit: each apartment doubles as its own room
type. Calendar data comes from ``/rates`` keyed by apartment id and then by
date; older responses return a list of day objects instead.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Iterator

from pms_sync.normalizers.fields import (
    clock_time,
    name_list,
    pick,
    pick_float,
    pick_int,
    pick_str,
    to_bool,
    to_float,
    to_int,
    to_str,
    url_list,
)
from pms_sync.schemas.entities import (
    Address,
    AvailabilityCheck,
    AvailabilityDay,
    Guest,
    Pricing,
    Property,
    RateDay,
    Reservation,
    ReservationStatus,
    RoomType,
)
from pms_sync.utils.datetime import parse_date, parse_datetime

DEFAULT_TIMEZONE = "Europe/Berlin"


def map_property(raw: dict[str, Any], default_currency: str) -> Property:
    apartment_id = str(raw["id"])
    prop = Property(
        external_id=apartment_id,
        name=pick_str(raw, "name") or f"Apartment {apartment_id}",
        description=pick_str(raw, "description"),
        property_type=pick_str(raw, "type.name", "type", default="apartment"),
        address=Address(
            street=pick_str(raw, "location.street", "street"),
            city=pick_str(raw, "location.city", "city"),
            state=pick_str(raw, "location.state"),
            postal_code=pick_str(raw, "location.zip", "location.postalCode"),
            country=pick_str(raw, "location.country", "country"),
        ),
        latitude=pick_float(raw, "location.latitude", "latitude"),
        longitude=pick_float(raw, "location.longitude", "longitude"),
        timezone=pick_str(raw, "timeZone", "timezone", default=DEFAULT_TIMEZONE, field="timezone"),
        currency=pick_str(raw, "currency", default=default_currency, field="currency"),
        check_in_time=clock_time(pick(raw, "arrivalTime", field="check_in_time"), "15:00"),
        check_out_time=clock_time(pick(raw, "departureTime", field="check_out_time"), "11:00"),
        max_guests=pick_int(raw, "rooms.maxOccupancy", "maxOccupancy", "rooms.persons", default=2, field="max_guests"),
        bedrooms=pick_int(raw, "rooms.bedrooms"),
        bathrooms=pick_float(raw, "rooms.bathrooms"),
        amenities=name_list(pick(raw, "equipments", "amenities", default=[])),
        images=url_list(raw.get("images")),
        raw=raw,
    )
    prop.room_types = [map_room_type(raw, apartment_id, default_currency)]
    return prop


def map_room_type(raw: dict[str, Any], property_id: str, default_currency: str) -> RoomType:
    beds = sum(
        to_int(pick(raw, key), 0) or 0
        for key in ("rooms.doubleBeds", "rooms.singleBeds", "rooms.sofaBeds", "rooms.couches")
    )
    return RoomType(
        external_id=str(raw["id"]),
        property_external_id=property_id,
        name=pick_str(raw, "name") or f"Apartment {raw['id']}",
        description=pick_str(raw, "description"),
        max_guests=pick_int(raw, "rooms.maxOccupancy", "maxOccupancy", default=2, field="max_guests"),
        bedrooms=pick_int(raw, "rooms.bedrooms"),
        beds=beds or None,
        bathrooms=pick_float(raw, "rooms.bathrooms"),
        base_price=pick_float(raw, "price.minimal", "price"),
        currency=pick_str(raw, "currency", default=default_currency, field="currency"),
        unit_count=1,
        amenities=name_list(pick(raw, "equipments", "amenities", default=[])),
        raw=raw,
    )


def iter_calendar(data: Any, apartment_id: str) -> Iterator[dict[str, Any]]:
    """
    Yield day dicts (each with a ``date`` key) from a ``/rates`` response body.

    Handles ``{"data": {"<id>": {"<date>": {...}}}}`` as well as list-shaped
    apartment entries.
    """
    body = data.get("data", data) if isinstance(data, dict) else data
    entry = body.get(str(apartment_id), body) if isinstance(body, dict) else body

    if isinstance(entry, list):
        for day in entry:
            if isinstance(day, dict):
                yield day
    elif isinstance(entry, dict):
        for key, day in entry.items():
            if isinstance(day, dict) and parse_date(key) is not None:
                yield {"date": key, **day}


def map_availability_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> AvailabilityDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    available = to_bool(raw.get("available"), True)
    return AvailabilityDay(
        room_type_external_id=room_type_id,
        date=day,
        is_available=available,
        units_available=to_int(raw.get("available"), 1 if available else 0) or 0,
        min_stay=to_int(pick(raw, "min_length_of_stay", "minStay")),
        price=to_float(raw.get("price")),
        currency=pick_str(raw, "currency", default=default_currency),
        raw=raw,
    )


def map_rate_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> RateDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    return RateDay(
        room_type_external_id=room_type_id,
        date=day,
        price=to_float(raw.get("price")),
        currency=pick_str(raw, "currency", default=default_currency),
        min_stay=to_int(pick(raw, "min_length_of_stay", "minStay")),
        raw=raw,
    )


def map_status(raw: dict[str, Any]) -> ReservationStatus:
    booking_type = (to_str(raw.get("type")) or "").lower()
    if booking_type in ("cancellation", "cancelled"):
        return ReservationStatus.CANCELLED
    return ReservationStatus.CONFIRMED


def map_reservation(raw: dict[str, Any], default_currency: str) -> Reservation:
    apartment_id = to_str(pick(raw, "apartment.id", "apartmentId"))
    first_name = pick_str(raw, "firstname", "firstName")
    last_name = pick_str(raw, "lastname", "lastName")
    if not first_name and not last_name:
        full = pick_str(raw, "guest-name", "guestName")
        if full:
            first_name, _, last_name = full.partition(" ")

    return Reservation(
        external_id=str(raw["id"]),
        property_external_id=apartment_id,
        room_type_external_id=apartment_id,
        check_in=parse_date(pick(raw, "arrival", "arrivalDate")),
        check_out=parse_date(pick(raw, "departure", "departureDate")),
        status=map_status(raw),
        guest=Guest(
            first_name=first_name or None,
            last_name=last_name or None,
            email=pick_str(raw, "email"),
            phone=pick_str(raw, "phone"),
        ),
        adults=pick_int(raw, "adults", default=1, field="adults"),
        children=pick_int(raw, "children", default=0) or 0,
        pricing=Pricing(
            currency=pick_str(raw, "apartment.currency", "currency", default=default_currency, field="currency"),
            total=pick_float(raw, "price", default=0.0, field="total_price"),
            paid=pick_float(raw, "price-paid"),
            balance=None,
        ),
        channel=pick_str(raw, "channel.name", default="Direct"),
        channel_reservation_id=pick_str(raw, "reference-id"),
        source="smoobu",
        notes=pick_str(raw, "notice", "guestNote"),
        created_at=parse_datetime(pick(raw, "created-at", "createdAt")),
        updated_at=parse_datetime(pick(raw, "modifiedAt", "modified-at")),
        raw=raw,
    )


def map_availability_check(raw: dict[str, Any], check_in: dt.date, check_out: dt.date) -> AvailabilityCheck:
    """
    Map a ``checkApartmentAvailability`` answer.

    Prices arrive as ``{"<id>": {"price": 240, "currency": "EUR"}}`` and
    refusals as ``{"<id>": {"errorCode": 405, "message": "..."}}``.
    """
    prices: dict[str, float | None] = {}
    currency = None
    for apartment_id, quote in (raw.get("prices") or {}).items():
        if isinstance(quote, dict):
            prices[str(apartment_id)] = to_float(quote.get("price"))
            currency = currency or pick_str(quote, "currency")
        else:
            prices[str(apartment_id)] = to_float(quote)

    errors: dict[str, str] = {}
    for apartment_id, error in (raw.get("errorMessages") or {}).items():
        message = pick_str(error, "message") if isinstance(error, dict) else to_str(error)
        errors[str(apartment_id)] = message or "not available"

    return AvailabilityCheck(
        check_in=check_in,
        check_out=check_out,
        available_room_types=[str(apartment_id) for apartment_id in raw.get("availableApartments") or []],
        prices=prices,
        currency=currency,
        errors=errors,
    )
