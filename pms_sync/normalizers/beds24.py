"""
Beds24 payload -> canonical entity mapping.

Covers both API generations: V2 REST payloads (``propertyId``, ``arrival``,
calendar ranges with ``from``/``to``) and V1 JSON payloads (``propId``,
``firstNight``/``lastNight``, dates keyed as ``YYYYMMDD``). Field lookup
tries V2 names first and V1 names second.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Iterator

from pms_sync.normalizers.fields import (
    clock_time,
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
    AvailabilityDay,
    Guest,
    Pricing,
    Property,
    RateDay,
    Reservation,
    ReservationStatus,
    RoomType,
)
from pms_sync.utils.datetime import iter_dates, parse_date, parse_datetime

STATUS_MAP: dict[str, ReservationStatus] = {
    "confirmed": ReservationStatus.CONFIRMED,
    "new": ReservationStatus.CONFIRMED,
    "request": ReservationStatus.PENDING,
    "inquiry": ReservationStatus.PENDING,
    "cancelled": ReservationStatus.CANCELLED,
    "canceled": ReservationStatus.CANCELLED,
    # V1 numeric statuses
    "0": ReservationStatus.CANCELLED,
    "1": ReservationStatus.CONFIRMED,
    "2": ReservationStatus.CONFIRMED,
    "3": ReservationStatus.PENDING,
}


def map_property(raw: dict[str, Any], default_currency: str) -> Property:
    property_id = str(pick(raw, "id", "propId"))
    currency = pick_str(raw, "currency", "propCurrency", default=default_currency, field="currency")
    prop = Property(
        external_id=property_id,
        name=pick_str(raw, "name", "propName") or f"Property {property_id}",
        description=pick_str(raw, "description", "texts.propertyDescription"),
        property_type=pick_str(raw, "propertyType", "propType", "propTypeId"),
        address=Address(
            street=pick_str(raw, "address", "propAddress"),
            city=pick_str(raw, "city", "propCity"),
            state=pick_str(raw, "state", "propState"),
            postal_code=pick_str(raw, "postcode", "propPostcode"),
            country=pick_str(raw, "country", "propCountry"),
        ),
        latitude=pick_float(raw, "latitude", "propLatitude"),
        longitude=pick_float(raw, "longitude", "propLongitude"),
        timezone=pick_str(raw, "timeZone", "timezone"),
        currency=currency,
        check_in_time=clock_time(pick(raw, "checkInStart", field="check_in_time"), "15:00"),
        check_out_time=clock_time(pick(raw, "checkOutEnd", field="check_out_time"), "11:00"),
        images=url_list(pick(raw, "images", "pictures", default=[])),
        raw=raw,
    )
    prop.room_types = [
        map_room_type(room, property_id, currency)
        for room in pick(raw, "roomTypes", "rooms", default=[])
        if isinstance(room, dict) and pick(room, "id", "roomId") is not None
    ]
    return prop


def map_room_type(raw: dict[str, Any], property_id: str, default_currency: str) -> RoomType:
    room_id = str(pick(raw, "id", "roomId"))
    adults = pick_int(raw, "maxAdult", "numAdult")
    return RoomType(
        external_id=room_id,
        property_external_id=str(pick(raw, "propertyId", "propId", default=property_id)),
        name=pick_str(raw, "name", "roomName") or f"Room {room_id}",
        description=pick_str(raw, "description"),
        max_guests=pick_int(raw, "maxPeople", "numAdult", default=2, field="max_guests"),
        max_adults=adults,
        max_children=pick_int(raw, "maxChildren", "numChild"),
        bedrooms=pick_int(raw, "bedrooms"),
        beds=pick_int(raw, "beds"),
        bathrooms=pick_float(raw, "bathrooms"),
        base_price=pick_float(raw, "rackRate", "minPrice", "roomPrice"),
        currency=pick_str(raw, "currency", default=default_currency, field="currency"),
        unit_count=pick_int(raw, "qty", "roomQty", default=1, field="unit_count") or 1,
        raw=raw,
    )


def expand_calendar(entries: Any) -> Iterator[dict[str, Any]]:
    """
    Expand Beds24 calendar data into one dict per date.

    V2 returns ranges (``{"from": ..., "to": ..., "numAvail": ...}``); V1
    returns a dict keyed by ``YYYYMMDD``. Every yielded dict carries ``date``.
    """
    if isinstance(entries, dict):
        for key, values in entries.items():
            day = parse_date(key)
            if day is not None and isinstance(values, dict):
                yield {"date": day.isoformat(), **values}
        return

    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        start = parse_date(pick(entry, "from", "date"))
        end = parse_date(entry.get("to")) or start
        if start is None or end is None:
            continue
        for day in iter_dates(start, end):
            yield {**entry, "date": day.isoformat()}


def map_availability_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> AvailabilityDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    units = pick_int(raw, "numAvail", "i", "available")
    if units is None:
        units = 1 if to_bool(raw.get("available"), False) else 0
    return AvailabilityDay(
        room_type_external_id=room_type_id,
        date=day,
        is_available=units > 0,
        units_available=units,
        min_stay=pick_int(raw, "minStay", "m"),
        max_stay=pick_int(raw, "maxStay", "x"),
        check_in_allowed=not to_bool(pick(raw, "closedArrival", "ca"), False),
        check_out_allowed=not to_bool(pick(raw, "closedDeparture", "cd"), False),
        price=pick_float(raw, "price1", "p1"),
        currency=default_currency,
        raw=raw,
    )


def map_rate_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> RateDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    return RateDay(
        room_type_external_id=room_type_id,
        date=day,
        price=pick_float(raw, "price1", "p1"),
        currency=default_currency,
        min_stay=pick_int(raw, "minStay", "m"),
        raw=raw,
    )


def map_status(value: Any) -> ReservationStatus:
    return STATUS_MAP.get((to_str(value) or "").lower(), ReservationStatus.CONFIRMED)


def _check_out(raw: dict[str, Any]) -> Any:
    departure = parse_date(raw.get("departure"))
    if departure is not None:
        return departure
    # V1 reports the last night, not the departure day
    last_night = parse_date(raw.get("lastNight"))
    return last_night + timedelta(days=1) if last_night else None


def map_reservation(raw: dict[str, Any], default_currency: str) -> Reservation:
    first_name = pick_str(raw, "firstName", "guestFirstName")
    last_name = pick_str(raw, "lastName", "guestName", "guestLastName")
    return Reservation(
        external_id=str(pick(raw, "id", "bookId")),
        property_external_id=to_str(pick(raw, "propertyId", "propId")),
        room_type_external_id=to_str(pick(raw, "roomId")),
        check_in=parse_date(pick(raw, "arrival", "firstNight")),
        check_out=_check_out(raw),
        status=map_status(raw.get("status")),
        guest=Guest(
            first_name=first_name,
            last_name=last_name,
            email=pick_str(raw, "email", "guestEmail"),
            phone=pick_str(raw, "phone", "mobile", "guestPhone", "guestMobile"),
        ),
        adults=pick_int(raw, "numAdult", default=1, field="adults"),
        children=pick_int(raw, "numChild", default=0) or 0,
        pricing=Pricing(
            currency=pick_str(raw, "currency", default=default_currency, field="currency"),
            total=pick_float(raw, "price", default=0.0, field="total_price"),
            taxes=to_float(raw.get("tax")),
            fees=to_float(raw.get("commission")),
            paid=to_float(raw.get("deposit")),
        ),
        channel=pick_str(raw, "channel", "referer", default="Direct"),
        channel_reservation_id=pick_str(raw, "apiReference"),
        source="beds24",
        notes=pick_str(raw, "comments", "notes", "guestComments"),
        created_at=parse_datetime(pick(raw, "bookingTime", "bookingDate")),
        updated_at=parse_datetime(pick(raw, "modifiedTime", "modified")),
        raw=raw,
    )


def to_calendar_ranges(days: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert per-day update dicts (with ``date``) into single-day V2 ranges."""
    ranges = []
    for day in days:
        entry = {k: v for k, v in day.items() if k != "date" and v is not None}
        entry["from"] = entry["to"] = str(day["date"])
        ranges.append(entry)
    return ranges
