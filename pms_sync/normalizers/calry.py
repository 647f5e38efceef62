"""
Calry (broker) payload -> canonical entity mapping.

Calry unifies dozens of downstream PMSs, so field names vary with the PMS
behind the integration account; every lookup carries several candidates.
Prices may arrive as plain numbers or as ``{"amount": ..., "currency": ...}``.
"""

from __future__ import annotations

import datetime as dt
from typing import Any

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
    AvailabilityDay,
    Guest,
    Pricing,
    Property,
    Quote,
    RateDay,
    Reservation,
    ReservationStatus,
    RoomType,
)
from pms_sync.utils.datetime import parse_date, parse_datetime

UNAVAILABLE_STATUSES = {"blocked", "booked", "unavailable", "reserved"}


def map_property(raw: dict[str, Any], default_currency: str) -> Property:
    property_id = str(raw["id"])
    currency = pick_str(raw, "currency", default=default_currency, field="currency")
    prop = Property(
        external_id=property_id,
        name=pick_str(raw, "name", "title") or f"Property {property_id}",
        description=pick_str(raw, "description", "summary"),
        property_type=pick_str(raw, "type", "propertyType", default="vacation_rental"),
        status=pick_str(raw, "status", default="active") or "active",
        address=Address(
            street=pick_str(raw, "address.address1", "address.street", "street"),
            city=pick_str(raw, "address.city", "city"),
            state=pick_str(raw, "address.state", "state", "region"),
            postal_code=pick_str(raw, "address.postalCode", "address.zipCode", "postalCode"),
            country=pick_str(raw, "address.country", "country"),
            country_code=pick_str(raw, "address.countryCode", "countryCode"),
        ),
        latitude=pick_float(raw, "coordinates.latitude", "location.latitude", "location.lat", "latitude"),
        longitude=pick_float(
            raw, "coordinates.longitude", "location.longitude", "location.lng", "longitude"
        ),
        timezone=pick_str(raw, "timezone", "timeZone"),
        currency=currency,
        check_in_time=clock_time(
            pick(raw, "checkInTime", "checkinTime", "defaultCheckIn", field="check_in_time"), "15:00"
        ),
        check_out_time=clock_time(
            pick(raw, "checkOutTime", "checkoutTime", "defaultCheckOut", field="check_out_time"),
            "11:00",
        ),
        max_guests=pick_int(raw, "maxOccupancy", "maxGuests", "capacity"),
        bedrooms=pick_int(raw, "bedRoom.count", "bedrooms"),
        bathrooms=pick_float(raw, "bathRoom.count", "bathrooms"),
        amenities=name_list(raw.get("amenities")),
        images=url_list(pick(raw, "pictures", "images", "photos", default=[])),
        raw=raw,
    )
    nested = [rt for rt in raw.get("roomTypes") or [] if isinstance(rt, dict) and rt.get("id") is not None]
    prop.room_types = [map_room_type(rt, property_id, currency) for rt in nested]
    return prop


def property_as_room_type(prop: Property) -> RoomType:
    """Alias a property as its own room type for PMSs without a room-type level."""
    return RoomType(
        external_id=prop.external_id,
        property_external_id=prop.external_id,
        name=prop.name,
        description=prop.description,
        max_guests=prop.max_guests or 2,
        bedrooms=prop.bedrooms,
        bathrooms=prop.bathrooms,
        currency=prop.currency,
        amenities=prop.amenities,
        raw=prop.raw,
    )


def map_room_type(raw: dict[str, Any], property_id: str | None, default_currency: str) -> RoomType:
    units = raw.get("units")
    if isinstance(units, list):
        unit_count = len(units) or 1
    else:
        unit_count = pick_int(raw, "units.count", "quantity", default=1) or 1
    beds = raw.get("beds")
    return RoomType(
        external_id=str(raw["id"]),
        property_external_id=str(property_id or pick(raw, "propertyId")),
        name=pick_str(raw, "name") or f"Room type {raw['id']}",
        description=pick_str(raw, "description", "summary"),
        max_guests=pick_int(raw, "maxOccupancy", "maxGuests", "capacity", default=2, field="max_guests"),
        max_adults=pick_int(raw, "maxAdults"),
        max_children=pick_int(raw, "maxChildren"),
        bedrooms=pick_int(raw, "bedRoom.count", "bedrooms", "numberOfBedrooms"),
        beds=len(beds) if isinstance(beds, list) else to_int(beds),
        bathrooms=pick_float(raw, "bathRoom.count", "bathrooms", "numberOfBathrooms"),
        base_price=pick_float(raw, "startPrice", "basePrice", "price"),
        currency=pick_str(raw, "currency", default=default_currency, field="currency"),
        unit_count=unit_count,
        amenities=name_list(raw.get("amenities")),
        raw=raw,
    )


def _price_currency(raw: dict[str, Any]) -> str | None:
    return pick_str(raw, "currency", "price.currency")


def map_availability_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> AvailabilityDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    status = (to_str(raw.get("status")) or "").lower()
    if status == "available":
        available = True
    elif status in UNAVAILABLE_STATUSES:
        available = False
    else:
        available = to_bool(raw.get("available"), True)
    units = pick_int(raw, "unitsAvailable", "availableUnits")
    return AvailabilityDay(
        room_type_external_id=room_type_id,
        date=day,
        is_available=available,
        units_available=units if units is not None else (1 if available else 0),
        min_stay=pick_int(raw, "minimumNights", "minStay", "minimumStay", "minNights"),
        max_stay=pick_int(raw, "maximumNights", "maxStay", "maximumStay", "maxNights"),
        check_in_allowed=to_bool(raw.get("checkInAllowed"), True)
        and not to_bool(raw.get("closedToArrival"), False),
        check_out_allowed=to_bool(raw.get("checkOutAllowed"), True)
        and not to_bool(raw.get("closedToDeparture"), False),
        price=to_float(raw.get("price")),
        currency=_price_currency(raw) or default_currency,
        raw=raw,
    )


def map_rate_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> RateDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    return RateDay(
        room_type_external_id=room_type_id,
        date=day,
        price=pick_float(raw, "price", "rate", "amount"),
        currency=_price_currency(raw) or default_currency,
        extra_guest_fee=pick_float(raw, "extraGuestFee", "additionalGuestFee"),
        weekly_discount_percent=pick_float(raw, "weeklyDiscount", "weeklyDiscountPercent"),
        monthly_discount_percent=pick_float(raw, "monthlyDiscount", "monthlyDiscountPercent"),
        min_stay=pick_int(raw, "minimumNights", "minStay"),
        raw=raw,
    )


def map_status(value: Any) -> ReservationStatus:
    """Substring match over free-form broker statuses; unknown values are confirmed."""
    text = (to_str(value) or "").lower()
    if not text:
        return ReservationStatus.CONFIRMED
    if "cancel" in text:
        return ReservationStatus.CANCELLED
    if "no" in text and "show" in text:
        return ReservationStatus.NO_SHOW
    if "check" in text and "out" in text:
        return ReservationStatus.CHECKED_OUT
    if "check" in text and "in" in text:
        return ReservationStatus.CHECKED_IN
    if "pending" in text or "inquiry" in text or "request" in text:
        return ReservationStatus.PENDING
    return ReservationStatus.CONFIRMED


def map_reservation(raw: dict[str, Any], default_currency: str) -> Reservation:
    guest = pick(raw, "guest", "guestDetails", default={}) or {}
    pricing = pick(raw, "pricing", "financials", default={}) or {}
    if not isinstance(pricing, dict):
        pricing = {}

    first_name = pick_str(guest, "firstName") or pick_str(raw, "guestFirstName")
    last_name = pick_str(guest, "lastName") or pick_str(raw, "guestLastName")
    full_name = pick_str(guest, "name")
    if full_name and not first_name and not last_name:
        first_name, _, last_name = full_name.partition(" ")

    adults = pick_int(raw, "adults", "numberOfAdults", "numAdults", default=1, field="adults")
    return Reservation(
        external_id=str(raw["id"]),
        property_external_id=to_str(pick(raw, "propertyId")),
        room_type_external_id=to_str(pick(raw, "roomTypeId", "unitId", "propertyId")),
        check_in=parse_date(pick(raw, "checkIn", "arrivalDate", "arrival")),
        check_out=parse_date(pick(raw, "checkOut", "departureDate", "departure")),
        status=map_status(raw.get("status")),
        guest=Guest(
            first_name=first_name or None,
            last_name=last_name or None,
            email=pick_str(guest, "email") or pick_str(raw, "guestEmail"),
            phone=pick_str(guest, "phone", "phoneNumber") or pick_str(raw, "guestPhone"),
        ),
        adults=adults,
        children=pick_int(raw, "children", "numberOfChildren", default=0) or 0,
        infants=pick_int(raw, "infants", "numberOfInfants", default=0) or 0,
        pricing=Pricing(
            currency=pick_str(pricing, "currency") or pick_str(raw, "currency", default=default_currency, field="currency"),
            total=pick_float(pricing, "total", "totalPrice", "amount")
            or pick_float(raw, "totalPrice", "total", default=0.0, field="total_price"),
            subtotal=pick_float(pricing, "subtotal", "accommodationTotal", "accommodationFare"),
            cleaning_fee=pick_float(pricing, "cleaningFee") or pick_float(raw, "cleaningFee"),
            taxes=pick_float(pricing, "taxes", "taxAmount"),
            fees=pick_float(pricing, "fees", "feeAmount", "additionalFees"),
            discount=pick_float(pricing, "discount"),
            paid=pick_float(pricing, "paid", "amountPaid"),
            balance=pick_float(pricing, "balance", "amountDue"),
        ),
        channel=pick_str(raw, "channel", "source", default="DIRECT"),
        channel_reservation_id=pick_str(raw, "channelReservationId", "externalId"),
        source=pick_str(raw, "source", default="calry"),
        notes=pick_str(raw, "notes", "guestNotes", "specialRequests"),
        created_at=parse_datetime(pick(raw, "createdAt", "created")),
        updated_at=parse_datetime(pick(raw, "updatedAt", "modified")),
        raw=raw,
    )


def map_quote(
    raw: dict[str, Any], room_type_id: str, check_in: dt.date, check_out: dt.date, default_currency: str
) -> Quote:
    """Map a ``/vrs/quotes`` breakdown; the total falls back to the sum of its parts."""
    subtotal = pick_float(raw, "accommodationTotal", "subtotal", "accommodationFare")
    cleaning = pick_float(raw, "cleaningFee", "cleaning")
    taxes = pick_float(raw, "taxes", "taxAmount")
    fees = pick_float(raw, "fees", "feeAmount")
    total = pick_float(raw, "total", "totalPrice", "price.amount")
    if total is None:
        total = sum(part for part in (subtotal, cleaning, taxes, fees) if part is not None)
    plans = raw.get("ratePlans")
    return Quote(
        room_type_external_id=room_type_id,
        check_in=check_in,
        check_out=check_out,
        nights=pick_int(raw, "nights", "numberOfNights", default=(check_out - check_in).days),
        pricing=Pricing(
            currency=_price_currency(raw) or default_currency,
            total=total,
            subtotal=subtotal,
            cleaning_fee=cleaning,
            taxes=taxes,
            fees=fees,
            discount=pick_float(raw, "discount"),
        ),
        rate_plans=[plan for plan in plans if isinstance(plan, dict)] if isinstance(plans, list) else [],
        raw=raw,
    )
