"""
Hostaway payload -> canonical entity mapping.

Hostaway has no room-type level: every listing is both the property and its
single bookable room type, sharing the listing id.
"""

from __future__ import annotations

from typing import Any

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
from pms_sync.utils.datetime import parse_date, parse_datetime

AMENITY_NAMES: dict[int, str] = {
    1: "Air Conditioning",
    2: "Heating",
    3: "WiFi",
    4: "TV",
    5: "Cable TV",
    6: "Fireplace",
    7: "Intercom",
    8: "Buzzer/Wireless Intercom",
    9: "Doorman",
    10: "Private Entrance",
    11: "Elevator",
    12: "Wheelchair Accessible",
    13: "Kitchen",
    14: "Coffee Maker",
    15: "Refrigerator",
    16: "Microwave",
    17: "Dishwasher",
    18: "Oven",
    19: "Stove",
    20: "Toaster",
    21: "Dishes & Utensils",
    22: "Cooking Basics",
    23: "Shampoo",
    24: "Hair Dryer",
    25: "Iron",
    26: "Washer",
    27: "Dryer",
    28: "Hot Tub",
    29: "Pool",
    30: "Free Parking",
    31: "Street Parking",
    32: "Paid Parking",
    33: "Garage",
    34: "EV Charger",
    35: "Gym",
    36: "BBQ Grill",
    37: "Patio/Balcony",
    38: "Garden",
    39: "Smoke Detector",
    40: "Carbon Monoxide Detector",
    41: "First Aid Kit",
    42: "Fire Extinguisher",
    43: "Lock on Bedroom Door",
    44: "Suitable for Children",
    45: "Suitable for Infants",
    46: "Pets Allowed",
    47: "Smoking Allowed",
    48: "Events Allowed",
    49: "Hangers",
    50: "Bed Linens",
    51: "Extra Pillows & Blankets",
    52: "Laptop Workspace",
    53: "Waterfront",
    54: "Beachfront",
    55: "Ski-in/Ski-out",
    56: "Mountain View",
    57: "Lake View",
    58: "Ocean View",
    59: "City View",
    60: "Garden View",
    61: "Game Console",
    62: "Books and Reading Material",
    63: "Sound System",
    64: "Board Games",
    65: "Streaming Services",
}

# Hostaway reservation statuses -> canonical status
STATUS_MAP: dict[str, ReservationStatus] = {
    "new": ReservationStatus.CONFIRMED,
    "modified": ReservationStatus.CONFIRMED,
    "confirmed": ReservationStatus.CONFIRMED,
    "ownerstay": ReservationStatus.CONFIRMED,
    "awaitingpayment": ReservationStatus.PENDING,
    "pending": ReservationStatus.PENDING,
    "inquiry": ReservationStatus.PENDING,
    "inquirypreapproved": ReservationStatus.PENDING,
    "inquirynotpossible": ReservationStatus.CANCELLED,
    "declined": ReservationStatus.CANCELLED,
    "expired": ReservationStatus.CANCELLED,
    "cancelled": ReservationStatus.CANCELLED,
    "canceled": ReservationStatus.CANCELLED,
}


def extract_amenities(raw: dict[str, Any]) -> list[str]:
    """
    Collect amenity names from ``listingAmenities``, ``amenities`` and ``amenityIds``.

    Known ids are translated with ``AMENITY_NAMES``; unknown ids without a
    provided name are kept as ``amenity_<id>``. Order is preserved, duplicates dropped.
    """
    names: list[str] = []

    def add(name: str | None) -> None:
        if name and name not in names:
            names.append(name)

    for item in raw.get("listingAmenities") or []:
        if isinstance(item, dict):
            amenity_id = to_int(item.get("amenityId", item.get("id")))
            provided = to_str(item.get("amenityName") or item.get("name"))
            if amenity_id in AMENITY_NAMES:
                add(AMENITY_NAMES[amenity_id])
            elif provided:
                add(provided)
            elif amenity_id is not None:
                add(f"amenity_{amenity_id}")
        else:
            amenity_id = to_int(item)
            if amenity_id is not None:
                add(AMENITY_NAMES.get(amenity_id, f"amenity_{amenity_id}"))

    for item in raw.get("amenities") or []:
        add(to_str(item if isinstance(item, str) else (item or {}).get("name")))

    for amenity_id in raw.get("amenityIds") or []:
        parsed = to_int(amenity_id)
        if parsed is not None:
            add(AMENITY_NAMES.get(parsed, f"amenity_{parsed}"))

    return names


def _images(raw: dict[str, Any]) -> list[str]:
    images = sorted(
        (img for img in raw.get("listingImages") or [] if isinstance(img, dict)),
        key=lambda img: to_int(img.get("sortOrder"), 0) or 0,
    )
    return url_list(images)


def map_property(raw: dict[str, Any], default_currency: str) -> Property:
    """Map a Hostaway listing onto a Property that aliases itself as a room type."""
    listing_id = str(raw["id"])
    currency = pick_str(raw, "currencyCode", default=default_currency, field="currency")

    prop = Property(
        external_id=listing_id,
        name=pick_str(raw, "name", "internalListingName", "externalListingName")
        or f"Listing {listing_id}",
        description=pick_str(raw, "description"),
        property_type=pick_str(raw, "propertyType", "roomType"),
        status="active" if to_bool(raw.get("isActive"), True) else "inactive",
        address=Address(
            street=pick_str(raw, "street", "address"),
            city=pick_str(raw, "city"),
            state=pick_str(raw, "state"),
            postal_code=pick_str(raw, "zipcode"),
            country=pick_str(raw, "country"),
            country_code=pick_str(raw, "countryCode"),
        ),
        latitude=to_float(raw.get("lat")),
        longitude=to_float(raw.get("lng")),
        timezone=pick_str(raw, "timeZoneName"),
        currency=currency,
        check_in_time=clock_time(pick(raw, "checkInTimeStart", field="check_in_time"), "15:00"),
        check_out_time=clock_time(pick(raw, "checkOutTime", field="check_out_time"), "11:00"),
        max_guests=pick_int(raw, "personCapacity", "guestsIncluded", default=2, field="max_guests"),
        bedrooms=pick_int(raw, "bedroomsNumber"),
        bathrooms=pick_float(raw, "bathroomsNumber"),
        amenities=extract_amenities(raw),
        images=_images(raw),
        raw=raw,
    )
    prop.room_types = [map_room_type(raw, listing_id, default_currency)]
    return prop


def map_room_type(raw: dict[str, Any], property_id: str, default_currency: str) -> RoomType:
    return RoomType(
        external_id=str(raw["id"]),
        property_external_id=property_id,
        name=pick_str(raw, "name", "internalListingName") or f"Listing {raw['id']}",
        description=pick_str(raw, "description"),
        max_guests=pick_int(raw, "personCapacity", "guestsIncluded", default=2, field="max_guests"),
        bedrooms=pick_int(raw, "bedroomsNumber"),
        beds=pick_int(raw, "bedsNumber"),
        bathrooms=pick_float(raw, "bathroomsNumber"),
        base_price=pick_float(raw, "price"),
        currency=pick_str(raw, "currencyCode", default=default_currency, field="currency"),
        unit_count=1,
        amenities=extract_amenities(raw),
        raw=raw,
    )


def map_availability_day(raw: dict[str, Any], room_type_id: str, default_currency: str) -> AvailabilityDay | None:
    day = parse_date(raw.get("date"))
    if day is None:
        return None
    status = (to_str(raw.get("status")) or "").lower()
    available = to_bool(raw.get("isAvailable"), status in ("", "available"))
    if status in ("reserved", "blocked", "booked", "pending"):
        available = False
    return AvailabilityDay(
        room_type_external_id=room_type_id,
        date=day,
        is_available=available,
        units_available=to_int(raw.get("availableUnitsCount"), 1 if available else 0) or 0,
        min_stay=to_int(raw.get("minimumStay")),
        max_stay=to_int(raw.get("maximumStay")),
        check_in_allowed=not to_bool(raw.get("closedOnArrival"), False),
        check_out_allowed=not to_bool(raw.get("closedOnDeparture"), False),
        price=to_float(raw.get("price")),
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
        price=to_float(raw.get("price")),
        currency=default_currency,
        min_stay=to_int(raw.get("minimumStay")),
        raw=raw,
    )


def map_status(value: Any) -> ReservationStatus:
    key = (to_str(value) or "").replace("_", "").replace("-", "").lower()
    return STATUS_MAP.get(key, ReservationStatus.CONFIRMED)


def map_reservation(raw: dict[str, Any], default_currency: str) -> Reservation:
    listing_id = to_str(pick(raw, "listingMapId", "listingId"))
    return Reservation(
        external_id=str(raw["id"]),
        property_external_id=listing_id,
        room_type_external_id=listing_id,
        check_in=parse_date(pick(raw, "arrivalDate", "arrival", "checkIn")),
        check_out=parse_date(pick(raw, "departureDate", "departure", "checkOut")),
        status=map_status(raw.get("status")),
        guest=Guest(
            first_name=pick_str(raw, "guestFirstName"),
            last_name=pick_str(raw, "guestLastName"),
            email=pick_str(raw, "guestEmail"),
            phone=pick_str(raw, "phone", "guestPhone"),
        ),
        adults=pick_int(raw, "adults", "numberOfGuests", default=1, field="adults"),
        children=pick_int(raw, "children", default=0) or 0,
        infants=pick_int(raw, "infants", default=0) or 0,
        pricing=Pricing(
            currency=pick_str(raw, "currency", default=default_currency, field="currency"),
            total=pick_float(raw, "totalPrice", default=0.0, field="total_price"),
            subtotal=pick_float(raw, "basePrice"),
            cleaning_fee=pick_float(raw, "cleaningFee"),
            taxes=pick_float(raw, "taxAmount"),
            discount=pick_float(raw, "discount"),
        ),
        channel=pick_str(raw, "channelName", default="Direct"),
        channel_reservation_id=pick_str(raw, "channelReservationId"),
        source="hostaway",
        notes=pick_str(raw, "guestNote", "comment"),
        created_at=parse_datetime(raw.get("insertedOn")),
        updated_at=parse_datetime(pick(raw, "updatedOn", "latestActivityOn")),
        raw=raw,
    )
