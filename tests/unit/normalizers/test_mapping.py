"""Unit tests for the per-PMS mapping functions."""

from datetime import date

import pytest

from pms_sync.normalizers import beds24, calry, hostaway, smoobu
from pms_sync.schemas.entities import ReservationStatus


@pytest.mark.unit
def test_smoobu_reservation_date_aliases_agree() -> None:
    """Test that arrival/departure and arrivalDate/departureDate map identically."""
    short = smoobu.map_reservation(
        {"id": 7, "arrival": "2026-05-01", "departure": "2026-05-04", "apartment": {"id": 101}}, "EUR"
    )
    long = smoobu.map_reservation(
        {"id": 7, "arrivalDate": "2026-05-01", "departureDate": "2026-05-04", "apartmentId": 101}, "EUR"
    )

    assert short.check_in == long.check_in == date(2026, 5, 1)
    assert short.check_out == long.check_out == date(2026, 5, 4)
    assert short.room_type_external_id == long.room_type_external_id == "101"
    assert short.nights == 3


@pytest.mark.unit
def test_smoobu_reservation_defaults_and_guest_split() -> None:
    """Test documented defaults and splitting of a single guest name."""
    res = smoobu.map_reservation({"id": 1, "guest-name": "Ada Lovelace", "type": "cancellation"}, "EUR")

    assert res.guest.first_name == "Ada"
    assert res.guest.last_name == "Lovelace"
    assert res.status == ReservationStatus.CANCELLED
    assert res.adults == 1
    assert res.pricing.currency == "EUR"
    assert res.pricing.total == 0.0
    assert res.channel == "Direct"


@pytest.mark.unit
def test_smoobu_apartment_is_its_own_room_type() -> None:
    """Test that a Smoobu apartment aliases itself as a single room type."""
    prop = smoobu.map_property(
        {"id": 101, "name": "Loft", "rooms": {"maxOccupancy": 4, "doubleBeds": 1, "singleBeds": 2}}, "EUR"
    )

    assert len(prop.room_types) == 1
    room = prop.room_types[0]
    assert room.external_id == prop.external_id == "101"
    assert room.property_external_id == "101"
    assert room.max_guests == 4
    assert room.beds == 3
    assert prop.timezone == "Europe/Berlin"


@pytest.mark.unit
def test_smoobu_calendar_shapes() -> None:
    """Test that both keyed and list calendar bodies yield dated day dicts."""
    keyed = list(smoobu.iter_calendar({"data": {"101": {"2026-05-01": {"price": 90, "available": 1}}}}, "101"))
    listed = list(smoobu.iter_calendar({"data": {"101": [{"date": "2026-05-01", "price": 90}]}}, "101"))

    assert keyed == [{"date": "2026-05-01", "price": 90, "available": 1}]
    assert listed[0]["date"] == "2026-05-01"

    day = smoobu.map_availability_day(keyed[0], "101", "EUR")
    assert day is not None and day.is_available and day.units_available == 1
    assert smoobu.map_rate_day({"date": "bad"}, "101", "EUR") is None


@pytest.mark.unit
def test_hostaway_listing_aliases_room_type() -> None:
    """Test that a Hostaway listing becomes a property plus one room type with the same id."""
    prop = hostaway.map_property(
        {"id": 555, "name": "Beach House", "currencyCode": "AUD", "personCapacity": 6, "isActive": 0},
        "USD",
    )

    assert prop.currency == "AUD"
    assert prop.status == "inactive"
    assert [r.external_id for r in prop.room_types] == ["555"]
    assert prop.room_types[0].max_guests == 6


@pytest.mark.unit
def test_hostaway_blocked_day_is_unavailable() -> None:
    """Test that a reserved calendar day is unavailable even when isAvailable is missing."""
    day = hostaway.map_availability_day({"date": "2026-05-01", "status": "reserved"}, "555", "USD")

    assert day is not None
    assert day.is_available is False
    assert day.units_available == 0


@pytest.mark.unit
def test_hostaway_reservation_statuses() -> None:
    """Test Hostaway reservation mapping and status normalisation."""
    res = hostaway.map_reservation(
        {
            "id": 9,
            "listingMapId": 555,
            "arrivalDate": "2026-06-01",
            "departureDate": "2026-06-05",
            "status": "cancelled",
            "totalPrice": "800.50",
            "guestFirstName": "Grace",
        },
        "USD",
    )

    assert res.status == ReservationStatus.CANCELLED
    assert res.pricing.total == 800.5
    assert res.property_external_id == res.room_type_external_id == "555"
    assert res.source == "hostaway"


@pytest.mark.unit
def test_beds24_v1_last_night_becomes_departure() -> None:
    """Test that V1 lastNight maps to a check-out one day later."""
    res = beds24.map_reservation(
        {"bookId": "88", "propId": "3", "roomId": "31", "firstNight": "20260701", "lastNight": "20260703", "status": "0"},
        "EUR",
    )

    assert res.external_id == "88"
    assert res.check_in == date(2026, 7, 1)
    assert res.check_out == date(2026, 7, 4)
    assert res.status == ReservationStatus.CANCELLED


@pytest.mark.unit
def test_beds24_calendar_ranges_expand() -> None:
    """Test that V2 ranges and V1 keyed dates expand to one entry per day."""
    ranges = list(beds24.expand_calendar([{"from": "2026-07-01", "to": "2026-07-03", "numAvail": 2}]))
    keyed = list(beds24.expand_calendar({"20260701": {"i": 0, "p1": "120"}}))

    assert [d["date"] for d in ranges] == ["2026-07-01", "2026-07-02", "2026-07-03"]
    day = beds24.map_availability_day(keyed[0], "31", "EUR")
    assert day is not None
    assert day.is_available is False
    assert day.price == 120.0


@pytest.mark.unit
def test_beds24_property_with_rooms() -> None:
    """Test Beds24 properties carry their room types."""
    prop = beds24.map_property(
        {"id": 3, "name": "Hotel", "roomTypes": [{"id": 31, "name": "Double", "qty": 4}, {"name": "no id"}]},
        "EUR",
    )

    assert [r.external_id for r in prop.room_types] == ["31"]
    assert prop.room_types[0].unit_count == 4
    assert prop.room_types[0].property_external_id == "3"


@pytest.mark.unit
def test_calry_status_substrings() -> None:
    """Test free-form broker statuses."""
    assert calry.map_status("CANCELLED_BY_GUEST") == ReservationStatus.CANCELLED
    assert calry.map_status("checked-in") == ReservationStatus.CHECKED_IN
    assert calry.map_status("checked_out") == ReservationStatus.CHECKED_OUT
    assert calry.map_status("inquiry") == ReservationStatus.PENDING
    assert calry.map_status("whatever") == ReservationStatus.CONFIRMED


@pytest.mark.unit
def test_calry_reservation_nested_guest_and_money() -> None:
    """Test nested guest names and money objects in broker reservations."""
    res = calry.map_reservation(
        {
            "id": "r-1",
            "propertyId": "p-1",
            "checkIn": "2026-08-01",
            "checkOut": "2026-08-03",
            "guest": {"name": "Alan Turing"},
            "pricing": {"total": {"amount": 300, "currency": "GBP"}, "currency": "GBP"},
        },
        "USD",
    )

    assert res.guest.first_name == "Alan"
    assert res.guest.last_name == "Turing"
    assert res.pricing.total == 300.0
    assert res.pricing.currency == "GBP"
    assert res.room_type_external_id == "p-1"


@pytest.mark.unit
def test_calry_property_alias() -> None:
    """Test aliasing a broker property as its own room type."""
    prop = calry.map_property({"id": "p-1", "name": "Cabin", "maxOccupancy": 5}, "USD")
    room = calry.property_as_room_type(prop)

    assert room.external_id == room.property_external_id == "p-1"
    assert room.max_guests == 5


@pytest.mark.unit
def test_hostaway_amenities_by_id_and_name() -> None:
    """Test amenity id translation, provided names and de-duplication."""
    names = hostaway.extract_amenities(
        {
            "listingAmenities": [{"amenityId": 3}, {"amenityId": 9999, "amenityName": "Sauna"}, {"amenityId": 8888}],
            "amenityIds": [3, "1"],
        }
    )

    assert names == ["WiFi", "Sauna", "amenity_8888", "Air Conditioning"]
