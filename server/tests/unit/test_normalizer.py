"""Unit tests for booking normalization."""

from datetime import date, time
from decimal import Decimal

import pytest

from tourdesk.channel.normalizer import NormalizationError, normalize, parse_booking
from tourdesk.channel.schemas import RawBooking

from conftest import make_booking


def _normalize(payload):
    return normalize(parse_booking(payload), tz="Europe/Rome", default_channel="Bokun")


def test_normalize_basic_booking():
    """Test the canonical fields of a simple booking."""
    booking = _normalize(make_booking(1001))

    assert booking.external_id == "1001"
    assert booking.confirmation_code == "FLO-1001"
    assert booking.product_id == "501"
    assert booking.title == "Uffizi Gallery Tour"
    assert booking.date == date(2026, 11, 2)
    assert booking.time == time(10, 0)
    assert booking.participants == 2
    assert booking.customer_name == "Anna Rossi"
    assert booking.customer_email == "anna1001@example.com"
    assert booking.booking_channel == "Bokun"
    assert booking.cancelled is False
    assert booking.expected_amount == Decimal("120.0")
    assert booking.channel_payload["id"] == 1001


def test_start_date_time_converted_to_local_zone():
    """Test that UTC timestamps become Rome wall-clock time."""
    booking = _normalize(make_booking(1, start="2026-07-14T22:30:00Z", start_time_str=None))

    # Rome is UTC+2 in summer, so this is the next calendar day
    assert booking.date == date(2026, 7, 15)
    assert booking.time == time(0, 30)


def test_epoch_milliseconds_accepted():
    """Test that epoch millisecond timestamps are parsed (UTC+1 in November)."""
    booking = _normalize(make_booking(2, start=1793610000000, start_time_str=None))

    assert booking.date == date(2026, 11, 2)
    assert booking.time == time(10, 0)


def test_explicit_start_time_string_wins():
    """Test that the channel's local start time overrides the timestamp clock."""
    booking = _normalize(make_booking(3, start="2026-11-02T09:00:00Z", start_time_str="14:15"))

    assert booking.time == time(14, 15)


def test_date_only_field_without_time_is_rejected():
    """Test that a date-only start gives no time."""
    payload = make_booking(4, start_time_str=None)
    product_booking = payload["productBookings"][0]
    del product_booking["startDateTime"]
    product_booking["startDate"] = "2026-11-02"

    with pytest.raises(NormalizationError) as exc_info:
        _normalize(payload)

    assert exc_info.value.field == "time"


def test_missing_title_is_rejected():
    """Test that a booking without any product title fails normalization."""
    payload = make_booking(5)
    payload["productBookings"][0]["product"] = {"id": 501}

    with pytest.raises(NormalizationError) as exc_info:
        _normalize(payload)

    assert exc_info.value.field == "title"


def test_missing_date_is_rejected():
    """Test that a booking without any start field fails normalization."""
    payload = make_booking(6)
    del payload["productBookings"][0]["startDateTime"]

    with pytest.raises(NormalizationError) as exc_info:
        _normalize(payload)

    assert exc_info.value.field == "date"


def test_infants_excluded_from_participants():
    """Test participant counting by price category."""
    booking = _normalize(make_booking(7, categories={"ADULT": 2, "CHILD": 1, "INFANT": 1}))

    assert booking.participants == 3
    assert booking.adults == 2
    assert booking.children == 1
    assert booking.infants == 1


def test_senior_student_and_unknown_count_as_adults():
    """Test that non-child categories are counted as adults."""
    booking = _normalize(make_booking(8, categories={"SENIOR": 1, "STUDENT": 1, "GROUP": 2, "YOUTH": 1}))

    assert booking.adults == 4
    assert booking.children == 1
    assert booking.participants == 5


def test_total_participants_fallback():
    """Test the fallback when no price categories are sent."""
    payload = make_booking(9, categories={})
    payload["totalParticipants"] = 4

    booking = _normalize(payload)

    assert booking.participants == 4
    assert booking.adults == 4


def test_no_participant_information_gives_zero():
    """Test that a booking without any counts has zero participants."""
    booking = _normalize(make_booking(10, categories={}))

    assert booking.participants == 0


def test_language_from_guide_note():
    """Test that a GUIDE note wins over every other language source."""
    payload = make_booking(11, title="Uffizi Tour in Spanish", language="de")
    payload["productBookings"][0]["notes"] = [{"body": "GUIDE : Italian"}]

    assert _normalize(payload).language == "Italian"


def test_language_from_booking_languages_note():
    """Test the reseller's booking languages note."""
    payload = make_booking(12)
    payload["customerExternalNotes"] = "Booking languages (Guide): French"

    assert _normalize(payload).language == "French"


def test_language_from_rate_title_before_explicit_field():
    """Test that the rate title is checked before explicit language fields."""
    payload = make_booking(13, language="en")
    payload["productBookings"][0]["rate"] = {"title": "German guided tour"}

    assert _normalize(payload).language == "German"


def test_language_from_explicit_field_code():
    """Test that a two-letter language code is mapped."""
    payload = make_booking(14)
    payload["productBookings"][0]["fields"]["language"] = "es"

    assert _normalize(payload).language == "Spanish"


def test_language_from_product_title():
    """Test the product title keyword fallback."""
    assert _normalize(make_booking(15, title="Accademia Tour - Portuguese")).language == "Portuguese"


def test_language_absent():
    """Test that no language source gives None."""
    assert _normalize(make_booking(16)).language is None


def test_special_requests_joined_and_deduplicated():
    """Test that note-bearing fields are collected once each."""
    payload = make_booking(17)
    payload["customerExternalNotes"] = "Wheelchair access"
    payload["internalNotes"] = "  "
    payload["productBookings"][0]["customerExternalNotes"] = "Wheelchair access"
    payload["productBookings"][0]["specialRequests"] = "Vegetarian lunch"

    assert _normalize(payload).special_requests == "Wheelchair access\nVegetarian lunch"


def test_special_requests_empty_string_when_none():
    """Test that a booking without notes has an empty special requests field."""
    assert _normalize(make_booking(18)).special_requests == ""


def test_participant_names_parsed():
    """Test traveler name extraction from special requests."""
    payload = make_booking(19)
    payload["productBookings"][0]["specialRequests"] = (
        "Traveler 1:\nFirst Name: mario\nLast Name: bianchi\n"
        "Traveler 2:\nFirst Name: LUCIA\nLast Name: verdi"
    )

    names = _normalize(payload).participant_names

    assert names == [{"first": "Mario", "last": "Bianchi"}, {"first": "Lucia", "last": "Verdi"}]


def test_participant_names_absent():
    """Test that free text without traveler blocks gives None."""
    payload = make_booking(20)
    payload["productBookings"][0]["specialRequests"] = "Please call on arrival"

    assert _normalize(payload).participant_names is None


@pytest.mark.parametrize(
    "extra,expected",
    [
        ({"channel": {"title": "Viator.com"}, "seller": {"title": "Other"}}, "Viator.com"),
        ({"seller": {"title": "Florence Walks"}}, "Florence Walks"),
        ({"affiliateCode": "GYG-1234"}, "GetYourGuide"),
        ({"affiliateCode": "tripadvisor_x"}, "TripAdvisor"),
        ({"salesChannel": "Website"}, "Website"),
        ({}, "Bokun"),
    ],
)
def test_booking_channel_resolution(extra, expected):
    """Test the booking channel precedence."""
    assert _normalize(make_booking(21, **extra)).booking_channel == expected


def test_customer_takes_precedence_over_main_contact():
    """Test contact resolution."""
    payload = make_booking(22)
    payload["mainContact"] = {"firstName": "Other", "lastName": "Person", "phoneNumber": "+39 055 000"}

    booking = _normalize(payload)
    assert booking.customer_name == "Anna Rossi"

    del payload["customer"]
    booking = _normalize(payload)
    assert booking.customer_name == "Other Person"
    assert booking.customer_phone == "+39 055 000"


def test_cancelled_status():
    """Test that a cancelled booking normalizes to a cancelled tour."""
    assert _normalize(make_booking(23, status="CANCELLED")).cancelled is True


def test_fields_sent_as_empty_list():
    """Test that the channel's [] for empty fields is accepted."""
    payload = make_booking(24, start_time_str=None, categories={})
    payload["productBookings"][0]["fields"] = []

    booking = _normalize(payload)

    assert booking.time == time(10, 0)


def test_unknown_fields_are_preserved():
    """Test that unmodelled payload keys survive in the stored payload."""
    payload = make_booking(25, partnerReference="ABC-9")

    raw = RawBooking.from_payload(payload)

    assert raw.payload()["partnerReference"] == "ABC-9"
    assert _normalize(payload).channel_payload["partnerReference"] == "ABC-9"


def test_invalid_payload_raises_normalization_error():
    """Test that schema violations surface as normalization errors."""
    payload = make_booking(26)
    payload["productBookings"] = "not-a-list"

    with pytest.raises(NormalizationError) as exc_info:
        parse_booking(payload)

    assert exc_info.value.field.replace("_", "").lower().startswith("productbookings")
