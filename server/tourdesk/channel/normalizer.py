"""Conversion of channel bookings into the canonical tour record shape."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError as PydanticValidationError

from .schemas import RawBooking, RawProductBooking, Timestamp

LANGUAGES = ("English", "Italian", "Spanish", "German", "French", "Portuguese", "Chinese", "Japanese")

LANGUAGE_CODES = {
    "en": "English",
    "it": "Italian",
    "es": "Spanish",
    "de": "German",
    "fr": "French",
    "pt": "Portuguese",
    "zh": "Chinese",
    "ja": "Japanese",
}

AFFILIATE_CHANNELS = (
    ("viator", "Viator"),
    ("getyourguide", "GetYourGuide"),
    ("gyg", "GetYourGuide"),
    ("tripadvisor", "TripAdvisor"),
)

CHILD_CATEGORIES = {"CHILD", "YOUTH"}
INFANT_CATEGORY = "INFANT"

GUIDE_LANGUAGE_RE = re.compile(r"GUIDE\s*:\s*([A-Za-z]+)", re.IGNORECASE)
BOOKING_LANGUAGES_RE = re.compile(r"Booking languages.*?:\s*([A-Za-z]+)", re.IGNORECASE | re.DOTALL)
TRAVELER_RE = re.compile(
    r"Traveler\s+(\d+):\s*\n?First Name:\s*(.+?)\s*\n?Last Name:\s*(.+?)(?:\n|$)",
    re.IGNORECASE,
)
CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})")


class NormalizationError(Exception):
    """A channel booking lacks a field the tour record requires."""

    def __init__(self, field_name: str, message: str):
        self.field = field_name
        self.message = message
        super().__init__(f"{field_name}: {message}")


@dataclass(frozen=True)
class NormalizedBooking:
    """Canonical tour fields extracted from one channel booking."""
    external_id: str
    confirmation_code: Optional[str]
    product_id: Optional[str]
    title: str
    date: date
    time: time
    duration_minutes: Optional[int]
    participants: int
    adults: int
    children: int
    infants: int
    participant_names: Optional[list[dict[str, str]]]
    language: Optional[str]
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    special_requests: str
    booking_channel: str
    cancelled: bool
    expected_amount: Optional[Decimal]
    channel_payload: dict[str, Any] = field(default_factory=dict, compare=False)


def parse_booking(data: dict[str, Any]) -> RawBooking:
    """
    Validate a raw booking payload.

    Raises:
        NormalizationError: If the payload does not match the booking schema
    """
    try:
        return RawBooking.from_payload(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "booking"
        raise NormalizationError(location, first.get("msg", "invalid value")) from e


def _to_local_datetime(value: Timestamp, tz: ZoneInfo) -> datetime:
    """Epoch milliseconds or an ISO string (UTC unless offset given) in local time."""
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().lstrip("-").isdigit()):
        moment = datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    else:
        moment = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def _to_local_date(value: Timestamp, tz: ZoneInfo) -> date:
    if isinstance(value, str) and len(value.strip()) == 10:
        return date.fromisoformat(value.strip())
    return _to_local_datetime(value, tz).date()


def _parse_clock(value: str) -> time:
    match = CLOCK_RE.match(value)
    if not match:
        raise NormalizationError("time", f"unrecognised start time {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise NormalizationError("time", f"start time out of range {value!r}")
    return time(hour, minute)


def resolve_schedule(raw: RawBooking, tz: ZoneInfo) -> tuple[date, time]:
    """
    Work out the local tour date and start time.

    The date comes from the most precise field available: the product
    booking's start date-time, its start time, its date-only start date,
    then the booking's start time. The time prefers the channel's explicit
    local start time string, else the clock time of the chosen timestamp.
    A date-only field never supplies a time.

    Raises:
        NormalizationError: If no date or no time can be determined
    """
    pb = raw.first_product_booking
    moment: Optional[datetime] = None
    tour_date: Optional[date] = None

    try:
        if pb is not None and pb.start_date_time is not None:
            moment = _to_local_datetime(pb.start_date_time, tz)
        elif pb is not None and pb.start_time is not None:
            moment = _to_local_datetime(pb.start_time, tz)
        elif pb is not None and pb.start_date is not None:
            tour_date = _to_local_date(pb.start_date, tz)
        elif raw.start_time is not None:
            moment = _to_local_datetime(raw.start_time, tz)
    except (ValueError, OverflowError, OSError) as e:
        raise NormalizationError("date", f"unparseable start date: {e}") from e

    if moment is not None:
        tour_date = moment.date()
    if tour_date is None:
        raise NormalizationError("date", "booking has no tour date")

    start_time_str = pb.booking_fields.start_time_str if pb is not None else None
    if start_time_str:
        return tour_date, _parse_clock(start_time_str)
    if moment is not None:
        return tour_date, time(moment.hour, moment.minute)
    raise NormalizationError("time", "booking has no start time")


def count_participants(pb: Optional[RawProductBooking], fallback: Optional[int]) -> tuple[int, int, int, int]:
    """
    Count participants by price category.

    Returns:
        (participants, adults, children, infants); participants excludes infants
    """
    adults = children = infants = 0
    categories = pb.category_bookings if pb is not None else []

    for category_booking in categories:
        quantity = max(category_booking.quantity, 0)
        code = category_booking.category_code
        if code == INFANT_CATEGORY:
            infants += quantity
        elif code in CHILD_CATEGORIES:
            children += quantity
        else:
            # ADULT, SENIOR, STUDENT and unknown categories
            adults += quantity

    if adults or children or infants:
        return adults + children, adults, children, infants

    total = fallback or 0
    return max(total, 0), max(total, 0), 0, 0


def match_language(value: Optional[str]) -> Optional[str]:
    """Map a language name or two-letter code onto the known vocabulary."""
    if not value:
        return None
    candidate = value.strip()
    lowered = candidate.lower()
    for language in LANGUAGES:
        if lowered == language.lower():
            return language
    return LANGUAGE_CODES.get(lowered[:2]) if len(lowered) in (2, 5) else None


def _language_keyword(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    lowered = text.lower()
    for language in LANGUAGES:
        if language.lower() in lowered:
            return language
    return None


def _note_bodies(raw: RawBooking, pb: Optional[RawProductBooking]) -> list[str]:
    bodies = []
    if pb is not None:
        bodies.extend(note.body for note in pb.notes if note.body)
        if pb.customer_external_notes:
            bodies.append(pb.customer_external_notes)
    if raw.customer_external_notes:
        bodies.append(raw.customer_external_notes)
    return bodies


def detect_language(raw: RawBooking, title: str) -> Optional[str]:
    """
    Derive the tour language, first hit wins.

    Order: a ``GUIDE : <Language>`` or ``Booking languages ...: <Language>``
    line in the notes, a keyword in the rate title, an explicit language
    field, then a keyword in the product title.
    """
    pb = raw.first_product_booking

    for body in _note_bodies(raw, pb):
        for pattern in (GUIDE_LANGUAGE_RE, BOOKING_LANGUAGES_RE):
            match = pattern.search(body)
            if match:
                language = match_language(match.group(1))
                if language:
                    return language

    if pb is not None and pb.rate is not None:
        language = _language_keyword(pb.rate.title)
        if language:
            return language

    explicit = [raw.language]
    if pb is not None:
        explicit = [
            pb.booking_fields.language,
            pb.product.language if pb.product else None,
            raw.language,
        ]
    for value in explicit:
        language = match_language(value)
        if language:
            return language

    return _language_keyword(title)


def collect_special_requests(raw: RawBooking) -> str:
    """All notes-bearing fields joined by newlines; empty string if none."""
    parts: list[str] = [raw.customer_external_notes or "", raw.internal_notes or ""]
    for pb in raw.product_bookings:
        parts.append(pb.customer_external_notes or "")
        parts.append(pb.special_requests or "")
        parts.extend(note.body or "" for note in pb.notes)

    seen: set[str] = set()
    unique = []
    for part in (p.strip() for p in parts):
        if part and part not in seen:
            seen.add(part)
            unique.append(part)
    return "\n".join(unique).strip()


def parse_participant_names(raw: RawBooking) -> Optional[list[dict[str, str]]]:
    """Traveler names listed in the special requests, if the reseller sends them."""
    pb = raw.first_product_booking
    text = pb.special_requests if pb is not None else None
    if not text or len(text.strip()) <= 1:
        return None

    names = [
        {"first": first.strip().title(), "last": last.strip().title()}
        for _, first, last in TRAVELER_RE.findall(text)
    ]
    return names or None


def resolve_booking_channel(raw: RawBooking, default: str) -> str:
    """Label of the channel or reseller the booking came through."""
    for titled in (raw.channel, raw.seller):
        if titled is not None and titled.title:
            return titled.title.strip()

    if raw.affiliate_code:
        lowered = raw.affiliate_code.lower()
        for keyword, label in AFFILIATE_CHANNELS:
            if keyword in lowered:
                return label

    if raw.sales_channel:
        return raw.sales_channel.strip()
    return default


def _contact(raw: RawBooking) -> tuple[Optional[str], Optional[str], Optional[str]]:
    # customer wins over mainContact when both are present
    contact = raw.customer or raw.main_contact
    if contact is None:
        return None, None, None
    return (
        contact.full_name or None,
        contact.email or None,
        contact.phone_number or contact.phone or None,
    )


def _first_text(values: Iterable[Optional[str]]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


def normalize(raw: RawBooking, tz: ZoneInfo | str = "Europe/Rome", default_channel: str = "Bokun") -> NormalizedBooking:
    """
    Convert a channel booking into the canonical tour shape.

    Args:
        raw: Validated channel booking
        tz: Local time zone of the tours
        default_channel: Booking channel label when the booking names none

    Returns:
        The normalized booking

    Raises:
        NormalizationError: If the title, date or time cannot be determined
    """
    if isinstance(tz, str):
        tz = ZoneInfo(tz)

    pb = raw.first_product_booking
    title = _first_text([
        pb.product.title if pb is not None and pb.product else None,
        pb.product_title if pb is not None else None,
        raw.product_title,
    ])
    if not title:
        raise NormalizationError("title", "booking has no product title")

    tour_date, tour_time = resolve_schedule(raw, tz)

    fallback_pax = None
    if pb is not None:
        fallback_pax = pb.booking_fields.total_participants or pb.total_participants
    participants, adults, children, infants = count_participants(pb, fallback_pax or raw.total_participants)

    customer_name, customer_email, customer_phone = _contact(raw)

    product_id = None
    if pb is not None and pb.product is not None and pb.product.id is not None:
        product_id = str(pb.product.id)

    duration = pb.duration if pb is not None and pb.duration is not None else raw.duration

    cancelled = any(
        (status or "").upper() == "CANCELLED"
        for status in (pb.status if pb is not None else None, raw.status)
    )

    return NormalizedBooking(
        external_id=raw.external_id,
        confirmation_code=raw.confirmation_code,
        product_id=product_id,
        title=title,
        date=tour_date,
        time=tour_time,
        duration_minutes=duration,
        participants=participants,
        adults=adults,
        children=children,
        infants=infants,
        participant_names=parse_participant_names(raw),
        language=detect_language(raw, title),
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        special_requests=collect_special_requests(raw),
        booking_channel=resolve_booking_channel(raw, default_channel),
        cancelled=cancelled,
        expected_amount=raw.total_price,
        channel_payload=raw.payload(),
    )
