"""Typed views of the channel's booking payloads.

The channel sends loosely structured JSON. These models name the fields the
normalizer reads and keep everything else (``extra="allow"``), so the
verbatim payload can still be stored alongside the tour.
"""

from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

# Epoch milliseconds or an ISO-8601 string
Timestamp = Union[int, float, str]


class ChannelModel(BaseModel):
    """Base for channel payload models: camelCase aliases, unknown keys kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RawContact(ChannelModel):
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class RawTitled(ChannelModel):
    """Any nested object of which only the title matters (channel, seller, rate)."""

    title: Optional[str] = None


class RawProduct(ChannelModel):
    id: Optional[Union[int, str]] = None
    title: Optional[str] = None
    language: Optional[str] = None


class RawNote(ChannelModel):
    body: Optional[str] = None


class RawPriceCategoryBooking(ChannelModel):
    category: Optional[str] = None
    pricing_category: Optional[dict[str, Any]] = Field(None, alias="pricingCategory")
    quantity: int = 0

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def category_code(self) -> str:
        """Upper-cased ticket category, e.g. ``ADULT`` or ``INFANT``."""
        category = self.category
        if not category and self.pricing_category:
            category = (
                self.pricing_category.get("ticketCategory")
                or self.pricing_category.get("title")
            )
        return (category or "").strip().upper()


class RawProductBookingFields(ChannelModel):
    start_time_str: Optional[str] = Field(None, alias="startTimeStr")
    language: Optional[str] = None
    total_participants: Optional[int] = Field(None, alias="totalParticipants")
    price_category_bookings: list[RawPriceCategoryBooking] = Field(
        default_factory=list, alias="priceCategoryBookings"
    )


class RawProductBooking(ChannelModel):
    id: Optional[Union[int, str]] = None
    status: Optional[str] = None
    product: Optional[RawProduct] = None
    product_title: Optional[str] = Field(None, alias="productTitle")
    start_date_time: Optional[Timestamp] = Field(None, alias="startDateTime")
    start_time: Optional[Timestamp] = Field(None, alias="startTime")
    start_date: Optional[Timestamp] = Field(None, alias="startDate")
    duration: Optional[int] = None
    booking_fields: RawProductBookingFields = Field(default_factory=RawProductBookingFields, alias="fields")
    price_category_bookings: list[RawPriceCategoryBooking] = Field(
        default_factory=list, alias="priceCategoryBookings"
    )
    total_participants: Optional[int] = Field(None, alias="totalParticipants")
    notes: list[RawNote] = Field(default_factory=list)
    rate: Optional[RawTitled] = None
    customer_external_notes: Optional[str] = Field(None, alias="customerExternalNotes")
    special_requests: Optional[str] = Field(None, alias="specialRequests")

    @field_validator("booking_fields", mode="before")
    @classmethod
    def empty_fields(cls, v: Any) -> Any:
        # The channel sends [] instead of {} for a product booking without fields
        return {} if v in (None, []) else v

    @field_validator("notes", "price_category_bookings", mode="before")
    @classmethod
    def null_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def category_bookings(self) -> list[RawPriceCategoryBooking]:
        return self.booking_fields.price_category_bookings or self.price_category_bookings


class RawBooking(ChannelModel):
    """One booking as returned by the channel's booking search."""

    _raw: Optional[dict[str, Any]] = PrivateAttr(default=None)

    id: Union[int, str]
    confirmation_code: Optional[str] = Field(None, alias="confirmationCode")
    status: Optional[str] = None
    product_title: Optional[str] = Field(None, alias="productTitle")
    product_bookings: list[RawProductBooking] = Field(default_factory=list, alias="productBookings")
    customer: Optional[RawContact] = None
    main_contact: Optional[RawContact] = Field(None, alias="mainContact")
    channel: Optional[RawTitled] = None
    seller: Optional[RawTitled] = None
    affiliate_code: Optional[str] = Field(None, alias="affiliateCode")
    sales_channel: Optional[str] = Field(None, alias="salesChannel")
    start_time: Optional[Timestamp] = Field(None, alias="startTime")
    duration: Optional[int] = None
    language: Optional[str] = None
    total_participants: Optional[int] = Field(None, alias="totalParticipants")
    total_price: Optional[Decimal] = Field(None, alias="totalPrice")
    customer_external_notes: Optional[str] = Field(None, alias="customerExternalNotes")
    internal_notes: Optional[str] = Field(None, alias="internalNotes")

    @field_validator("product_bookings", mode="before")
    @classmethod
    def null_product_bookings(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def external_id(self) -> str:
        return str(self.id)

    @property
    def first_product_booking(self) -> Optional[RawProductBooking]:
        return self.product_bookings[0] if self.product_bookings else None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "RawBooking":
        """Validate a booking and remember the payload it came from."""
        booking = cls.model_validate(data)
        booking._raw = data
        return booking

    def payload(self) -> dict[str, Any]:
        """The booking as received, including fields not modelled here."""
        if self._raw is not None:
            return self._raw
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class BookingPage(BaseModel):
    """One page of booking-search results for one booking role."""

    role: str
    page: int
    total_hits: int
    items: list[dict[str, Any]]
