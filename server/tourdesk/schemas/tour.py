"""Tour-related Pydantic schemas."""

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.tour import ExternalSource, PaymentStatus


class ParticipantName(BaseModel):
    """Traveler name parsed from the booking."""

    first: str
    last: str


class Tour(BaseModel):
    """Tour response schema."""

    id: int = Field(..., description="Unique tour ID")
    external_id: Optional[str] = Field(None, description="Channel booking ID")
    confirmation_code: Optional[str] = Field(None, description="Channel confirmation code")
    product_id: Optional[str] = Field(None, description="Channel product ID")
    title: str = Field(..., description="Tour title")
    date: dt.date = Field(..., description="Tour date (local)")
    time: dt.time = Field(..., description="Start time (local)")
    duration_minutes: Optional[int] = None
    participants: int = Field(..., ge=0, description="Participants excluding infants")
    adults: int = 0
    children: int = 0
    infants: int = 0
    participant_names: Optional[List[ParticipantName]] = None
    language: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    special_requests: Optional[str] = None
    booking_channel: Optional[str] = None
    notes: Optional[str] = None
    guide_id: Optional[int] = None
    group_id: Optional[int] = None
    needs_guide_assignment: bool
    payment_status: PaymentStatus
    total_amount_paid: Decimal
    expected_amount: Optional[Decimal] = None
    external_source: ExternalSource
    last_synced: Optional[dt.datetime] = None
    cancelled: bool = Field(..., description="Cancelled on the channel")
    cancelled_locally: bool = Field(..., description="Cancelled by a dispatcher")
    is_cancelled: bool
    rescheduled: bool
    original_date: Optional[dt.date] = None
    original_time: Optional[dt.time] = None
    rescheduled_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class AssignGuideRequest(BaseModel):
    """Request schema for assigning a guide; null clears it."""

    guide_id: Optional[int] = Field(..., description="Guide to assign, or null to clear")


class CancelTourRequest(BaseModel):
    """Request schema for cancelling or reinstating a tour."""

    cancelled: bool = Field(True, description="False reinstates the tour")


class UpdateNotesRequest(BaseModel):
    """Request schema for dispatcher notes."""

    notes: Optional[str] = Field(None, max_length=5000, description="Free-form notes")
