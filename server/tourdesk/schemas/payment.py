"""Payment-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..models.tour import PaymentStatus


class RecordPaymentRequest(BaseModel):
    """Request schema for recording a guide payment."""

    tour_id: int = Field(..., description="Tour the payment is for")
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, description="Amount paid")
    guide_id: Optional[int] = Field(None, description="Paying guide, defaults to the tour's guide")
    method: str = Field("cash", min_length=1, max_length=32, description="Payment method")
    reference: Optional[str] = Field(None, max_length=128, description="Receipt or transfer reference")
    notes: Optional[str] = None


class Payment(BaseModel):
    """Payment response schema."""

    id: int
    tour_id: int
    guide_id: Optional[int] = None
    amount: Decimal
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    paid_at: datetime

    class Config:
        from_attributes = True


class TourPaymentState(BaseModel):
    """Payment totals of a tour after a ledger change."""

    tour_id: int
    total_amount_paid: Decimal
    expected_amount: Optional[Decimal] = None
    payment_status: PaymentStatus


class PaymentRecorded(BaseModel):
    """Response schema for a recorded payment."""

    payment: Payment
    tour: TourPaymentState
