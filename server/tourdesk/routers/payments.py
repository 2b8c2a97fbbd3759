"""Payment router for the guide payment ledger."""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db
from ..models.tour import Tour as TourModel
from ..schemas.payment import Payment, PaymentRecorded, RecordPaymentRequest, TourPaymentState
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])

DB_DEPENDENCY = Depends(get_db)


def _payment_state(tour: TourModel) -> TourPaymentState:
    return TourPaymentState(
        tour_id=tour.id,
        total_amount_paid=tour.total_amount_paid,
        expected_amount=tour.expected_amount,
        payment_status=tour.payment_status,
    )


@router.post("", response_model=PaymentRecorded, status_code=201)
async def record_payment(request: RecordPaymentRequest, db: AsyncSession = DB_DEPENDENCY) -> PaymentRecorded:
    """Record a payment and update the tour's payment status."""
    payment, tour = await PaymentService(db).record_payment(
        tour_id=request.tour_id,
        amount=request.amount,
        guide_id=request.guide_id,
        method=request.method,
        reference=request.reference,
        notes=request.notes,
    )
    return PaymentRecorded(payment=Payment.model_validate(payment), tour=_payment_state(tour))


@router.get("/tour/{tour_id}", response_model=List[Payment])
async def list_payments(tour_id: int, db: AsyncSession = DB_DEPENDENCY) -> List[Payment]:
    """Payments recorded for a tour."""
    return [Payment.model_validate(payment) for payment in await PaymentService(db).list_payments(tour_id)]


@router.delete("/{payment_id}", response_model=TourPaymentState)
async def delete_payment(payment_id: int, db: AsyncSession = DB_DEPENDENCY) -> TourPaymentState:
    """Delete a payment and recompute the tour's payment status."""
    tour = await PaymentService(db).delete_payment(payment_id)
    return _payment_state(tour)
