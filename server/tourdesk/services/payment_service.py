"""Payment ledger service."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, ValidationError
from ..models.payment import Payment
from ..models.tour import PaymentStatus, Tour

logger = logging.getLogger(__name__)


def derive_payment_status(total_paid: Decimal, expected: Optional[Decimal]) -> PaymentStatus:
    """
    Payment status of a tour from what was paid and what was expected.

    Nothing paid is unpaid. Without an expected amount any payment counts
    as paid.
    """
    if total_paid <= 0:
        return PaymentStatus.UNPAID
    if expected is None:
        return PaymentStatus.PAID
    if total_paid < expected:
        return PaymentStatus.PARTIAL
    if total_paid == expected:
        return PaymentStatus.PAID
    return PaymentStatus.OVERPAID


class PaymentService:
    """Records guide payments and keeps tour payment totals current."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_tour(self, tour_id: int) -> Tour:
        tour = (
            await self.db.execute(
                select(Tour).where(Tour.id == tour_id).execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if tour is None:
            raise NotFoundError(resource_type="tour", resource_id=str(tour_id))
        return tour

    async def _refresh_totals(self, tour: Tour) -> None:
        total = (
            await self.db.execute(
                select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.tour_id == tour.id)
            )
        ).scalar_one()
        tour.total_amount_paid = Decimal(str(total))
        tour.payment_status = derive_payment_status(tour.total_amount_paid, tour.expected_amount).value

    async def list_payments(self, tour_id: int) -> list[Payment]:
        """Payments recorded for a tour, oldest first."""
        await self._get_tour(tour_id)
        result = await self.db.execute(
            select(Payment).where(Payment.tour_id == tour_id).order_by(Payment.paid_at, Payment.id)
        )
        return list(result.scalars())

    async def record_payment(
        self,
        tour_id: int,
        amount: Decimal,
        guide_id: Optional[int] = None,
        method: str = "cash",
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> tuple[Payment, Tour]:
        """
        Record a payment against a tour.

        Returns:
            The payment and the tour with updated totals

        Raises:
            ValidationError: If amount is not positive
            NotFoundError: If the tour does not exist
        """
        if amount <= 0:
            raise ValidationError(detail="Payment amount must be positive")

        tour = await self._get_tour(tour_id)
        payment = Payment(
            tour_id=tour_id,
            guide_id=guide_id if guide_id is not None else tour.guide_id,
            amount=amount,
            method=method,
            reference=reference,
            notes=notes,
        )
        try:
            self.db.add(payment)
            await self.db.flush()
            await self._refresh_totals(tour)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(payment)
        await self.db.refresh(tour)
        logger.info(
            "Payment recorded",
            extra={
                "payment_id": payment.id,
                "tour_id": tour_id,
                "amount": str(amount),
                "payment_status": tour.payment_status,
            }
        )
        return payment, tour

    async def delete_payment(self, payment_id: int) -> Tour:
        """
        Delete a payment and recompute its tour's totals.

        Returns:
            The tour with updated totals

        Raises:
            NotFoundError: If the payment does not exist
        """
        payment = await self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(resource_type="payment", resource_id=str(payment_id))

        tour = await self._get_tour(payment.tour_id)
        try:
            await self.db.delete(payment)
            await self.db.flush()
            await self._refresh_totals(tour)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(tour)
        logger.info(
            "Payment deleted",
            extra={"payment_id": payment_id, "tour_id": tour.id, "payment_status": tour.payment_status}
        )
        return tour
