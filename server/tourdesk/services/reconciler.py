"""Upsert of normalized channel bookings into the tours table."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..channel.normalizer import NormalizedBooking
from ..core.observability import metrics_collector
from ..models.tour import ExternalSource, PaymentStatus, Tour

logger = logging.getLogger(__name__)

# Fields the channel owns. Everything else on a tour (guide, group, payment,
# notes) belongs to the dispatcher and is never written by a sync.
CHANNEL_FIELDS = (
    "confirmation_code",
    "product_id",
    "title",
    "date",
    "time",
    "duration_minutes",
    "participants",
    "adults",
    "children",
    "infants",
    "participant_names",
    "language",
    "customer_name",
    "customer_email",
    "customer_phone",
    "special_requests",
    "booking_channel",
    "cancelled",
    "channel_payload",
)


class ReconcileOutcome(str, Enum):
    """What reconciling one booking did to the tours table."""
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class ReconcileResult:
    """Outcome of reconciling one booking."""
    outcome: ReconcileOutcome
    tour_id: int
    rescheduled: bool = False
    group_id: Optional[int] = None


class ReconciliationConflict(Exception):
    """The booking's identifiers point at inconsistent local rows."""

    def __init__(self, external_id: str, confirmation_code: Optional[str], message: str):
        self.external_id = external_id
        self.confirmation_code = confirmation_code
        self.message = message
        super().__init__(message)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """
    Matches normalized bookings against tours and inserts or updates them.

    Each call commits its own work, so a failure affects one booking only.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self.clock = clock

    async def find_match(self, booking: NormalizedBooking) -> Optional[Tour]:
        """
        Find the tour a booking refers to.

        Matches on external id first, then on confirmation code.

        Raises:
            ReconciliationConflict: If the two identifiers select different tours
        """
        by_external = (
            await self.db.execute(
                select(Tour)
                .where(Tour.external_id == booking.external_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        by_code: list[Tour] = []
        if booking.confirmation_code:
            by_code = list(
                (
                    await self.db.execute(
                        select(Tour)
                        .where(Tour.confirmation_code == booking.confirmation_code)
                        .execution_options(populate_existing=True)
                    )
                ).scalars()
            )

        if by_external is not None:
            others = [tour for tour in by_code if tour.id != by_external.id]
            if others:
                raise ReconciliationConflict(
                    booking.external_id,
                    booking.confirmation_code,
                    f"external id matches tour {by_external.id} but confirmation code "
                    f"matches tour {others[0].id}",
                )
            return by_external

        if len(by_code) > 1:
            raise ReconciliationConflict(
                booking.external_id,
                booking.confirmation_code,
                f"confirmation code matches {len(by_code)} tours",
            )
        if by_code:
            candidate = by_code[0]
            if candidate.external_id is not None and candidate.external_id != booking.external_id:
                raise ReconciliationConflict(
                    booking.external_id,
                    booking.confirmation_code,
                    f"confirmation code matches tour {candidate.id} which belongs to "
                    f"external booking {candidate.external_id}",
                )
            return candidate

        return None

    def _channel_values(self, booking: NormalizedBooking) -> dict[str, Any]:
        return {name: getattr(booking, name) for name in CHANNEL_FIELDS}

    async def reconcile(self, booking: NormalizedBooking) -> ReconcileResult:
        """
        Insert or update the tour for a booking.

        Args:
            booking: Normalized channel booking

        Returns:
            Outcome, tour id, whether the tour moved to another slot, and the
            group whose totals may need recomputing

        Raises:
            ReconciliationConflict: If identifiers are inconsistent or a
                concurrent insert claimed the external id
        """
        try:
            tour = await self.find_match(booking)
            if tour is None:
                result = await self._insert(booking)
            else:
                result = await self._update(tour, booking)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ReconciliationConflict(
                booking.external_id,
                booking.confirmation_code,
                f"integrity error while saving booking: {e.orig}",
            ) from e
        except Exception:
            await self.db.rollback()
            raise

        metrics_collector.record_reconcile(result.outcome.value)
        logger.debug(
            "Booking reconciled",
            extra={
                "external_id": booking.external_id,
                "tour_id": result.tour_id,
                "outcome": result.outcome.value,
                "rescheduled": result.rescheduled,
            }
        )
        return result

    async def _insert(self, booking: NormalizedBooking) -> ReconcileResult:
        tour = Tour(
            external_id=booking.external_id,
            **self._channel_values(booking),
            expected_amount=booking.expected_amount,
            external_source=ExternalSource.CHANNEL.value,
            needs_guide_assignment=True,
            payment_status=PaymentStatus.UNPAID.value,
            last_synced=self.clock(),
        )
        self.db.add(tour)
        await self.db.flush()
        return ReconcileResult(outcome=ReconcileOutcome.INSERTED, tour_id=tour.id)

    async def _update(self, tour: Tour, booking: NormalizedBooking) -> ReconcileResult:
        changes = {
            name: value
            for name, value in self._channel_values(booking).items()
            if getattr(tour, name) != value
        }
        if tour.external_id is None:
            changes["external_id"] = booking.external_id
            logger.info(
                "Backfilling external id on tour matched by confirmation code",
                extra={"tour_id": tour.id, "external_id": booking.external_id}
            )

        if not changes:
            return ReconcileResult(outcome=ReconcileOutcome.UNCHANGED, tour_id=tour.id)

        now = self.clock()
        rescheduled = "date" in changes or "time" in changes
        if rescheduled:
            changes["rescheduled"] = True
            changes["rescheduled_at"] = now
            if tour.original_date is None:
                changes["original_date"] = tour.date
                changes["original_time"] = tour.time
            logger.info(
                "Tour rescheduled by channel",
                extra={
                    "tour_id": tour.id,
                    "from": f"{tour.date} {tour.time}",
                    "to": f"{booking.date} {booking.time}",
                }
            )
        changes["last_synced"] = now

        affects_group = rescheduled or "participants" in changes or "cancelled" in changes
        group_id = tour.group_id if affects_group else None

        await self.db.execute(
            update(Tour)
            .where(Tour.id == tour.id)
            .values(**changes)
            .execution_options(synchronize_session="fetch")
        )
        return ReconcileResult(
            outcome=ReconcileOutcome.UPDATED,
            tour_id=tour.id,
            rescheduled=rescheduled,
            group_id=group_id,
        )
