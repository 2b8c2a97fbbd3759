"""Tour service for dispatcher-side tour operations."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.guide import Guide
from ..models.tour import Tour
from .grouping_service import DEFAULT_MAX_PAX, GroupingService

logger = logging.getLogger(__name__)


class TourService:
    """Service for tour-related operations."""

    def __init__(self, db: AsyncSession, max_pax: int = DEFAULT_MAX_PAX):
        self.db = db
        self.max_pax = max_pax

    async def get_tour_by_id(self, tour_id: int) -> Optional[Tour]:
        """
        Get tour by ID.

        Args:
            tour_id: Tour ID to search for

        Returns:
            Tour if found, None otherwise
        """
        stmt = select(Tour).where(Tour.id == tour_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: int) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(tour_id)
        if not tour:
            logger.warning("Tour not found", extra={"tour_id": tour_id})
            raise NotFoundError(resource_type="tour", resource_id=str(tour_id))
        return tour

    async def list_tours(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        guide_id: Optional[int] = None,
        include_cancelled: bool = False,
    ) -> list[Tour]:
        """List tours ordered by date, time and id."""
        stmt = select(Tour)
        if start_date is not None:
            stmt = stmt.where(Tour.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Tour.date <= end_date)
        if guide_id is not None:
            stmt = stmt.where(Tour.guide_id == guide_id)
        if not include_cancelled:
            stmt = stmt.where(Tour.cancelled.is_(False), Tour.cancelled_locally.is_(False))
        stmt = stmt.order_by(Tour.date, Tour.time, Tour.id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def list_unassigned(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> list[Tour]:
        """Live tours still waiting for a guide."""
        stmt = select(Tour).where(Tour.needs_guide_assignment.is_(True),
            Tour.cancelled.is_(False),
            Tour.cancelled_locally.is_(False),
        )
        if start_date is not None:
            stmt = stmt.where(Tour.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Tour.date <= end_date)
        result = await self.db.execute(
            stmt.order_by(Tour.date, Tour.time, Tour.id).execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def assign_guide(self, tour_id: int, guide_id: Optional[int]) -> Tour:
        """
        Assign a guide to a single tour, or clear it.

        Overrides the group's guide for this tour only; the group record
        then adopts the guide of its first guided member.

        Raises:
            NotFoundError: If the tour or the guide does not exist
        """
        tour = await self.get_tour_by_id_or_raise(tour_id)
        if guide_id is not None and await self.db.get(Guide, guide_id) is None:
            raise NotFoundError(resource_type="guide", resource_id=str(guide_id))

        tour.guide_id = guide_id
        tour.needs_guide_assignment = guide_id is None
        await self.db.flush()

        if tour.group_id is not None:
            grouping = GroupingService(self.db, max_pax=self.max_pax)
            group = await grouping.get_group_or_raise(tour.group_id)
            await grouping.sync_group_guide_from_tours(group)

        await self.db.commit()
        await self.db.refresh(tour)

        logger.info("Tour guide updated", extra={"tour_id": tour_id, "guide_id": guide_id})
        return tour

    async def set_cancelled(self, tour_id: int, cancelled: bool = True) -> Tour:
        """
        Cancel or reinstate a tour locally and recompute its group.

        Only the dispatcher-owned flag changes, so a later sync that still
        reports the booking as confirmed leaves the cancellation in place.

        Raises:
            NotFoundError: If the tour does not exist
        """
        tour = await self.get_tour_by_id_or_raise(tour_id)
        tour.cancelled_locally = cancelled
        await self.db.commit()

        if tour.group_id is not None:
            await GroupingService(self.db, max_pax=self.max_pax).recalculate_group_pax(tour.group_id)

        await self.db.refresh(tour)
        logger.info("Tour cancellation updated", extra={"tour_id": tour_id, "cancelled": cancelled})
        return tour

    async def update_notes(self, tour_id: int, notes: Optional[str]) -> Tour:
        """
        Replace the dispatcher notes on a tour.

        Raises:
            NotFoundError: If the tour does not exist
        """
        tour = await self.get_tour_by_id_or_raise(tour_id)
        tour.notes = notes
        await self.db.commit()
        await self.db.refresh(tour)
        return tour
