"""Tour grouping: clustering same-slot tours into capacity-bounded groups."""

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Callable, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import GroupCapacityExceededError, NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..models.guide import Guide
from ..models.tour import Tour
from ..models.tour_group import TourGroup

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAX = 9

T = TypeVar("T")


class GroupingInvariantViolation(Exception):
    """A persisted group has one member or none."""

    def __init__(self, group_id: int, member_count: int):
        self.group_id = group_id
        self.member_count = member_count
        super().__init__(f"Group {group_id} has {member_count} member(s)")


def normalize_title(title: Optional[str]) -> str:
    """Trim, collapse whitespace and case-fold a tour title."""
    return " ".join((title or "").split()).casefold()


def normalize_time(value: time | str) -> str:
    """Render a start time as ``HH:MM``, dropping seconds."""
    if isinstance(value, time):
        return value.strftime("%H:%M")
    hours, _, rest = value.strip().partition(":")
    return f"{int(hours):02d}:{rest[:2] or '00'}"


def split_by_max_pax(items: Sequence[T], max_pax: int, pax: Callable[[T], int]) -> list[list[T]]:
    """
    Greedily split items, in order, into runs whose pax stay within max_pax.

    A run is closed when adding the next item would exceed ``max_pax`` and
    the run is not empty. An item larger than ``max_pax`` on its own still
    gets a run of its own, so nothing is dropped and no run is empty.
    """
    runs: list[list[T]] = []
    current: list[T] = []
    current_pax = 0

    for item in items:
        item_pax = pax(item)
        if current and current_pax + item_pax > max_pax:
            runs.append(current)
            current, current_pax = [], 0
        current.append(item)
        current_pax += item_pax

    if current:
        runs.append(current)
    return runs


@dataclass
class GroupingResult:
    """A group created by auto-grouping."""
    group_id: int
    display_name: str
    group_date: date
    group_time: time
    total_pax: int
    tour_ids: list[int] = field(default_factory=list)


class GroupingService:
    """Service for tour group operations."""

    def __init__(self, db: AsyncSession, max_pax: int = DEFAULT_MAX_PAX):
        self.db = db
        self.max_pax = max_pax

    # Lookups

    async def get_group_or_raise(self, group_id: int) -> TourGroup:
        """
        Get group by ID or raise NotFoundError.

        Raises:
            NotFoundError: If group not found
        """
        group = (
            await self.db.execute(
                select(TourGroup)
                .where(TourGroup.id == group_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if group is None:
            logger.warning("Tour group not found", extra={"group_id": group_id})
            raise NotFoundError(resource_type="tour group", resource_id=str(group_id))
        return group

    async def _get_tour_or_raise(self, tour_id: int) -> Tour:
        tour = (
            await self.db.execute(
                select(Tour).where(Tour.id == tour_id).execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if tour is None:
            raise NotFoundError(resource_type="tour", resource_id=str(tour_id))
        return tour

    async def get_members(self, group_id: int) -> list[Tour]:
        """Tours in a group, in membership order (tour id ascending)."""
        result = await self.db.execute(
            select(Tour)
            .where(Tour.group_id == group_id)
            .order_by(Tour.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def get_group(self, group_id: int) -> tuple[TourGroup, list[Tour]]:
        """Get a group with its member tours."""
        group = await self.get_group_or_raise(group_id)
        return group, await self.get_members(group_id)

    async def list_groups(
        self,
        on_date: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        guide_id: Optional[int] = None,
    ) -> list[tuple[TourGroup, list[Tour]]]:
        """
        List groups with their member tours, ordered by slot.

        Args:
            on_date: Only groups on this date
            start_date: Only groups on or after this date
            end_date: Only groups on or before this date
            guide_id: Only groups assigned to this guide
        """
        stmt = select(TourGroup).execution_options(populate_existing=True)
        if on_date is not None:
            stmt = stmt.where(TourGroup.group_date == on_date)
        if start_date is not None:
            stmt = stmt.where(TourGroup.group_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(TourGroup.group_date <= end_date)
        if guide_id is not None:
            stmt = stmt.where(TourGroup.guide_id == guide_id)
        stmt = stmt.order_by(TourGroup.group_date, TourGroup.group_time, TourGroup.id)

        groups = list((await self.db.execute(stmt)).scalars())
        if not groups:
            return []

        members: dict[int, list[Tour]] = {group.id: [] for group in groups}
        tours = await self.db.execute(
            select(Tour)
            .where(Tour.group_id.in_(members.keys()))
            .order_by(Tour.id)
            .execution_options(populate_existing=True)
        )
        for tour in tours.scalars():
            members[tour.group_id].append(tour)
        return [(group, members[group.id]) for group in groups]

    # Internal steps; callers commit

    async def _assign(self, tour_ids: Sequence[int], group_id: Optional[int]) -> None:
        await self.db.execute(
            update(Tour)
            .where(Tour.id.in_(tour_ids))
            .values(group_id=group_id)
            .execution_options(synchronize_session="fetch")
        )

    async def _create_group(self, tours: Sequence[Tour], manual: bool, display_name: Optional[str] = None,
                            notes: Optional[str] = None) -> TourGroup:
        first = tours[0]
        group = TourGroup(
            group_date=first.date,
            group_time=first.time,
            display_name=display_name or first.title,
            notes=notes,
            max_pax=self.max_pax,
            total_pax=sum(tour.live_pax for tour in tours),
            is_manual_merge=manual,
        )
        self.db.add(group)
        await self.db.flush()
        await self._assign([tour.id for tour in tours], group.id)
        await self.sync_group_guide_from_tours(group)
        metrics_collector.record_group_created(manual)
        return group

    async def _dissolve(self, group_id: int, reason: str) -> int:
        """Ungroup every member and delete the group; returns members released."""
        member_ids = list(
            (await self.db.execute(select(Tour.id).where(Tour.group_id == group_id))).scalars()
        )
        await self._assign(member_ids, None)
        await self.db.execute(
            delete(TourGroup)
            .where(TourGroup.id == group_id)
            .execution_options(synchronize_session="fetch")
        )
        metrics_collector.record_group_dissolved(reason)
        logger.info(
            "Tour group dissolved",
            extra={"group_id": group_id, "reason": reason, "tours_released": len(member_ids)}
        )
        return len(member_ids)

    @staticmethod
    def check_membership(group_id: int, members: Sequence[Tour]) -> None:
        """
        Raises:
            GroupingInvariantViolation: If fewer than two tours remain
        """
        if len(members) <= 1:
            raise GroupingInvariantViolation(group_id, len(members))

    async def _recalculate(self, group_id: int) -> Optional[TourGroup]:
        group = await self.get_group_or_raise(group_id)
        members = await self.get_members(group_id)
        try:
            self.check_membership(group_id, members)
        except GroupingInvariantViolation as e:
            logger.warning(
                "Group below two members, dissolving",
                extra={"group_id": e.group_id, "member_count": e.member_count}
            )
            await self._dissolve(group_id, reason="invariant")
            return None

        group.total_pax = sum(tour.live_pax for tour in members)
        await self.db.flush()
        return group

    async def _remove_tour(self, tour: Tour) -> Optional[TourGroup]:
        """Take a tour out of its group, dissolving the group if one member is left."""
        group = await self.get_group_or_raise(tour.group_id)
        await self._assign([tour.id], None)

        remaining = await self.get_members(group.id)
        if len(remaining) <= 1:
            await self._dissolve(group.id, reason="unmerge")
            return None

        group.total_pax = sum(member.live_pax for member in remaining)
        await self.db.flush()
        return group

    async def _cleanup_orphans(self) -> int:
        """Dissolve groups that are left with fewer than two members."""
        member_count = (
            select(Tour.group_id, func.count(Tour.id).label("members"))
            .where(Tour.group_id.is_not(None))
            .group_by(Tour.group_id)
            .subquery()
        )
        orphans = await self.db.execute(
            select(TourGroup.id)
            .outerjoin(member_count, member_count.c.group_id == TourGroup.id)
            .where(func.coalesce(member_count.c.members, 0) <= 1)
        )
        orphan_ids = list(orphans.scalars())
        for group_id in orphan_ids:
            await self._dissolve(group_id, reason="orphan")
        return len(orphan_ids)

    # Public operations

    async def sync_group_guide_from_tours(self, group: TourGroup) -> None:
        """Adopt the guide of the first member (in id order) that has one, or none."""
        row = (
            await self.db.execute(
                select(Tour.guide_id, Guide.name)
                .outerjoin(Guide, Guide.id == Tour.guide_id)
                .where(Tour.group_id == group.id, Tour.guide_id.is_not(None))
                .order_by(Tour.id)
                .limit(1)
            )
        ).first()
        if row is None:
            group.guide_id, group.guide_name = None, None
        else:
            group.guide_id, group.guide_name = row.guide_id, row.name
        await self.db.flush()

    async def auto_group(self, start_date: date, end_date: date, force: bool = False) -> list[GroupingResult]:
        """
        Group ungrouped tours that share a date, start time and title.

        Tours are clustered by (date, HH:MM, normalized title) and each
        cluster is split greedily by ``max_pax``. Runs of two or more tours
        become groups; single tours stay ungrouped. Tours in manual groups
        are never touched.

        Args:
            start_date: First tour date, inclusive
            end_date: Last tour date, inclusive
            force: Rebuild existing automatic groups in the range as well

        Returns:
            The groups created

        Raises:
            ValidationError: If start_date is after end_date
        """
        if start_date > end_date:
            raise ValidationError(detail="start_date must not be after end_date")

        if force:
            rebuilt = await self.db.execute(
                select(TourGroup.id).where(
                    TourGroup.is_manual_merge.is_(False),
                    TourGroup.group_date >= start_date,
                    TourGroup.group_date <= end_date,
                )
            )
            for group_id in list(rebuilt.scalars()):
                await self._dissolve(group_id, reason="rebuild")

        eligible = await self.db.execute(
            select(Tour)
            .where(
                Tour.date >= start_date,
                Tour.date <= end_date,
                Tour.cancelled.is_(False),
                Tour.cancelled_locally.is_(False),
                Tour.group_id.is_(None),
            )
            .order_by(Tour.date, Tour.time, Tour.id)
            .execution_options(populate_existing=True)
        )

        clusters: dict[tuple[date, str, str], list[Tour]] = {}
        for tour in eligible.scalars():
            key = (tour.date, normalize_time(tour.time), normalize_title(tour.title))
            clusters.setdefault(key, []).append(tour)

        created: list[GroupingResult] = []
        for tours in clusters.values():
            if len(tours) < 2:
                continue
            for run in split_by_max_pax(tours, self.max_pax, pax=lambda tour: tour.live_pax):
                if len(run) < 2:
                    continue
                group = await self._create_group(run, manual=False)
                created.append(
                    GroupingResult(
                        group_id=group.id,
                        display_name=group.display_name,
                        group_date=group.group_date,
                        group_time=group.group_time,
                        total_pax=group.total_pax,
                        tour_ids=[tour.id for tour in run],
                    )
                )

        orphans = await self._cleanup_orphans()
        await self.db.commit()

        logger.info(
            "Auto-grouping completed",
            extra={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "force": force,
                "groups_created": len(created),
                "tours_grouped": sum(len(result.tour_ids) for result in created),
                "orphans_removed": orphans,
            }
        )
        return created

    async def manual_merge(
        self,
        tour_ids: Sequence[int],
        display_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TourGroup:
        """
        Merge the given tours into a new manual group.

        The tours leave their current groups first. The group takes its slot
        and default name from the first tour listed.

        Raises:
            ValidationError: If fewer than two distinct tours are given
            NotFoundError: If a tour does not exist
            GroupCapacityExceededError: If live participants exceed max_pax
        """
        ordered_ids = list(dict.fromkeys(tour_ids))
        if len(ordered_ids) < 2:
            raise ValidationError(detail="At least 2 tours are required to merge")

        result = await self.db.execute(
            select(Tour).where(Tour.id.in_(ordered_ids)).execution_options(populate_existing=True)
        )
        by_id = {tour.id: tour for tour in result.scalars()}
        missing = [tour_id for tour_id in ordered_ids if tour_id not in by_id]
        if missing:
            raise NotFoundError(
                resource_type="tour",
                resource_id=",".join(str(tour_id) for tour_id in missing),
            )
        tours = [by_id[tour_id] for tour_id in ordered_ids]

        total_pax = sum(tour.live_pax for tour in tours)
        if total_pax > self.max_pax:
            raise GroupCapacityExceededError(total_pax=total_pax, max_pax=self.max_pax)

        try:
            for tour in tours:
                if tour.group_id is not None:
                    await self._remove_tour(tour)
            group = await self._create_group(tours, manual=True, display_name=display_name, notes=notes)
            await self.db.commit()
            await self.db.refresh(group)
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Tours merged manually",
            extra={"group_id": group.id, "tour_ids": ordered_ids, "total_pax": group.total_pax}
        )
        return group

    async def unmerge(self, tour_id: int) -> Optional[TourGroup]:
        """
        Remove one tour from its group.

        Returns:
            The group if it survives, None if it was dissolved

        Raises:
            NotFoundError: If the tour does not exist
            ValidationError: If the tour is not in a group
        """
        tour = await self._get_tour_or_raise(tour_id)
        if tour.group_id is None:
            raise ValidationError(detail=f"Tour {tour_id} is not in a group")

        group_id = tour.group_id
        try:
            group = await self._remove_tour(tour)
            await self.db.commit()
            if group is not None:
                await self.db.refresh(group)
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Tour removed from group",
            extra={"tour_id": tour_id, "group_id": group_id, "dissolved": group is None}
        )
        return group

    async def set_group_guide(self, group_id: int, guide_id: Optional[int]) -> TourGroup:
        """
        Assign a guide to a group and every tour in it, or clear it.

        Raises:
            NotFoundError: If the group or the guide does not exist
        """
        group = await self.get_group_or_raise(group_id)
        await self._apply_guide(group, guide_id)
        await self.db.commit()
        await self.db.refresh(group)
        return group

    async def _apply_guide(self, group: TourGroup, guide_id: Optional[int]) -> None:
        guide_name = None
        if guide_id is not None:
            guide = await self.db.get(Guide, guide_id)
            if guide is None:
                raise NotFoundError(resource_type="guide", resource_id=str(guide_id))
            guide_name = guide.name

        group.guide_id = guide_id
        group.guide_name = guide_name
        await self.db.execute(
            update(Tour)
            .where(Tour.group_id == group.id)
            .values(guide_id=guide_id, needs_guide_assignment=guide_id is None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.flush()
        logger.info(
            "Group guide updated",
            extra={"group_id": group.id, "guide_id": guide_id}
        )

    async def recalculate_group_pax(self, group_id: int) -> Optional[TourGroup]:
        """
        Recompute total_pax from the non-cancelled members.

        A group found with fewer than two members is dissolved instead.

        Returns:
            The group, or None if it was dissolved
        """
        group = await self._recalculate(group_id)
        await self.db.commit()
        if group is not None:
            await self.db.refresh(group)
        return group

    async def update_group(
        self,
        group_id: int,
        display_name: Optional[str] = None,
        notes: Optional[str] = None,
        max_pax: Optional[int] = None,
        guide_id: Optional[int] = None,
        set_guide: bool = False,
    ) -> TourGroup:
        """
        Update group attributes.

        Args:
            group_id: Group to update
            display_name: New display name
            notes: New notes
            max_pax: New capacity, at least 1
            guide_id: Guide to assign (with set_guide; None clears it)
            set_guide: Whether guide_id should be applied

        Raises:
            NotFoundError: If the group or the guide does not exist
            ValidationError: If nothing is to be updated or max_pax < 1
        """
        if display_name is None and notes is None and max_pax is None and not set_guide:
            raise ValidationError(detail="No fields to update")
        if max_pax is not None and max_pax < 1:
            raise ValidationError(detail="max_pax must be at least 1")

        group = await self.get_group_or_raise(group_id)
        try:
            if display_name is not None:
                group.display_name = display_name
            if notes is not None:
                group.notes = notes
            if max_pax is not None:
                group.max_pax = max_pax
            if set_guide:
                await self._apply_guide(group, guide_id)
            await self.db.commit()
            await self.db.refresh(group)
        except Exception:
            await self.db.rollback()
            raise
        return group

    async def dissolve_group(self, group_id: int) -> int:
        """
        Dissolve a group, releasing its tours.

        Returns:
            Number of tours released

        Raises:
            NotFoundError: If the group does not exist
        """
        await self.get_group_or_raise(group_id)
        released = await self._dissolve(group_id, reason="manual")
        await self.db.commit()
        return released

    async def release_rescheduled(self, tour_ids: Sequence[int]) -> int:
        """
        Take rescheduled tours out of automatic groups whose slot they left.

        Manual groups keep their members. Returns the number of tours released.
        """
        if not tour_ids:
            return 0

        rows = await self.db.execute(
            select(Tour, TourGroup)
            .join(TourGroup, TourGroup.id == Tour.group_id)
            .where(Tour.id.in_(tour_ids), TourGroup.is_manual_merge.is_(False))
            .execution_options(populate_existing=True)
        )
        released = 0
        for tour, group in rows.all():
            if tour.group_id is None:
                # released when an earlier member dissolved the group
                continue
            same_slot = (
                tour.date == group.group_date
                and normalize_time(tour.time) == normalize_time(group.group_time)
            )
            if same_slot:
                continue
            await self._remove_tour(tour)
            released += 1
            logger.info(
                "Rescheduled tour released from group",
                extra={"tour_id": tour.id, "group_id": group.id}
            )

        await self.db.commit()
        return released
