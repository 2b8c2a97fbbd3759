"""Tour group router for grouping and guide assignment operations."""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..core.dependencies import get_db, get_settings, get_sync_lock
from ..core.exceptions import InternalServerError, ProblemDetailsException, ValidationError
from ..models.tour import Tour as TourModel
from ..models.tour_group import TourGroup as TourGroupModel
from ..schemas.tour import Tour
from ..schemas.tour_group import (
    AutoGroupRequest,
    AutoGroupResponse,
    DissolveResponse,
    GroupingResult,
    ManualMergeRequest,
    SetGroupGuideRequest,
    TourGroup,
    TourGroupDetail,
    UnmergeRequest,
    UnmergeResponse,
    UpdateGroupRequest,
)
from ..services.grouping_service import GroupingService
from ..services.sync_service import SyncLock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tour-groups", tags=["tour-groups"])

DB_DEPENDENCY = Depends(get_db)
SETTINGS_DEPENDENCY = Depends(get_settings)
SYNC_LOCK_DEPENDENCY = Depends(get_sync_lock)


def _local_today(app_settings: Settings) -> date:
    return datetime.now(ZoneInfo(app_settings.channel_timezone)).date()


def _detail(group: TourGroupModel, members: Sequence[TourModel]) -> TourGroupDetail:
    """Convert a group and its members to the detail schema."""
    return TourGroupDetail(
        **TourGroup.model_validate(group).model_dump(),
        tours=[Tour.model_validate(tour) for tour in members],
    )


@router.post("/auto-group", response_model=AutoGroupResponse)
async def auto_group(
    request: Optional[AutoGroupRequest] = None,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
    lock: SyncLock = SYNC_LOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Group same-slot tours in a date range.

    Holds the sync lock so grouping never interleaves with a running sync.
    """
    request = request or AutoGroupRequest()
    start_date = request.start_date or _local_today(app_settings)
    end_date = request.end_date or start_date + timedelta(days=app_settings.group_upcoming_days)
    if start_date > end_date:
        raise ValidationError(detail="start_date must not be after end_date")

    grouping = GroupingService(db, max_pax=app_settings.group_max_pax)
    try:
        async with lock.hold(app_settings.tenant_key, app_settings.sync_lock_timeout_seconds):
            results = await grouping.auto_group(start_date, end_date, force=request.force)

        response_data = AutoGroupResponse(
            groups_created=len(results),
            tours_grouped=sum(len(result.tour_ids) for result in results),
            groups=[GroupingResult.model_validate(result) for result in results],
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in auto-grouping",
            extra={"start_date": str(start_date), "end_date": str(end_date), "error": str(e)},
            exc_info=True
        )
        raise InternalServerError() from e


@router.post("/manual-merge", response_model=TourGroupDetail)
async def manual_merge(
    request: ManualMergeRequest,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> JSONResponse:
    """Merge the given tours into a new manual group."""
    grouping = GroupingService(db, max_pax=app_settings.group_max_pax)
    try:
        group = await grouping.manual_merge(request.tour_ids, request.display_name, request.notes)
        members = await grouping.get_members(group.id)
        return JSONResponse(status_code=200, content=_detail(group, members).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in manual merge",
            extra={"tour_ids": request.tour_ids, "error": str(e)},
            exc_info=True
        )
        raise InternalServerError() from e


@router.post("/unmerge", response_model=UnmergeResponse)
async def unmerge(
    request: UnmergeRequest,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> UnmergeResponse:
    """Remove a tour from its group, dissolving the group if one tour is left."""
    group = await GroupingService(db, max_pax=app_settings.group_max_pax).unmerge(request.tour_id)
    return UnmergeResponse(
        group_dissolved=group is None,
        group=TourGroup.model_validate(group) if group is not None else None,
    )


@router.put("/{group_id}/guide", response_model=TourGroup)
async def set_group_guide(
    group_id: int,
    request: SetGroupGuideRequest,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> TourGroup:
    """Assign a guide to the group and all of its tours, or clear it."""
    group = await GroupingService(db, max_pax=app_settings.group_max_pax).set_group_guide(
        group_id, request.guide_id
    )
    return TourGroup.model_validate(group)


@router.get("", response_model=List[TourGroupDetail])
async def list_groups(
    on_date: Optional[date] = Query(None, alias="date"),
    upcoming: bool = Query(False, description="Only groups from today through the upcoming window"),
    guide_id: Optional[int] = Query(None),
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> List[TourGroupDetail]:
    """List groups with their tours, ordered by slot."""
    start_date = end_date = None
    if upcoming:
        start_date = _local_today(app_settings)
        end_date = start_date + timedelta(days=app_settings.group_upcoming_days)

    groups = await GroupingService(db, max_pax=app_settings.group_max_pax).list_groups(
        on_date=on_date, start_date=start_date, end_date=end_date, guide_id=guide_id
    )
    return [_detail(group, members) for group, members in groups]


@router.get("/{group_id}", response_model=TourGroupDetail)
async def get_group(
    group_id: int,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> TourGroupDetail:
    """Get a group with its tours."""
    group, members = await GroupingService(db, max_pax=app_settings.group_max_pax).get_group(group_id)
    return _detail(group, members)


@router.patch("/{group_id}", response_model=TourGroup)
async def update_group(
    group_id: int,
    request: UpdateGroupRequest,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> TourGroup:
    """Update the group's name, notes, capacity or guide."""
    group = await GroupingService(db, max_pax=app_settings.group_max_pax).update_group(
        group_id,
        display_name=request.display_name,
        notes=request.notes,
        max_pax=request.max_pax,
        guide_id=request.guide_id,
        set_guide="guide_id" in request.model_fields_set,
    )
    return TourGroup.model_validate(group)


@router.delete("/{group_id}", response_model=DissolveResponse)
async def dissolve_group(
    group_id: int,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> DissolveResponse:
    """Dissolve a group, leaving its tours ungrouped."""
    released = await GroupingService(db, max_pax=app_settings.group_max_pax).dissolve_group(group_id)
    return DissolveResponse(tours_released=released)


@router.post("/{group_id}/recalculate")
async def recalculate_group(
    group_id: int,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> JSONResponse:
    """Recompute the group's participant total; degenerate groups are dissolved."""
    group = await GroupingService(db, max_pax=app_settings.group_max_pax).recalculate_group_pax(group_id)
    content = {
        "group_dissolved": group is None,
        "group": TourGroup.model_validate(group).model_dump(mode="json") if group is not None else None,
    }
    return JSONResponse(status_code=200, content=content)
