"""Tour group Pydantic schemas."""

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field

from .tour import Tour


class TourGroup(BaseModel):
    """Tour group response schema."""

    id: int = Field(..., description="Unique group ID")
    group_date: dt.date = Field(..., description="Slot date")
    group_time: dt.time = Field(..., description="Slot start time")
    display_name: str = Field(..., description="Name shown to dispatchers")
    notes: Optional[str] = None
    guide_id: Optional[int] = None
    guide_name: Optional[str] = None
    max_pax: int = Field(..., ge=1, description="Participant capacity")
    total_pax: int = Field(..., ge=0, description="Participants of non-cancelled members")
    is_manual_merge: bool = Field(..., description="Created by a dispatcher rather than auto-grouping")

    class Config:
        from_attributes = True


class TourGroupDetail(TourGroup):
    """Tour group with its member tours."""

    tours: List[Tour] = Field(default_factory=list, description="Members in id order")


class AutoGroupRequest(BaseModel):
    """Request schema for auto-grouping a date range."""

    start_date: Optional[dt.date] = Field(None, description="Defaults to today")
    end_date: Optional[dt.date] = Field(None, description="Defaults to the upcoming window")
    force: bool = Field(False, description="Rebuild existing automatic groups in the range")


class GroupingResult(BaseModel):
    """A group created by auto-grouping."""

    group_id: int
    display_name: str
    group_date: dt.date
    group_time: dt.time
    total_pax: int
    tour_ids: List[int]

    class Config:
        from_attributes = True


class AutoGroupResponse(BaseModel):
    """Response schema for auto-grouping."""

    groups_created: int
    tours_grouped: int
    groups: List[GroupingResult]


class ManualMergeRequest(BaseModel):
    """Request schema for merging tours into a manual group."""

    tour_ids: List[int] = Field(..., min_length=2, description="Tours to merge; the first sets the slot")
    display_name: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class UnmergeRequest(BaseModel):
    """Request schema for removing a tour from its group."""

    tour_id: int


class UnmergeResponse(BaseModel):
    """Response schema for unmerge."""

    success: bool = True
    group_dissolved: bool
    group: Optional[TourGroup] = None


class SetGroupGuideRequest(BaseModel):
    """Request schema for assigning a guide to a group; null clears it."""

    guide_id: Optional[int] = Field(..., description="Guide to assign, or null to clear")


class UpdateGroupRequest(BaseModel):
    """Request schema for updating group attributes."""

    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    notes: Optional[str] = None
    max_pax: Optional[int] = Field(None, ge=1)
    guide_id: Optional[int] = Field(None, description="Guide to assign; send null to clear")


class DissolveResponse(BaseModel):
    """Response schema for dissolving a group."""

    success: bool = True
    tours_released: int
