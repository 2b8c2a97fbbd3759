"""Tour router for dispatcher-side tour operations."""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..core.dependencies import get_db, get_settings
from ..schemas.tour import AssignGuideRequest, CancelTourRequest, Tour, UpdateNotesRequest
from ..services.tour_service import TourService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tours", tags=["tours"])

DB_DEPENDENCY = Depends(get_db)
SETTINGS_DEPENDENCY = Depends(get_settings)


@router.get("", response_model=List[Tour])
async def list_tours(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    guide_id: Optional[int] = Query(None),
    include_cancelled: bool = Query(False),
    db: AsyncSession = DB_DEPENDENCY,
) -> List[Tour]:
    """List tours ordered by date and time."""
    tours = await TourService(db).list_tours(start_date, end_date, guide_id, include_cancelled)
    return [Tour.model_validate(tour) for tour in tours]


@router.get("/unassigned", response_model=List[Tour])
async def list_unassigned(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = DB_DEPENDENCY,
) -> List[Tour]:
    """Live tours that still need a guide."""
    tours = await TourService(db).list_unassigned(start_date, end_date)
    return [Tour.model_validate(tour) for tour in tours]


@router.get("/{tour_id}", response_model=Tour)
async def get_tour(tour_id: int, db: AsyncSession = DB_DEPENDENCY) -> Tour:
    """Get a tour by ID."""
    tour = await TourService(db).get_tour_by_id_or_raise(tour_id)
    return Tour.model_validate(tour)


@router.put("/{tour_id}/guide", response_model=Tour)
async def assign_guide(
    tour_id: int,
    request: AssignGuideRequest,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> Tour:
    """Assign a guide to this tour only, or clear it."""
    tour = await TourService(db, max_pax=app_settings.group_max_pax).assign_guide(tour_id, request.guide_id)
    return Tour.model_validate(tour)


@router.post("/{tour_id}/cancel", response_model=Tour)
async def cancel_tour(
    tour_id: int,
    request: Optional[CancelTourRequest] = None,
    db: AsyncSession = DB_DEPENDENCY,
    app_settings: Settings = SETTINGS_DEPENDENCY,
) -> Tour:
    """Cancel (or reinstate) a tour; its group's participant total is recomputed."""
    request = request or CancelTourRequest()
    tour = await TourService(db, max_pax=app_settings.group_max_pax).set_cancelled(tour_id, request.cancelled)
    return Tour.model_validate(tour)


@router.patch("/{tour_id}/notes", response_model=Tour)
async def update_notes(
    tour_id: int,
    request: UpdateNotesRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> Tour:
    """Replace the dispatcher notes on a tour."""
    tour = await TourService(db).update_notes(tour_id, request.notes)
    return Tour.model_validate(tour)
