"""Guide router for the guide directory."""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db
from ..schemas.guide import CreateGuideRequest, Guide
from ..services.guide_service import GuideService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/guides", tags=["guides"])

DB_DEPENDENCY = Depends(get_db)


@router.post("", response_model=Guide, status_code=201)
async def create_guide(request: CreateGuideRequest, db: AsyncSession = DB_DEPENDENCY) -> Guide:
    """Register a guide."""
    guide = await GuideService(db).create_guide(
        name=request.name,
        email=request.email,
        phone=request.phone,
        languages=request.languages,
    )
    return Guide.model_validate(guide)


@router.get("", response_model=List[Guide])
async def list_guides(db: AsyncSession = DB_DEPENDENCY) -> List[Guide]:
    """All guides ordered by name."""
    return [Guide.model_validate(guide) for guide in await GuideService(db).list_guides()]


@router.get("/{guide_id}", response_model=Guide)
async def get_guide(guide_id: int, db: AsyncSession = DB_DEPENDENCY) -> Guide:
    """Get a guide by ID."""
    return Guide.model_validate(await GuideService(db).get_guide_or_raise(guide_id))
