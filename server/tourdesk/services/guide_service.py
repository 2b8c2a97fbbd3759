"""Guide directory service."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError
from ..models.guide import Guide

logger = logging.getLogger(__name__)


class GuideService:
    """Lookup and registration of guides."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_guide(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        languages: Optional[list[str]] = None,
    ) -> Guide:
        """
        Register a guide.

        Raises:
            ConflictError: If a guide with the same email exists
        """
        guide = Guide(name=name, email=email, phone=phone, languages=languages or [])
        try:
            self.db.add(guide)
            await self.db.commit()
            await self.db.refresh(guide)
        except IntegrityError:
            await self.db.rollback()
            logger.warning("Guide creation failed - email already exists", extra={"email": email})
            raise ConflictError(
                detail=f"Guide with email '{email}' already exists",
                conflicting_resource={"email": email},
            )

        logger.info("Guide created", extra={"guide_id": guide.id, "guide_name": guide.name})
        return guide

    async def get_guide(self, guide_id: int) -> Optional[Guide]:
        """Get guide by ID."""
        return await self.db.get(Guide, guide_id)

    async def get_guide_or_raise(self, guide_id: int) -> Guide:
        """
        Get guide by ID or raise NotFoundError.

        Raises:
            NotFoundError: If guide not found
        """
        guide = await self.get_guide(guide_id)
        if guide is None:
            raise NotFoundError(resource_type="guide", resource_id=str(guide_id))
        return guide

    async def list_guides(self) -> list[Guide]:
        """All guides ordered by name."""
        result = await self.db.execute(select(Guide).order_by(Guide.name, Guide.id))
        return list(result.scalars())
