"""Guide-related Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field


class CreateGuideRequest(BaseModel):
    """Request schema for registering a guide."""

    name: str = Field(..., min_length=1, max_length=255, description="Guide name")
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$", description="Contact email")
    phone: Optional[str] = Field(None, max_length=64, description="Contact phone")
    languages: List[str] = Field(default_factory=list, description="Languages the guide leads tours in")


class Guide(BaseModel):
    """Guide response schema."""

    id: int = Field(..., description="Unique guide ID")
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    languages: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True
