"""Sync-related Pydantic schemas."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.sync_log import SyncStatus, SyncTrigger, SyncType


class SyncError(BaseModel):
    """A booking that could not be synced."""

    external_id: Optional[str] = Field(None, description="Channel booking ID")
    confirmation_code: Optional[str] = Field(None, description="Channel confirmation code")
    reason: str = Field(..., description="Why the booking was skipped")


class SyncRunRequest(BaseModel):
    """Request schema for a manual sync run."""

    start_date: Optional[date] = Field(None, description="First tour date, defaults to today")
    end_date: Optional[date] = Field(None, description="Last tour date, defaults to the incremental window")
    triggered_by: Optional[str] = Field(None, max_length=255, description="Who asked for the run")

    @model_validator(mode="after")
    def check_range(self) -> "SyncRunRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class SyncSummary(BaseModel):
    """Outcome of a sync run."""

    sync_log_id: Optional[int] = Field(None, description="Sync log row for this run")
    sync_type: SyncType = Field(..., description="Window the run covered")
    trigger: SyncTrigger = Field(..., description="What started the run")
    status: SyncStatus = Field(..., description="Final run status")
    start_date: Optional[date] = Field(None, description="First tour date synced")
    end_date: Optional[date] = Field(None, description="Last tour date synced")
    total_bookings: int = Field(0, ge=0, description="Bookings fetched from the channel")
    synced_count: int = Field(0, ge=0, description="Bookings inserted, updated or unchanged")
    created_count: int = Field(0, ge=0, description="Tours inserted")
    updated_count: int = Field(0, ge=0, description="Tours updated")
    unchanged_count: int = Field(0, ge=0, description="Tours already up to date")
    failed_count: int = Field(0, ge=0, description="Bookings skipped with an error")
    groups_created: int = Field(0, ge=0, description="Groups created by post-sync grouping")
    errors: List[SyncError] = Field(default_factory=list, description="Per-booking errors")
    duration_seconds: float = Field(0.0, ge=0, description="Wall time of the run")
    message: Optional[str] = Field(None, description="Run-level error, if any")


class SyncLogResponse(BaseModel):
    """Sync history entry."""

    id: int
    sync_type: SyncType
    trigger_type: SyncTrigger
    triggered_by: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: SyncStatus
    bookings_found: int
    bookings_synced: int
    bookings_created: int
    bookings_updated: int
    bookings_unchanged: int
    bookings_failed: int
    groups_created: int
    error_message: Optional[str] = None
    errors: Optional[List[SyncError]] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    class Config:
        from_attributes = True


class SyncInfo(BaseModel):
    """Configured sync windows and state."""

    incremental_days: int = Field(..., description="Days ahead covered by a normal run")
    full_days: int = Field(..., description="Days ahead covered by a full run")
    past_days_buffer: int = Field(..., description="Days back covered by a full run")
    auto_sync_enabled: bool = Field(..., description="Whether the background sync worker runs")
    auto_sync_interval_seconds: int = Field(..., description="Seconds between background runs")
    auto_group_after_sync: bool = Field(..., description="Whether runs end with auto-grouping")
    running: bool = Field(..., description="Whether a run currently holds the lock")
    last_sync: Optional[SyncLogResponse] = Field(None, description="Most recent run")


class ConnectionTestResponse(BaseModel):
    """Result of a channel connectivity check."""

    success: bool
    message: str
    base_url: Optional[str] = None
    access_key_preview: Optional[str] = None


class CancelResponse(BaseModel):
    """Result of a cancellation request."""

    cancel_requested: bool
    running: bool
