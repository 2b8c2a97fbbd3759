"""Sync history model definition."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class SyncStatus(str, Enum):
    """Lifecycle state of a sync run."""
    STARTED = "started"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncTrigger(str, Enum):
    """What started a sync run."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class SyncType(str, Enum):
    """Window a sync run covers."""
    INCREMENTAL = "incremental"
    FULL = "full"
    SINGLE = "single"


class SyncLog(Base):
    """One row per sync run, written when it starts and closed when it ends."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    triggered_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncStatus.STARTED.value)

    bookings_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bookings_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bookings_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bookings_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bookings_unchanged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bookings_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    groups_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    errors: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('started', 'completed', 'partial', 'failed', 'cancelled')",
            name="ck_sync_log_status"
        ),
        CheckConstraint(
            "trigger_type IN ('scheduled', 'manual', 'webhook')",
            name="ck_sync_log_trigger"
        ),
        CheckConstraint(
            "sync_type IN ('incremental', 'full', 'single')",
            name="ck_sync_log_sync_type"
        ),
    )

    def __repr__(self) -> str:
        return f"<SyncLog(id={self.id}, type={self.sync_type}, status={self.status})>"
