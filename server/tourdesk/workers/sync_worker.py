"""Background worker for scheduled channel syncs."""

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..channel.client import ChannelClient
from ..core.config import Settings
from ..core.database import async_session_factory
from ..core.exceptions import SyncAbortedError, SyncInProgressError
from ..models.sync_log import SyncTrigger
from ..schemas.sync import SyncSummary
from ..services.sync_service import SyncLock, SyncService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class AutoSyncWorker(BaseWorker):
    """
    Background worker that runs the incremental sync on a schedule.

    Shares the application's sync lock, so a scheduled run waits for (or
    skips past) a manual run instead of overlapping it.
    """

    def __init__(
        self,
        lock: SyncLock,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        interval_seconds: Optional[int] = None,
        client_factory: Optional[Callable[[], ChannelClient]] = None,
    ):
        """
        Initialize the sync worker.

        Args:
            lock: Application sync lock
            settings: Application settings (channel credentials, windows)
            session_factory: Factory for the run's database session
            interval_seconds: Seconds between runs, defaults to the configured interval
            client_factory: Builds the channel client for each run
        """
        super().__init__(
            name="AutoSync",
            interval_seconds=interval_seconds or settings.auto_sync_interval_seconds,
        )
        self.lock = lock
        self.settings = settings
        self.session_factory = session_factory
        self.client_factory = client_factory or (lambda: ChannelClient.from_settings(settings))
        self.last_summary: Optional[SyncSummary] = None

    async def process(self) -> None:
        """Run one scheduled sync."""
        async with self.session_factory() as db, self.client_factory() as client:
            service = SyncService(db, client, self.lock, settings=self.settings)
            try:
                self.last_summary = await service.sync_now(trigger=SyncTrigger.SCHEDULED, triggered_by="scheduler")
            except SyncInProgressError:
                logger.info("Scheduled sync skipped, another run holds the lock", extra={"worker": self.name})
                return
            except SyncAbortedError as e:
                logger.error(
                    f"Scheduled sync aborted: {e.reason}",
                    extra={"worker": self.name, "code": e.code}
                )
                return

        logger.info(
            "Scheduled sync finished",
            extra={
                "worker": self.name,
                "status": self.last_summary.status.value,
                "synced": self.last_summary.synced_count,
                "failed": self.last_summary.failed_count,
            }
        )
