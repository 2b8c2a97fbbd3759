"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import Settings
from ..services.sync_service import SyncLock
from .base import BaseWorker
from .sync_worker import AutoSyncWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Built during application start-up; workers are only created for the
    features enabled in settings.
    """

    def __init__(self, settings: Settings, lock: SyncLock):
        """
        Initialize the worker manager.

        Args:
            settings: Application settings
            lock: Application sync lock shared with the API
        """
        self.workers: Dict[str, BaseWorker] = {}
        if settings.auto_sync_enabled:
            self.workers["auto_sync"] = AutoSyncWorker(lock, settings)

        logger.info(f"Initialized {len(self.workers)} workers")

    async def start_all(self) -> None:
        """Start all workers."""
        for name, worker in self.workers.items():
            await worker.start()
            logger.info(f"Started worker: {name}")

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        names = list(self.workers)
        results = await asyncio.gather(
            *(self.workers[name].stop() for name in names),
            return_exceptions=True,
        )

        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {result!s}")
            else:
                logger.info(f"Stopped worker: {name}")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map worker names to their running status."""
        return {name: worker.running for name, worker in self.workers.items()}
