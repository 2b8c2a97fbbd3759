"""Background workers for scheduled channel syncs."""

from .base import BaseWorker
from .manager import WorkerManager
from .sync_worker import AutoSyncWorker

__all__ = ["AutoSyncWorker", "BaseWorker", "WorkerManager"]
