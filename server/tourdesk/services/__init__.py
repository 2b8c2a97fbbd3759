"""Service layer package."""

from .grouping_service import GroupingService
from .guide_service import GuideService
from .payment_service import PaymentService
from .reconciler import Reconciler
from .sync_service import SyncLock, SyncService
from .tour_service import TourService

__all__ = [
    "GroupingService",
    "GuideService",
    "PaymentService",
    "Reconciler",
    "SyncLock",
    "SyncService",
    "TourService",
]
