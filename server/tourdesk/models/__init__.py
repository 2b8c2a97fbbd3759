"""Models module exporting all database models."""

from .guide import Guide
from .payment import Payment
from .sync_log import SyncLog, SyncStatus, SyncTrigger, SyncType
from .tour import ExternalSource, PaymentStatus, Tour
from .tour_group import TourGroup

__all__ = [
    # Core entities
    "Tour",
    "TourGroup",
    "Guide",

    # Enumerations
    "PaymentStatus",
    "ExternalSource",

    # Payment ledger
    "Payment",

    # Sync history
    "SyncLog",
    "SyncStatus",
    "SyncTrigger",
    "SyncType",
]
