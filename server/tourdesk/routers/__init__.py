"""FastAPI routers package."""

from .guides import router as guides_router
from .health import router as health_router
from .metrics import router as metrics_router
from .payments import router as payments_router
from .sync import router as sync_router
from .tour_groups import router as tour_groups_router
from .tours import router as tours_router
from .webhooks import router as webhooks_router

__all__ = [
    "guides_router",
    "health_router",
    "metrics_router",
    "payments_router",
    "sync_router",
    "tour_groups_router",
    "tours_router",
    "webhooks_router",
]
