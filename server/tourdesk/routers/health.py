"""Health check router."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..core.config import Settings
from ..core.dependencies import get_settings, get_sync_lock
from ..schemas.health import HealthResponse, HealthStatus
from ..services.sync_service import SyncLock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping(
    lock: SyncLock = Depends(get_sync_lock),
    app_settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """
    Health check endpoint.

    Returns service status, timestamp and whether a sync is running.
    """
    response_data = HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        sync_running=lock.is_running(app_settings.tenant_key),
    )

    logger.debug(
        "Health check requested",
        extra={
            "status": response_data.status,
            "sync_running": response_data.sync_running,
        }
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
