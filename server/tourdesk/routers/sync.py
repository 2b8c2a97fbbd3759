"""Sync router for channel synchronization runs."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..core.dependencies import get_sync_service
from ..core.exceptions import InternalServerError, ProblemDetailsException
from ..schemas.sync import CancelResponse, SyncLogResponse, SyncRunRequest, SyncSummary
from ..services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/sync", tags=["sync"])

SYNC_SERVICE_DEPENDENCY = Depends(get_sync_service)


@router.post("/run", response_model=SyncSummary)
async def run_sync(
    request: Optional[SyncRunRequest] = None,
    sync_service: SyncService = SYNC_SERVICE_DEPENDENCY,
) -> JSONResponse:
    """
    Pull bookings for a tour-date range from the channel and reconcile them.

    Defaults to today through the incremental window.
    """
    request = request or SyncRunRequest()
    try:
        summary = await sync_service.sync_now(
            start_date=request.start_date,
            end_date=request.end_date,
            triggered_by=request.triggered_by,
        )
        return JSONResponse(status_code=200, content=summary.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in sync run",
            extra={
                "start_date": str(request.start_date),
                "end_date": str(request.end_date),
                "error": str(e)
            },
            exc_info=True
        )
        raise InternalServerError() from e


@router.post("/full", response_model=SyncSummary)
async def run_full_sync(
    triggered_by: Optional[str] = Query(None, max_length=255),
    sync_service: SyncService = SYNC_SERVICE_DEPENDENCY,
) -> JSONResponse:
    """Sync the full window, from the past-days buffer to the full look-ahead."""
    try:
        summary = await sync_service.full_sync(triggered_by=triggered_by)
        return JSONResponse(status_code=200, content=summary.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error in full sync", extra={"error": str(e)}, exc_info=True)
        raise InternalServerError() from e


@router.post("/cancel", response_model=CancelResponse)
async def cancel_sync(sync_service: SyncService = SYNC_SERVICE_DEPENDENCY) -> CancelResponse:
    """Ask the running sync to stop before fetching its next page."""
    requested = sync_service.cancel()
    return CancelResponse(cancel_requested=requested, running=requested)


@router.get("/history", response_model=List[SyncLogResponse])
async def sync_history(
    limit: int = Query(20, ge=1, le=100),
    sync_service: SyncService = SYNC_SERVICE_DEPENDENCY,
) -> List[SyncLogResponse]:
    """Most recent sync runs, newest first."""
    logs = await sync_service.history(limit=limit)
    return [SyncLogResponse.model_validate(log) for log in logs]


@router.get("/info")
async def sync_info(sync_service: SyncService = SYNC_SERVICE_DEPENDENCY) -> JSONResponse:
    """Configured sync windows, lock state and the last run."""
    info = await sync_service.sync_info()
    return JSONResponse(status_code=200, content=info.model_dump(mode="json"))


@router.get("/test")
async def test_connection(sync_service: SyncService = SYNC_SERVICE_DEPENDENCY) -> JSONResponse:
    """Check the channel credentials with a minimal request."""
    result = await sync_service.test_connection()
    return JSONResponse(status_code=200 if result.success else 502, content=result.model_dump(mode="json"))
