"""Webhook router for channel booking notifications."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import JSONResponse

from ..core.dependencies import get_sync_service
from ..core.exceptions import ValidationError
from ..models.sync_log import SyncTrigger
from ..services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

BOOKING_TOPICS = {"bookings/create", "bookings/update", "bookings/cancel"}

SYNC_SERVICE_DEPENDENCY = Depends(get_sync_service)


@router.post("/booking")
async def booking_webhook(
    payload: Optional[dict[str, Any]] = Body(None),
    topic: str = Header("", alias="X-Bokun-Topic"),
    booking_id: Optional[str] = Header(None, alias="X-Bokun-Booking-Id"),
    sync_service: SyncService = SYNC_SERVICE_DEPENDENCY,
) -> JSONResponse:
    """
    Re-sync one booking when the channel reports a change.

    Booking topics fetch the booking and reconcile it under the sync lock;
    other topics are acknowledged and ignored.
    """
    if topic not in BOOKING_TOPICS:
        logger.info("Ignoring webhook topic", extra={"topic": topic})
        return JSONResponse(status_code=200, content={"status": "ignored", "topic": topic})

    booking_id = booking_id or (payload or {}).get("bookingId") or (payload or {}).get("id")
    if not booking_id:
        raise ValidationError(detail="Booking webhook without a booking id")

    logger.info("Booking webhook received", extra={"topic": topic, "booking_id": booking_id})
    summary = await sync_service.sync_booking(
        str(booking_id),
        trigger=SyncTrigger.WEBHOOK,
        triggered_by=f"webhook:{topic}",
    )
    return JSONResponse(
        status_code=200,
        content={"status": "processed", "topic": topic, "summary": summary.model_dump(mode="json")},
    )
