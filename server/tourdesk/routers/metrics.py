"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ..core.observability import get_prometheus_metrics

router = APIRouter(tags=["Observability"])


@router.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="HTTP, sync, reconcile, channel and grouping metrics",
    response_class=Response,
)
async def metrics() -> Response:
    """Return the service registry in the Prometheus text format."""
    return Response(content=get_prometheus_metrics(), media_type=CONTENT_TYPE_LATEST)
