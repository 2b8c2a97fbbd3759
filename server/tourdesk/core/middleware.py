"""Custom middleware for request tracking and logging."""

import logging
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import settings
from .observability import metrics_collector

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each request.

    The request ID is either extracted from the X-Request-ID header
    or generated if not present. It is bound into the structlog context
    for the duration of the request and echoed on the response.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and add request ID."""
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.header_name] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs HTTP requests and responses.

    Logs timing, status codes and correlation IDs, and feeds the
    request counters exposed on /metrics.
    """

    def __init__(
        self,
        app: ASGIApp,
        skip_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/metrics", "/favicon.ico"]

    def _should_log(self, path: str) -> bool:
        """Check if request should be logged."""
        return path not in self.skip_paths

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _route_template(self, request: Request) -> str:
        # Label metrics by route template so ids do not explode cardinality
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log information."""
        if not self._should_log(request.url.path):
            return await call_next(request)

        start_time = time.perf_counter()
        log_data = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
            "client_ip": self._get_client_ip(request),
            "user_agent": request.headers.get("User-Agent", "unknown"),
        }

        logger.info("HTTP request started", extra=log_data)

        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start_time
            logger.error(
                "HTTP request failed with unhandled exception",
                extra={**log_data, "duration_ms": round(duration * 1000, 2)},
                exc_info=True,
            )
            metrics_collector.record_http_request(
                request.method, self._route_template(request), 500, duration
            )
            raise

        duration = time.perf_counter() - start_time
        status_code = response.status_code
        log_data.update({
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 2),
        })
        metrics_collector.record_http_request(
            request.method, self._route_template(request), status_code, duration
        )

        if status_code >= 500:
            logger.error("HTTP request completed with server error", extra=log_data)
        elif status_code >= 400:
            logger.warning("HTTP request completed with client error", extra=log_data)
        else:
            logger.info("HTTP request completed successfully", extra=log_data)

        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Setup all middleware on the FastAPI app.

    Args:
        app: FastAPI application instance
        enable_logging: Whether to enable request logging middleware
    """
    # Last added runs first
    if enable_logging:
        app.add_middleware(
            LoggingMiddleware,
            skip_paths=None if settings.debug else ["/health", "/ready", "/metrics", "/favicon.ico"],
        )

    app.add_middleware(RequestIDMiddleware)
