"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .core.config import settings
from .core.database import close_db, engine, init_db
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import guides, health, metrics, payments, sync, tour_groups, tours, webhooks
from .services.sync_service import SyncLock
from .workers.manager import WorkerManager

# Configure structured logging
setup_structured_logging()

# Configure traditional logging for compatibility
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Sets up observability and the database, then starts the background
    workers that share the application's sync lock.
    """
    logger.info("Starting tourdesk API")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")

    try:
        setup_tracing(SERVICE_NAME)
        setup_metrics(SERVICE_NAME)
        instrument_sqlalchemy(engine)
        logger.info("Observability setup completed")

        await init_db()
        logger.info("Database initialized successfully")

        app.state.worker_manager = WorkerManager(settings, app.state.sync_lock)
        await app.state.worker_manager.start_all()
        logger.info("Background workers started successfully")
    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down tourdesk API")

    try:
        await app.state.worker_manager.stop_all()
        logger.info("Background workers stopped")

        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during application cleanup: {e}")

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="tourdesk API",
        description="Booking channel synchronization and tour grouping for a guided-tour business",
        version="1.0.0",
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # One sync lock per process, shared by routes and workers
    app.state.sync_lock = SyncLock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    setup_middleware(app, enable_logging=True)

    instrument_fastapi(app)

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health Check",
        description="Check if the service is healthy and responsive",
        response_model=dict,
    )
    async def health_check():
        """Service status."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": "1.0.0",
            "environment": settings.environment,
            "debug": settings.debug,
        }

    @app.get(
        "/ready",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Readiness Check",
        description="Check that the database answers and report worker state",
        response_model=dict,
    )
    async def readiness_check(request: Request):
        """Readiness with a database round trip and the worker status."""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.warning("Readiness database check failed", extra={"error": str(e)})
            database = "unavailable"

        manager = getattr(request.app.state, "worker_manager", None)
        return {
            "status": "ready" if database == "ok" else "degraded",
            "service": SERVICE_NAME,
            "checks": {
                "database": database,
                "workers": manager.get_worker_status() if manager else {},
            },
        }

    @app.get(
        "/info",
        status_code=status.HTTP_200_OK,
        tags=["Info"],
        summary="Service Information",
        description="Get detailed information about the service",
        response_model=dict,
    )
    async def service_info():
        """Service information."""
        return {
            "service": SERVICE_NAME,
            "version": "1.0.0",
            "description": "Channel booking sync and tour grouping",
            "environment": settings.environment,
            "debug": settings.debug,
            "features": {
                "auto_sync": settings.auto_sync_enabled,
                "auto_group_after_sync": settings.auto_group_after_sync,
                "tracing": True,
                "problem_details": True,
            },
            "endpoints": {
                "health": "/health",
                "readiness": "/ready",
                "info": "/info",
                "metrics": "/metrics",
                "docs": "/docs" if settings.debug else None,
            },
        }

    app.include_router(health.router)
    app.include_router(sync.router)
    app.include_router(webhooks.router)
    app.include_router(tour_groups.router)
    app.include_router(tours.router)
    app.include_router(guides.router)
    app.include_router(payments.router)
    app.include_router(metrics.router)

    logger.info("FastAPI application created and configured")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tourdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
