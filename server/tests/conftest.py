"""Test configuration and fixtures."""

import json
import os
from typing import Any, Optional

# The application engine is built at import; point it at SQLite before that
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tourdesk.channel.client import ChannelClient
from tourdesk.core.config import Settings
from tourdesk.core.database import Base
from tourdesk.core.dependencies import get_channel_client, get_db, get_settings
from tourdesk.models import *  # noqa: F403 - Import all models
from tourdesk.services.sync_service import SyncLock

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CHANNEL_URL = "https://channel.test"


async def no_sleep(_: float) -> None:
    return None


class FakeChannel:
    """
    In-memory stand-in for the channel API behind an httpx.MockTransport.

    Bookings are served per booking role and paginated like the real
    booking search. Responses queued in ``scripted`` are returned first,
    one per request, whatever the path.
    """

    def __init__(self):
        self.bookings: dict[str, list[dict[str, Any]]] = {"SUPPLIER": [], "SELLER": []}
        self.scripted: list[httpx.Response] = []
        self.requests: list[httpx.Request] = []
        self.search_bodies: list[dict[str, Any]] = []
        self.fail_status: Optional[int] = None
        self.on_search = None

    def add(self, *bookings: dict[str, Any], role: str = "SUPPLIER") -> None:
        self.bookings.setdefault(role, []).extend(bookings)

    def replace(self, booking: dict[str, Any]) -> None:
        """Swap a booking (matched by id) for a changed version."""
        for items in self.bookings.values():
            for index, item in enumerate(items):
                if item["id"] == booking["id"]:
                    items[index] = booking

    def _find(self, booking_id: str) -> Optional[dict[str, Any]]:
        for items in self.bookings.values():
            for item in items:
                if str(item["id"]) == booking_id:
                    return item
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.scripted:
            return self.scripted.pop(0)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "failure"})

        path = request.url.path
        if path == "/booking.json/booking-search":
            body = json.loads(request.content)
            self.search_bodies.append(body)
            if self.on_search is not None:
                self.on_search(body)
            items = self.bookings.get(body["bookingRole"], [])
            page, size = body["page"], body["pageSize"]
            return httpx.Response(
                200,
                json={"items": items[page * size:(page + 1) * size], "totalHits": len(items)},
            )
        if path == "/activity.json/search":
            return httpx.Response(200, json={"items": [], "totalHits": 0})
        if path.startswith("/booking.json/"):
            booking = self._find(path.rsplit("/", 1)[-1])
            if booking is None:
                return httpx.Response(404, json={"message": "Booking not found"})
            return httpx.Response(200, json=booking)
        return httpx.Response(404, json={"message": "Unknown path"})


def make_booking(
    booking_id: int,
    title: str = "Uffizi Gallery Tour",
    start: str = "2026-11-02T09:00:00Z",
    start_time_str: Optional[str] = "10:00",
    categories: Optional[dict[str, int]] = None,
    status: str = "CONFIRMED",
    confirmation_code: Optional[str] = None,
    **extra: Any,
) -> dict[str, Any]:
    """Channel booking payload with one product booking."""
    categories = {"ADULT": 2} if categories is None else categories
    fields: dict[str, Any] = {
        "priceCategoryBookings": [
            {"pricingCategory": {"ticketCategory": code}, "quantity": quantity}
            for code, quantity in categories.items()
        ],
    }
    if start_time_str:
        fields["startTimeStr"] = start_time_str

    booking = {
        "id": booking_id,
        "confirmationCode": confirmation_code or f"FLO-{booking_id}",
        "status": status,
        "customer": {"firstName": "Anna", "lastName": "Rossi", "email": f"anna{booking_id}@example.com"},
        "totalPrice": 120.0,
        "productBookings": [
            {
                "id": booking_id * 10,
                "status": status,
                "product": {"id": 501, "title": title},
                "startDateTime": start,
                "fields": fields,
            }
        ],
    }
    booking.update(extra)
    return booking


@pytest.fixture
def fake_channel():
    """Fake channel API."""
    return FakeChannel()


@pytest.fixture
def test_settings():
    """Settings for tests: fake channel, fast retries, short lock wait."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        channel_base_url=CHANNEL_URL,
        channel_access_key="test-access-key",
        channel_secret_key="test-secret-key",
        channel_vendor_id="42",
        channel_max_retries=2,
        channel_retry_base_delay=0.0,
        sync_lock_timeout_seconds=0.2,
        auto_group_after_sync=True,
    )


@pytest.fixture
def make_client(fake_channel, test_settings):
    """Factory for channel clients wired to the fake channel."""

    def factory(**overrides: Any) -> ChannelClient:
        options = {"transport": httpx.MockTransport(fake_channel.handler), "sleep": no_sleep}
        options.update(overrides)
        return ChannelClient.from_settings(test_settings, **options)

    return factory


@pytest.fixture
def sync_lock():
    """A fresh sync lock."""
    return SyncLock()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, test_settings, make_client, sync_lock):
    """Create a test FastAPI application."""
    from fastapi import FastAPI

    from tourdesk.core.exceptions import ProblemDetailsException, generic_exception_handler, problem_details_handler
    from tourdesk.routers import guides, health, metrics, payments, sync, tour_groups, tours, webhooks

    # Simplified app without lifespan or middleware
    app = FastAPI(title="tourdesk API (Test)", version="1.0.0-test")
    app.state.sync_lock = sync_lock

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "tourdesk-api", "version": "1.0.0", "environment": "test"}

    @app.get("/ready")
    async def readiness_check():
        return {"status": "ready", "service": "tourdesk-api", "checks": {"database": "ok", "workers": {}}}

    @app.get("/info")
    async def service_info():
        return {
            "service": "tourdesk-api",
            "version": "1.0.0",
            "environment": "test",
            "features": {"auto_sync": False, "problem_details": True},
        }

    app.include_router(health.router)
    app.include_router(sync.router)
    app.include_router(webhooks.router)
    app.include_router(tour_groups.router)
    app.include_router(tours.router)
    app.include_router(guides.router)
    app.include_router(payments.router)
    app.include_router(metrics.router)

    async def override_get_db():
        yield test_session

    async def override_get_channel_client():
        async with make_client() as client:
            yield client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_channel_client] = override_get_channel_client

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    from httpx import ASGITransport
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
