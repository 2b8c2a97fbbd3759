"""FastAPI dependencies for database sessions, the channel client and the sync lock."""

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..channel.client import ChannelClient
from ..services.sync_service import SyncLock, SyncService
from .config import Settings, settings
from .database import get_async_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


def get_settings() -> Settings:
    """Application settings; overridden in tests."""
    return settings


async def get_channel_client(
    app_settings: Settings = Depends(get_settings),
) -> AsyncGenerator[ChannelClient, None]:
    """
    Channel client for the duration of one request.

    Yields:
        ChannelClient: Client closed when the request finishes
    """
    async with ChannelClient.from_settings(app_settings) as client:
        yield client


def get_sync_lock(request: Request) -> SyncLock:
    """The application's per-tenant sync lock."""
    return request.app.state.sync_lock


async def get_sync_service(
    db: AsyncSession = Depends(get_db),
    client: ChannelClient = Depends(get_channel_client),
    lock: SyncLock = Depends(get_sync_lock),
    app_settings: Settings = Depends(get_settings),
) -> SyncService:
    """Sync service wired to the request's session and client."""
    return SyncService(db, client, lock, settings=app_settings)


DatabaseSession = Depends(get_db)
