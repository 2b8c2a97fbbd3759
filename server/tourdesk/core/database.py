"""Database configuration and async session management."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings


def _engine_options(database_url: str) -> dict:
    """Engine keyword arguments for the configured backend."""
    if "sqlite" in database_url:
        # In-memory SQLite must share one connection across sessions
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {"pool_pre_ping": True}


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug and settings.log_level == "DEBUG",
    **_engine_options(settings.database_url),
)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields database sessions.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# Alias for FastAPI dependency injection
get_db = get_async_session


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    from .. import models  # noqa: F401 - register mappers on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
