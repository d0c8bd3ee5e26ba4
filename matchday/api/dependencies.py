"""FastAPI dependencies for Matchday."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config import get_settings
from matchday.models.base import async_session_factory
from matchday.services.coordination import CoordinationStatusService


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for services that manage their own sessions."""
    return async_session_factory


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    settings = get_settings()
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()


def get_status_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CoordinationStatusService:
    """Get coordination status service dependency."""
    return CoordinationStatusService(session_factory)
