"""Async SQLAlchemy engine, session factory and the FastAPI session dependency."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from poster_studio.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    url = get_settings().database_url
    kwargs: dict[str, object] = {"echo": False}
    if url.startswith("sqlite"):
        logger.info("Using local SQLite database", extra={"database_url": url})
    else:
        # Pooled connections for server databases; recycled before idle timeouts hit.
        kwargs.update(pool_size=10, max_overflow=5, pool_timeout=30, pool_recycle=1800)
        logger.info("Connecting to PostgreSQL database")
    return create_async_engine(url, **kwargs)


@lru_cache(maxsize=1)
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


async def init_models() -> None:
    """Create all tables registered on ``Base``."""

    from poster_studio import models  # noqa: F401  (registers the mappers)

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
    get_session_maker.cache_clear()
    get_engine.cache_clear()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields one session per request."""

    async with get_session_maker()() as session:
        yield session
