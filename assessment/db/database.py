"""
Database engines and transactional scopes.

Tables are created through a sync (psycopg2) engine; repositories run on an
asyncpg engine through ``async_session_scope``. Both engines are built on
first use from ``Settings.database_url``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import lru_cache

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from assessment.db.models import Base
from config import get_settings

_ASYNC_DRIVER = "postgresql+asyncpg://"


def async_database_url(url: str) -> str:
    """Point a postgres URL at the asyncpg driver; other URLs pass through."""
    for prefix in ("postgresql+psycopg2://", "postgresql://"):
        if url.startswith(prefix):
            return _ASYNC_DRIVER + url[len(prefix):]
    return url


@lru_cache
def get_sync_engine() -> Engine:
    settings = get_settings()
    return create_engine(settings.database_url, echo=settings.log_level == "DEBUG", pool_pre_ping=True)


def init_db() -> None:
    """Create the assessment tables."""
    Base.metadata.create_all(bind=get_sync_engine())
    logger.info("Database tables initialized: {}", ", ".join(sorted(Base.metadata.tables)))


_async_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _async_engine, _session_factory
    if _session_factory is None:
        settings = get_settings()
        _async_engine = create_async_engine(
            async_database_url(settings.database_url),
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
        _session_factory = async_sessionmaker(bind=_async_engine, autoflush=False, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def async_session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back on any error."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            await session.rollback()
            raise


async def dispose_async_engine() -> None:
    """Close pooled async connections (call on shutdown)."""
    global _async_engine, _session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _session_factory = None
