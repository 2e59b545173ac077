"""
Database Connection Management

Async SQLAlchemy engine and session factory, created lazily from settings.
Services receive the session factory and open one session per unit of
work; an AsyncSession is never shared between concurrent tasks.
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from imfolio.config import get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Create and cache the database engine.

    Lazy-loaded so environment variables are read at runtime,
    not at module import time.
    """
    global _engine
    if _engine is not None:
        return _engine

    settings = get_settings()
    database_url = settings.database_url

    if database_url.startswith("sqlite"):
        # SQLite configuration for development/testing
        _engine = create_async_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        _engine = create_async_engine(
            database_url,
            echo=False,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get an async sessionmaker bound to the current engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def init_db() -> None:
    """Open the engine and create tables when running against SQLite."""
    from imfolio.models.orm import Base

    engine = get_engine()
    if engine.url.get_backend_name() == "sqlite":
        # PostgreSQL schemas are managed by Alembic
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database engine ready ({engine.url.get_backend_name()})")


async def close_db() -> None:
    """Dispose of the engine and forget the cached session factory."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

