"""
Pytest fixtures for the IMFOLIO storage engine.

This module provides:
1. Settings tuned for fast tests (no backoff, small concurrency)
2. An in-memory SQLite database (aiosqlite) with the ORM schema
3. A LocalObjectStore rooted in a temporary directory
4. Helpers to seed users, photos, hero images and objects
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Settings are cached on first use, which happens at import time of the app
os.environ["IMFOLIO_ENVIRONMENT"] = "testing"
os.environ["IMFOLIO_DATABASE_URL"] = TEST_DATABASE_URL

from imfolio.config import Settings  # noqa: E402
from imfolio.models.orm import Base  # noqa: E402
from imfolio.services.storage_audit.object_store import LocalObjectStore  # noqa: E402
from imfolio.services.storage_audit.retry import RetryPolicy  # noqa: E402


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="testing",
        database_url=TEST_DATABASE_URL,
        local_storage_root=str(tmp_path / "objects"),
        storage_concurrency=4,
        storage_max_retries=2,
        storage_retry_backoff_seconds=0,
        storage_retry_max_backoff_seconds=0,
        storage_call_timeout_seconds=5,
        storage_list_page_size=2,
        db_page_size=2,
    )


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=2, initial_backoff=0, max_backoff=0, timeout=5)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects")


def set_mtime(store: LocalObjectStore, key: str, when: datetime) -> None:
    """Pin an object's last-modified time (duplicate tie-break tests)."""
    ts = when.replace(tzinfo=timezone.utc).timestamp() if when.tzinfo is None else when.timestamp()
    os.utime(store.root / key, (ts, ts))


@pytest.fixture
def seed(session_factory):
    """Factory inserting ORM rows: ``await seed(User(id="u1"), Photo(...))``."""

    async def _seed(*rows) -> list:
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return list(rows)

    return _seed


@pytest.fixture
def put(store):
    """Factory writing objects: ``await put("photo/u1/a.jpg", b"...")``."""

    async def _put(key: str, content: bytes = b"image-bytes", modified: datetime | None = None) -> str:
        await store.upload(key, content)
        if modified is not None:
            set_mtime(store, key, modified)
        return key

    return _put
