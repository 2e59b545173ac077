"""
Per-Key Lock Service

Serializes mutating repair actions per storage key: no two operations may
act on the same key at once, while different keys proceed concurrently.

Two providers:
- LocalKeyLocks: asyncio locks, enough for a single API process
- RedisKeyLocks: Redis SET NX locks shared by every replica, layered on
  top of local locks so one process never races itself

Lock Flow (Redis):
1. Take the in-process lock for the key
2. SET <prefix><key> <token> NX EX <ttl>; poll until acquired or wait times out
3. Run the action
4. Delete the lock only if it still holds our token
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

import redis.asyncio as redis

from imfolio.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Redis key prefix
LOCK_KEY_PREFIX = "imfolio:repair-lock:"

# Default lock TTL (5 minutes safety timeout)
DEFAULT_LOCK_TTL_SECONDS = 300


class KeyLockUnavailable(Exception):
    """Raised when a key lock could not be acquired in time."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock for '{key}' is held by another repair")


class KeyLockProvider(ABC):
    """Hands out exclusive per-key locks."""

    @abstractmethod
    def hold(self, key: str) -> "AsyncIterator[None]":
        """Async context manager holding the lock for `key`."""
        ...

    async def close(self) -> None:
        """Release any connections."""


class LocalKeyLocks(KeyLockProvider):
    """In-process per-key asyncio locks."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


class RedisKeyLocks(KeyLockProvider):
    """Redis-backed per-key locks shared across processes."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
        ttl_seconds: int | None = None,
        wait_seconds: float = 10.0,
        poll_interval: float = 0.2,
    ):
        self._settings = settings or get_settings()
        self._redis = redis_client
        self._ttl = ttl_seconds or self._settings.repair_lock_ttl_seconds or DEFAULT_LOCK_TTL_SECONDS
        self._wait_seconds = wait_seconds
        self._poll_interval = poll_interval
        self._local = LocalKeyLocks()

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self._settings.redis_url, decode_responses=True)
        return self._redis

    async def _acquire(self, client: redis.Redis, lock_key: str, token: str) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._wait_seconds
        while True:
            if await client.set(lock_key, token, nx=True, ex=self._ttl):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self._poll_interval)

    async def _release(self, client: redis.Redis, lock_key: str, token: str) -> None:
        current = await client.get(lock_key)
        if current == token:
            await client.delete(lock_key)
        else:
            # TTL expired mid-action and someone else took the lock
            logger.warning(f"Lock {lock_key} no longer held by this run at release time")

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._local.hold(key):
            client = await self._get_redis()
            lock_key = f"{LOCK_KEY_PREFIX}{key}"
            token = uuid4().hex

            if not await self._acquire(client, lock_key, token):
                raise KeyLockUnavailable(key)
            logger.debug(f"Lock acquired: {lock_key}")
            try:
                yield
            finally:
                await self._release(client, lock_key, token)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def get_key_lock_provider(settings: Settings | None = None) -> KeyLockProvider:
    """Build the configured lock provider."""
    settings = settings or get_settings()
    if settings.repair_lock_backend == "redis":
        return RedisKeyLocks(settings=settings)
    return LocalKeyLocks()


_provider: KeyLockProvider | None = None


def get_key_locks() -> KeyLockProvider:
    """Process-wide lock provider shared by every request."""
    global _provider
    if _provider is None:
        _provider = get_key_lock_provider()
    return _provider


async def close_key_locks() -> None:
    global _provider
    if _provider is not None:
        await _provider.close()
    _provider = None
