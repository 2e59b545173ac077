"""Tests for per-key repair locks."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from imfolio.core.cancellation import CancellationToken
from imfolio.core.locks import (
    LOCK_KEY_PREFIX,
    KeyLockUnavailable,
    LocalKeyLocks,
    RedisKeyLocks,
    get_key_lock_provider,
)


@pytest.mark.asyncio
async def test_local_locks_serialize_same_key():
    locks = LocalKeyLocks()
    events: list[str] = []

    async def worker(name: str):
        async with locks.hold("photo/u1/a.jpg"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.asyncio
async def test_local_locks_allow_different_keys_concurrently():
    locks = LocalKeyLocks()
    inside = 0
    peak = 0

    async def worker(key: str):
        nonlocal inside, peak
        async with locks.hold(key):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(worker("photo/u1/a.jpg"), worker("photo/u1/b.jpg"))

    assert peak == 2


@pytest.mark.asyncio
async def test_local_locks_forget_released_keys():
    locks = LocalKeyLocks()
    async with locks.hold("k"):
        pass
    assert locks._locks == {}


def _mock_settings():
    s = MagicMock()
    s.repair_lock_ttl_seconds = 60
    s.redis_url = "redis://localhost:6379/0"
    return s


@pytest.mark.asyncio
async def test_redis_lock_acquires_and_releases():
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    tokens = {}

    async def fake_get(key):
        return tokens.get(key)

    async def fake_set(key, value, nx, ex):
        tokens[key] = value
        return True

    client.set.side_effect = fake_set
    client.get.side_effect = fake_get

    locks = RedisKeyLocks(redis_client=client, settings=_mock_settings())
    async with locks.hold("photo/u1/a.jpg"):
        pass

    call = client.set.call_args
    assert call.args[0] == f"{LOCK_KEY_PREFIX}photo/u1/a.jpg"
    assert call.kwargs == {"nx": True, "ex": 60}
    client.delete.assert_awaited_once_with(f"{LOCK_KEY_PREFIX}photo/u1/a.jpg")


@pytest.mark.asyncio
async def test_redis_lock_times_out_when_held_elsewhere():
    client = AsyncMock()
    client.set = AsyncMock(return_value=False)

    locks = RedisKeyLocks(redis_client=client, settings=_mock_settings(), wait_seconds=0.05, poll_interval=0.01)

    with pytest.raises(KeyLockUnavailable):
        async with locks.hold("photo/u1/a.jpg"):
            pass
    client.delete.assert_not_called()


@pytest.mark.asyncio
async def test_redis_lock_does_not_delete_foreign_lock():
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value="someone-else")

    locks = RedisKeyLocks(redis_client=client, settings=_mock_settings())
    async with locks.hold("photo/u1/a.jpg"):
        pass

    client.delete.assert_not_called()


def test_provider_selection():
    s = _mock_settings()
    s.repair_lock_backend = "local"
    assert isinstance(get_key_lock_provider(s), LocalKeyLocks)
    s.repair_lock_backend = "redis"
    assert isinstance(get_key_lock_provider(s), RedisKeyLocks)


def test_cancellation_token_keeps_first_reason():
    token = CancellationToken()
    assert not token.cancelled
    token.cancel("operator")
    token.cancel("second")
    assert token.cancelled
    assert token.reason == "operator"
