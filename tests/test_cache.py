"""Redis cache tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from pagecapture.cache.redis import KEY_PREFIX, RedisCache
from pagecapture.capture import (
    BatchItem,
    CaptureResult,
    Completed,
    ErrorKind,
    Failed,
    TaskError,
)


pytestmark = pytest.mark.asyncio


def _make_completed(**overrides) -> Completed:
    defaults = dict(
        message="Captured 2 sections",
        results=[
            CaptureResult(
                image_data=b"\x89PNG\r\n\x1a\n\x00section-1",
                captured_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
                source_url="https://example.com",
                viewport={"width": 1280, "height": 720},
                section_index=1,
                total_sections=2,
            ),
            CaptureResult(
                image_data=b"\x89PNG\r\n\x1a\n\xffsection-2",
                captured_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
                source_url="https://example.com",
                viewport={"width": 1280, "height": 720},
                section_index=2,
                total_sections=2,
            ),
        ],
    )
    defaults.update(overrides)
    return Completed(**defaults)


async def test_set_and_get(redis_cache: RedisCache):
    state = _make_completed()
    assert await redis_cache.set("task-1", state) is True
    cached = await redis_cache.get("task-1")
    assert cached == state


async def test_binary_image_data_survives(redis_cache: RedisCache):
    await redis_cache.set("task-bin", _make_completed())
    cached = await redis_cache.get("task-bin")
    assert cached.results[1].image_data == b"\x89PNG\r\n\x1a\n\xffsection-2"


async def test_failed_state_round_trip(redis_cache: RedisCache):
    state = Failed(error=TaskError(kind=ErrorKind.NAVIGATION_TIMEOUT, message="took too long", phase="navigate"))
    await redis_cache.set("task-failed", state)
    cached = await redis_cache.get("task-failed")
    assert isinstance(cached, Failed)
    assert cached.error.kind is ErrorKind.NAVIGATION_TIMEOUT
    assert cached.error.phase == "navigate"


async def test_batch_items_round_trip(redis_cache: RedisCache):
    state = Completed(
        message="Captured 1 of 2 pages",
        items=[
            BatchItem(index=0, url="https://a.example.com", results=_make_completed().results[:1]),
            BatchItem(
                index=1,
                url="https://b.example.com",
                error=TaskError(kind=ErrorKind.DELEGATE_ERROR, message="boom"),
            ),
        ],
    )
    await redis_cache.set("batch-1", state)
    cached = await redis_cache.get("batch-1")
    assert [item.ok for item in cached.items] == [True, False]
    assert cached.items[1].error.message == "boom"


async def test_get_missing_key(redis_cache: RedisCache):
    assert await redis_cache.get("nonexistent") is None


async def test_ttl_is_set(redis_cache: RedisCache):
    await redis_cache.set("task-ttl", _make_completed())
    ttl = await redis_cache._client.ttl(f"{KEY_PREFIX}task-ttl")
    assert 0 < ttl <= 3600


async def test_custom_ttl(redis_cache: RedisCache):
    await redis_cache.set("task-custom", _make_completed(), ttl=120)
    ttl = await redis_cache._client.ttl(f"{KEY_PREFIX}task-custom")
    assert 0 < ttl <= 120


async def test_key_prefix(redis_cache: RedisCache):
    await redis_cache.set("abc-123", _make_completed())
    assert await redis_cache._client.exists(f"{KEY_PREFIX}abc-123")
    assert not await redis_cache._client.exists("abc-123")


async def test_unreadable_json_is_a_miss(redis_cache: RedisCache):
    await redis_cache._client.set(f"{KEY_PREFIX}task-junk", '{"status": "exploded"}', ex=3600)
    assert await redis_cache.get("task-junk") is None


async def test_get_handles_connection_error(redis_cache: RedisCache):
    redis_cache._client.get = AsyncMock(
        side_effect=redis.ConnectionError("down")
    )
    assert await redis_cache.get("task-err") is None


async def test_set_handles_connection_error(redis_cache: RedisCache):
    redis_cache._client.set = AsyncMock(
        side_effect=redis.ConnectionError("down")
    )
    assert await redis_cache.set("task-err", _make_completed()) is False
