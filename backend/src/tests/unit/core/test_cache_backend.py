"""Unit tests for the cache backends and the read-through helper."""

from unittest.mock import AsyncMock

import pytest

from addonsync.core.cache_backend import (
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    get_or_populate,
)
from addonsync.core.exceptions import CacheConnectionError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryCacheBackend:
    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        cache = InMemoryCacheBackend()
        assert isinstance(cache, CacheBackend)
        await cache.set("k", "v")
        assert await cache.get("k") == "v"
        assert await cache.delete("k") is True
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        clock = FakeClock()
        cache = InMemoryCacheBackend(clock=clock)
        await cache.set("k", "v", ttl_seconds=5)
        clock.now = 4.9
        assert await cache.get("k") == "v"
        clock.now = 5.0
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            await InMemoryCacheBackend().get("")


class TestRedisCacheBackend:
    @pytest.mark.asyncio
    async def test_setex_used_with_ttl(self):
        client = AsyncMock()
        cache = RedisCacheBackend(client)
        await cache.set("k", "v", ttl_seconds=30)
        client.setex.assert_awaited_once_with("k", 30, "v")

    @pytest.mark.asyncio
    async def test_errors_surface_as_cache_connection_error(self):
        client = AsyncMock()
        client.get.side_effect = ConnectionError("down")
        with pytest.raises(CacheConnectionError):
            await RedisCacheBackend(client).get("k")


class TestGetOrPopulate:
    @pytest.mark.asyncio
    async def test_miss_populates_and_stores(self):
        cache = InMemoryCacheBackend()
        populate = AsyncMock(return_value="fresh")
        assert await get_or_populate(cache, "k", populate, ttl_seconds=60) == "fresh"
        assert await get_or_populate(cache, "k", populate, ttl_seconds=60) == "fresh"
        populate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cache_outage_degrades_to_populate(self):
        client = AsyncMock()
        client.get.side_effect = ConnectionError("down")
        client.setex.side_effect = ConnectionError("down")
        populate = AsyncMock(return_value="fresh")
        assert await get_or_populate(RedisCacheBackend(client), "k", populate, ttl_seconds=60) == "fresh"
        populate.assert_awaited_once()
