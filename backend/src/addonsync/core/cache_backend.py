"""
Cache backend interface for AddonSync.

Defines the CacheBackend protocol used for short-lived caching of upstream
addon manifests. Two interchangeable implementations are provided:
- RedisCacheBackend: for multi-node deployments
- InMemoryCacheBackend: for single-node/development deployments

Backend selection is automatic based on ADDONSYNC_REDIS_URL. Services take
a backend as a constructor argument so tests can inject their own.

Example usage:
    from addonsync.core.cache_backend import get_cache_backend, get_or_populate

    backend = await get_cache_backend()
    value = await get_or_populate(backend, "manifest:abc", fetch, ttl_seconds=300)
"""

import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis

from .exceptions import CacheConnectionError
from .logging import get_logger

logger = get_logger(__name__)

# Global cache backend instance (singleton)
_cache_backend: "CacheBackend | None" = None

# Global Redis client instance (internal use only)
_redis_client: Any | None = None


@runtime_checkable
class CacheBackend(Protocol):
    """Protocol for string key-value caches with TTL."""

    async def get(self, key: str) -> str | None:
        """Return the cached value, or None when missing or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Store a value. A non-positive TTL deletes the key instead."""
        ...

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        ...


class InMemoryCacheBackend:
    """In-memory cache implementation with TTL support.

    Thread-safe; suitable for single-process deployments. Expired entries
    are dropped lazily on access. Data is not shared across processes and is
    lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        # key -> (value, expiry timestamp or None for no expiry)
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.RLock()
        self._clock = clock

    def _is_expired(self, expiry: float | None) -> bool:
        if expiry is None:
            return False
        return self._clock() >= expiry

    async def get(self, key: str) -> str | None:
        if not key:
            raise ValueError("Cache key cannot be empty")
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if self._is_expired(expiry):
                del self._data[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        if not key:
            raise ValueError("Cache key cannot be empty")
        with self._lock:
            if ttl_seconds is not None and ttl_seconds <= 0:
                self._data.pop(key, None)
                return True
            expiry = self._clock() + ttl_seconds if ttl_seconds is not None else None
            self._data[key] = (value, expiry)
            return True

    async def delete(self, key: str) -> bool:
        if not key:
            raise ValueError("Cache key cannot be empty")
        with self._lock:
            entry = self._data.pop(key, None)
            return entry is not None and not self._is_expired(entry[1])


class RedisCacheBackend:
    """Redis-backed cache implementation.

    Wraps an async Redis client created by `get_cache_backend()`. Connection
    failures surface as CacheConnectionError; `get_or_populate` treats them
    as cache misses.
    """

    def __init__(self, redis_client: Any):
        self._client = redis_client

    async def get(self, key: str) -> str | None:
        if not key:
            raise ValueError("Cache key cannot be empty")
        try:
            return await self._client.get(key)
        except Exception as e:
            logger.error(f"Redis GET failed for key '{key}': {e}")
            raise CacheConnectionError(f"GET {key} failed", details={"key": key, "error": str(e)}) from e

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        if not key:
            raise ValueError("Cache key cannot be empty")
        try:
            if ttl_seconds is not None and ttl_seconds <= 0:
                await self._client.delete(key)
                return True
            if ttl_seconds is not None:
                await self._client.setex(key, ttl_seconds, value)
            else:
                await self._client.set(key, value)
            return True
        except Exception as e:
            logger.error(f"Redis SET failed for key '{key}': {e}")
            raise CacheConnectionError(f"SET {key} failed", details={"key": key, "error": str(e)}) from e

    async def delete(self, key: str) -> bool:
        if not key:
            raise ValueError("Cache key cannot be empty")
        try:
            return bool(await self._client.delete(key))
        except Exception as e:
            logger.error(f"Redis DELETE failed for key '{key}': {e}")
            raise CacheConnectionError(f"DELETE {key} failed", details={"key": key, "error": str(e)}) from e


async def get_or_populate(
    backend: CacheBackend,
    key: str,
    populate: Callable[[], Awaitable[str]],
    ttl_seconds: int | None = None,
) -> str:
    """Read-through helper.

    On a miss the value is produced by ``populate`` and stored. Concurrent
    misses each populate independently; nobody waits on another caller's
    fetch. Cache outages degrade to calling ``populate`` directly.
    """
    try:
        cached = await backend.get(key)
    except CacheConnectionError:
        cached = None
    if cached is not None:
        return cached

    value = await populate()
    try:
        await backend.set(key, value, ttl_seconds=ttl_seconds)
    except CacheConnectionError:
        logger.warning("Cache unavailable; value not stored", extra={"cache_key": key})
    return value


async def _create_redis_client() -> Any:
    """Create and test a Redis client connection."""
    from .config import get_settings_instance

    settings = get_settings_instance()

    try:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_connection_timeout,
        )
        await client.ping()
        logger.info("Redis client initialized successfully")
        return client
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}")
        raise CacheConnectionError(f"Redis connection failed: {e}") from e


async def get_cache_backend() -> CacheBackend:
    """Get the configured cache backend (singleton).

    Selection logic:
    1. ADDONSYNC_REDIS_URL set and reachable -> RedisCacheBackend
    2. ADDONSYNC_REDIS_URL set but unreachable -> InMemoryCacheBackend (with warning)
    3. ADDONSYNC_REDIS_URL not set -> InMemoryCacheBackend
    """
    global _cache_backend, _redis_client  # noqa: PLW0603

    if _cache_backend is not None:
        return _cache_backend

    from .config import get_settings_instance

    settings = get_settings_instance()
    if not settings.redis_enabled:
        logger.info("No Redis URL configured, using InMemoryCacheBackend")
        _cache_backend = InMemoryCacheBackend()
        return _cache_backend

    try:
        _redis_client = await _create_redis_client()
        _cache_backend = RedisCacheBackend(_redis_client)
        logger.info("Using RedisCacheBackend")
    except CacheConnectionError as e:
        logger.warning(
            "Redis connection failed, falling back to InMemoryCacheBackend",
            extra={"error": str(e)},
        )
        _cache_backend = InMemoryCacheBackend()
    return _cache_backend


async def close_cache_backend() -> None:
    """Close the Redis client, if any (call during shutdown)."""
    global _redis_client  # noqa: PLW0603
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def reset_cache_backend() -> None:
    """Reset the cache backend singleton (for testing only)."""
    global _cache_backend, _redis_client  # noqa: PLW0603
    _cache_backend = None
    _redis_client = None
