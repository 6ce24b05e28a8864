"""Upstream manifest fetching with a short-lived read-through cache."""

import hashlib
import json
from typing import Any

import httpx

from ..core.cache_backend import CacheBackend, get_cache_backend, get_or_populate
from ..core.config import get_settings_instance
from ..core.exceptions import CacheConnectionError, UpstreamFetchError
from ..core.http_client import get_http_client
from ..core.logging import get_logger
from ..schemas.manifest import parse_manifest

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "addonsync:manifest:"


def manifest_cache_key(url: str) -> str:
    # Manifest URLs often embed user config tokens; never use them as keys verbatim
    return CACHE_KEY_PREFIX + hashlib.sha256(url.encode("utf-8")).hexdigest()


class ManifestFetcher:
    """Fetches and validates addon manifests from their upstream URL."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        cache: CacheBackend | None = None,
        timeout: float | None = None,
        cache_ttl: int | None = None,
    ) -> None:
        settings = get_settings_instance()
        self._client = client
        self._cache = cache
        self._timeout = timeout if timeout is not None else settings.manifest_fetch_timeout
        self._cache_ttl = cache_ttl if cache_ttl is not None else settings.manifest_cache_ttl

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = await get_http_client()
        return self._client

    async def _cache_backend(self) -> CacheBackend:
        if self._cache is None:
            self._cache = await get_cache_backend()
        return self._cache

    async def _download(self, url: str) -> str:
        client = await self._http()
        try:
            response = await client.get(url, timeout=self._timeout, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            raise UpstreamFetchError("request timed out", details={"timeout": self._timeout}) from e
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"request failed: {type(e).__name__}") from e

        if response.status_code >= 400:
            raise UpstreamFetchError(
                f"HTTP {response.status_code}", details={"status_code": response.status_code}
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFetchError("response is not JSON") from e

        # Validate before caching so a bad payload is never served from cache
        parse_manifest(data)
        return json.dumps(data, separators=(",", ":"))

    async def fetch(self, url: str, use_cache: bool = True) -> dict[str, Any]:
        """Fetch a manifest as validated JSON.

        Args:
            url: Upstream manifest URL
            use_cache: Serve a recent copy when available. Reloads pass
                False so operators always see the live manifest.

        Raises:
            UpstreamFetchError: On network errors, timeouts, HTTP errors or non-JSON bodies
            ManifestValidationError: If the JSON is not a valid manifest

        """
        if not url:
            raise UpstreamFetchError("manifest URL is empty")

        if use_cache:
            cache = await self._cache_backend()
            raw = await get_or_populate(cache, manifest_cache_key(url), lambda: self._download(url), self._cache_ttl)
        else:
            raw = await self._download(url)
            if self._cache is not None:
                try:
                    await self._cache.set(manifest_cache_key(url), raw, ttl_seconds=self._cache_ttl)
                except CacheConnectionError:
                    logger.warning("Cache unavailable; fresh manifest not stored")
        return json.loads(raw)
