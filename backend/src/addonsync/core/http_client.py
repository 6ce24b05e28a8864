"""HTTP client management for the AddonSync backend.

Provides one pooled httpx client shared by the platform API client, the
manifest fetcher and the webhook dispatcher. Callers pass per-request
timeouts; the client defaults only bound connection setup.
"""

from functools import lru_cache
from typing import Any

import httpx

from .config import get_settings_instance
from .logging import get_logger

logger = get_logger(__name__)


class HTTPClientManager:
    """Manages the shared HTTP client with connection pooling."""

    def __init__(self) -> None:
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None:
            settings = get_settings_instance()
            logger.debug("Creating new HTTP client with connection pooling")
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100, keepalive_expiry=30.0),
                timeout=httpx.Timeout(settings.platform_timeout, connect=10.0),
                follow_redirects=True,
                headers={"User-Agent": f"AddonSync/{settings.version}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            logger.debug("Closing HTTP client")
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> httpx.AsyncClient:
        return await self.get_client()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Any:
        await self.close()


@lru_cache(maxsize=1)
def get_http_client_manager() -> HTTPClientManager:
    """Get the global HTTP client manager instance."""
    return HTTPClientManager()


async def get_http_client() -> httpx.AsyncClient:
    """Get HTTP client for external API calls."""
    manager = get_http_client_manager()
    return await manager.get_client()


async def close_http_client() -> None:
    """Close HTTP client (call during shutdown)."""
    manager = get_http_client_manager()
    await manager.close()
