"""
Client for the addon platform's collection API.

The platform exposes JSON-over-POST methods at ``{endpoint}/api/{method}``.
Successful calls return ``{"result": ...}``; failures return
``{"error": {"message", "code"}}``. Error code 1 (or a "session does not
exist" message) means the user's auth key is invalid or expired.
"""

import re
from typing import Any

import httpx

from ..core.config import get_settings_instance
from ..core.exceptions import PlatformAuthError, PlatformError, PlatformReadError, PlatformWriteError
from ..core.http_client import get_http_client
from ..core.logging import get_logger
from ..schemas.manifest import AddonEntry

logger = get_logger(__name__)

_SESSION_GONE = re.compile(r"session does not exist", re.IGNORECASE)


def _is_auth_error(error: Any) -> bool:
    if not isinstance(error, dict):
        return bool(_SESSION_GONE.search(str(error or "")))
    return error.get("code") == 1 or bool(_SESSION_GONE.search(str(error.get("message") or "")))


def normalize_collection(addons: Any) -> list[AddonEntry]:
    """Coerce a raw collection (list, keyed dict, or None) into entries.

    Entries without a transport URL are dropped. ``manifest.manifestUrl`` is
    stripped because the platform rejects it on write.
    """
    if addons is None:
        return []
    if isinstance(addons, dict):
        addons = list(addons.values())
    if not isinstance(addons, list):
        return []

    entries: list[AddonEntry] = []
    for raw in addons:
        if not isinstance(raw, dict) or not raw.get("transportUrl"):
            continue
        data = dict(raw)
        manifest = data.get("manifest")
        if isinstance(manifest, dict):
            manifest = dict(manifest)
            manifest.pop("manifestUrl", None)
            data["manifest"] = manifest
        else:
            data["manifest"] = {}
        entries.append(AddonEntry.model_validate(data))
    return entries


class PlatformClient:
    """Reads and writes users' remote addon collections."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings_instance()
        self._client = client
        self._base_url = (base_url or settings.platform_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.platform_timeout

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = await get_http_client()
        return self._client

    async def _call(self, method: str, payload: dict[str, Any], error_cls: type[PlatformError]) -> Any:
        client = await self._http()
        url = f"{self._base_url}/api/{method}"
        try:
            response = await client.post(url, json=payload, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise error_cls(f"{method} timed out", details={"method": method}) from e
        except httpx.HTTPError as e:
            raise error_cls(f"{method} request failed: {e}", details={"method": method}) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        error = body.get("error") if isinstance(body, dict) else None
        if error and _is_auth_error(error):
            raise PlatformAuthError(details={"method": method})
        if response.status_code >= 400 or error:
            message = error.get("message") if isinstance(error, dict) else error
            raise error_cls(
                f"{method} failed: {message or f'HTTP {response.status_code}'}",
                details={"method": method, "status_code": response.status_code},
            )
        if not isinstance(body, dict) or "result" not in body:
            raise error_cls(f"{method} returned an unexpected payload", details={"method": method})
        return body["result"]

    async def _get_raw_collection(self, auth_key: str) -> Any:
        result = await self._call(
            "addonCollectionGet",
            {"type": "AddonCollectionGet", "authKey": auth_key, "update": True},
            PlatformReadError,
        )
        return result.get("addons") if isinstance(result, dict) else None

    async def get_collection(self, auth_key: str) -> list[AddonEntry]:
        """Fetch a user's addon collection.

        A collection the platform reports as ``null`` is repaired by writing
        an empty collection and reading again.

        Raises:
            PlatformAuthError: If the auth key is invalid or expired
            PlatformReadError: On any other read failure

        """
        addons = await self._get_raw_collection(auth_key)
        if addons is None:
            logger.warning("Repairing null addon collection")
            await self.set_collection(auth_key, [])
            addons = await self._get_raw_collection(auth_key)
        return normalize_collection(addons)

    async def set_collection(self, auth_key: str, entries: list[AddonEntry]) -> None:
        """Replace a user's whole addon collection.

        Raises:
            PlatformAuthError: If the auth key is invalid or expired
            PlatformWriteError: On any other write failure (including timeouts)

        """
        await self._call(
            "addonCollectionSet",
            {"type": "AddonCollectionSet", "authKey": auth_key, "addons": [e.to_wire() for e in entries]},
            PlatformWriteError,
        )

    async def get_user(self, auth_key: str) -> dict[str, Any]:
        result = await self._call("getUser", {"type": "GetUser", "authKey": auth_key}, PlatformReadError)
        return result if isinstance(result, dict) else {}

    async def validate_auth_key(self, auth_key: str) -> dict[str, Any]:
        """Return the platform user for a key, or raise PlatformAuthError."""
        user = await self.get_user(auth_key)
        if not user.get("email") and not user.get("_id"):
            raise PlatformAuthError("auth key does not resolve to a user")
        return user
