"""
Addon reload: refresh a stored addon from its upstream manifest.

A reload fetches the live manifest, re-applies the addon's resource/catalog
selection, stores both manifests encrypted with the new hash, and reports
what changed relative to the previously stored filtered manifest.
"""

from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import AddonDisabledError, AddonNotFoundError, AddonSyncException, CredentialError
from ..core.logging import get_logger
from ..models import Addon
from .change_detector import ManifestDiff, diff_manifests, manifest_hash
from .manifest_fetcher import ManifestFetcher
from .manifest_filter import filter_manifest
from .sync_repository import SyncRepository

logger = get_logger(__name__)


@dataclass
class AddonReloadResult:
    addon_id: str
    addon_name: str
    diff: ManifestDiff = field(default_factory=ManifestDiff)
    manifest_hash: str | None = None
    previous_hash: str | None = None
    filtered_manifest: dict[str, Any] | None = None

    @property
    def hash_changed(self) -> bool:
        return self.manifest_hash != self.previous_hash

    def to_dict(self) -> dict[str, Any]:
        return {
            "addon_id": self.addon_id,
            "addon_name": self.addon_name,
            "manifest_hash": self.manifest_hash,
            "hash_changed": self.hash_changed,
            "diffs": self.diff.to_dict(),
        }


class AddonReloadService:
    def __init__(self, repository: SyncRepository, fetcher: ManifestFetcher) -> None:
        self.repository = repository
        self.fetcher = fetcher

    async def refresh(self, addon: Addon) -> AddonReloadResult:
        """Re-fetch, re-filter and re-hash one addon row (no commit).

        Raises:
            UpstreamFetchError: If the manifest cannot be fetched
            ManifestValidationError: If the fetched manifest is invalid
            CredentialError: If the stored URL cannot be decrypted

        """
        url = addon.get_manifest_url()
        fresh = await self.fetcher.fetch(url, use_cache=False)
        filtered = filter_manifest(fresh, addon.selected_resources, addon.selected_catalogs)
        new_hash = manifest_hash(filtered)

        try:
            previous = addon.get_manifest()
        except CredentialError:
            logger.warning("Stored manifest unreadable; diffing against empty", extra={"addon_id": addon.id})
            previous = None

        previous_hash = addon.manifest_hash
        addon.store_manifests(fresh, filtered, new_hash)

        result = AddonReloadResult(
            addon_id=addon.id,
            addon_name=addon.name,
            diff=diff_manifests(previous, filtered),
            manifest_hash=new_hash,
            previous_hash=previous_hash,
            filtered_manifest=filtered,
        )
        logger.info(
            "Addon reloaded",
            extra={
                "addon_id": addon.id,
                "hash_changed": result.hash_changed,
                "added_resources": len(result.diff.added_resources),
                "removed_resources": len(result.diff.removed_resources),
                "added_catalogs": len(result.diff.added_catalogs),
                "removed_catalogs": len(result.diff.removed_catalogs),
            },
        )
        return result

    async def reload_addon(self, addon_id: str, account_id: str) -> AddonReloadResult:
        """Reload one addon by id and persist it.

        Raises:
            AddonNotFoundError: If the addon is not in the account
            AddonDisabledError: If the addon is inactive

        """
        addon = await self.repository.get_addon(addon_id, account_id)
        if addon is None:
            raise AddonNotFoundError(addon_id)
        if addon.is_active is False:
            raise AddonDisabledError(addon_id)

        result = await self.refresh(addon)
        await self.repository.commit()
        return result

    async def reload_by_platform_addon_id(self, platform_addon_id: str, account_id: str) -> list[AddonReloadResult]:
        """Reload every active addon of the account publishing this manifest id.

        Addons that fail to reload are logged and skipped.

        Raises:
            AddonNotFoundError: If no addon in the account has this manifest id

        """
        addons = await self.repository.list_addons_by_platform_id(account_id, platform_addon_id)
        if not addons:
            raise AddonNotFoundError(platform_addon_id, details={"platform_addon_id": platform_addon_id})

        results = []
        for addon in addons:
            if addon.is_active is False:
                continue
            try:
                results.append(await self.refresh(addon))
            except AddonSyncException as e:
                logger.warning(
                    "Addon reload failed",
                    extra={"addon_id": addon.id, "error": str(e)},
                )
        await self.repository.commit()
        return results
