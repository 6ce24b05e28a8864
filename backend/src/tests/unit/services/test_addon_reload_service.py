"""
Unit tests for addon reload.

Tests cover:
- A reload re-applies the stored selection and re-hashes
- The diff is computed against the previously stored filtered manifest
- Inactive and unknown addons are rejected
- Reload by platform manifest id skips addons that fail
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from addonsync.core.exceptions import AddonDisabledError, AddonNotFoundError, UpstreamFetchError
from addonsync.services.addon_reload_service import AddonReloadService
from addonsync.services.change_detector import manifest_hash
from tests.unit.services.shared import ACCOUNT_ID, FakeRepository, make_addon, make_manifest

URL = "https://a.example.com/manifest.json"
OTHER_URL = "https://mirror.example.com/manifest.json"


def fetcher_returning(*side_effect):
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(side_effect=list(side_effect))
    return fetcher


class TestRefresh:
    @pytest.mark.asyncio
    async def test_reapplies_selection_and_rehashes(self):
        addon = make_addon("addon-a", URL, make_manifest("org.a", "Alpha"), resources=["stream"])
        upstream = make_manifest("org.a", "Alpha", resources=["catalog", "stream", "meta"], version="1.2.0")
        fetcher = fetcher_returning(upstream)
        service = AddonReloadService(FakeRepository(addons=[addon]), fetcher)

        result = await service.refresh(addon)

        fetcher.fetch.assert_awaited_once_with(URL, use_cache=False)
        assert result.filtered_manifest["resources"] == ["stream"]
        assert result.manifest_hash == manifest_hash(result.filtered_manifest)
        assert addon.manifest_hash == result.manifest_hash
        assert addon.get_original_manifest() == upstream
        assert addon.version == "1.2.0"

    @pytest.mark.asyncio
    async def test_diff_against_previous_filtered_manifest(self):
        addon = make_addon("addon-a", URL, make_manifest("org.a", "Alpha", resources=["catalog", "stream"]))
        upstream = make_manifest("org.a", "Alpha", resources=["stream", "meta"])
        result = await AddonReloadService(FakeRepository(addons=[addon]), fetcher_returning(upstream)).refresh(addon)

        assert result.diff.added_resources == ["meta"]
        assert result.diff.removed_resources == ["catalog"]
        assert result.hash_changed

    @pytest.mark.asyncio
    async def test_unchanged_upstream_keeps_hash(self):
        manifest = make_manifest("org.a", "Alpha")
        addon = make_addon("addon-a", URL, manifest)
        result = await AddonReloadService(FakeRepository(addons=[addon]), fetcher_returning(manifest)).refresh(addon)
        assert not result.hash_changed
        assert not result.diff.has_changes


class TestReloadAddon:
    @pytest.mark.asyncio
    async def test_reload_commits(self):
        manifest = make_manifest("org.a", "Alpha")
        repository = FakeRepository(addons=[make_addon("addon-a", URL, manifest)])
        result = await AddonReloadService(repository, fetcher_returning(manifest)).reload_addon("addon-a", ACCOUNT_ID)
        assert result.addon_id == "addon-a"
        assert repository.commits == 1

    @pytest.mark.asyncio
    async def test_unknown_addon(self):
        with pytest.raises(AddonNotFoundError):
            await AddonReloadService(FakeRepository(), fetcher_returning()).reload_addon("nope", ACCOUNT_ID)

    @pytest.mark.asyncio
    async def test_inactive_addon(self):
        addon = make_addon("addon-a", URL, make_manifest("org.a", "Alpha"), is_active=False)
        with pytest.raises(AddonDisabledError):
            await AddonReloadService(FakeRepository(addons=[addon]), fetcher_returning()).reload_addon(
                "addon-a", ACCOUNT_ID
            )

    @pytest.mark.asyncio
    async def test_other_account_is_invisible(self):
        addon = make_addon("addon-a", URL, make_manifest("org.a", "Alpha"), account_id="acc-2")
        with pytest.raises(AddonNotFoundError):
            await AddonReloadService(FakeRepository(addons=[addon]), fetcher_returning()).reload_addon(
                "addon-a", ACCOUNT_ID
            )


class TestReloadByPlatformId:
    @pytest.mark.asyncio
    async def test_reloads_every_match_and_skips_failures(self):
        manifest = make_manifest("org.shared", "Shared")
        addons = [
            make_addon("addon-1", URL, manifest),
            make_addon("addon-2", OTHER_URL, manifest),
            make_addon("addon-3", URL, manifest, is_active=False),
        ]
        repository = FakeRepository(addons=addons)
        fetcher = fetcher_returning(manifest, UpstreamFetchError("HTTP 503"))

        results = await AddonReloadService(repository, fetcher).reload_by_platform_addon_id("org.shared", ACCOUNT_ID)

        assert [r.addon_id for r in results] == ["addon-1"]
        assert fetcher.fetch.await_count == 2
        assert repository.commits == 1

    @pytest.mark.asyncio
    async def test_no_match(self):
        with pytest.raises(AddonNotFoundError):
            await AddonReloadService(FakeRepository(), fetcher_returning()).reload_by_platform_addon_id(
                "org.none", ACCOUNT_ID
            )
