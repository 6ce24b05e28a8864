"""
Unit tests for the per-user reconciler.

Tests cover:
- Group addon entries are built from decrypted manifests in position order
- Custom name/description/logo overlay
- Idempotence: a synced user is read but never written
- Each failing phase is reported with its reason and nothing is raised
"""

import pytest

from addonsync.services.exclusion_policy import ExclusionPolicy
from addonsync.services.reconciler import (
    FAILED_AUTH,
    FAILED_READ,
    FAILED_WRITE,
    UserReconciler,
    apply_custom_fields,
    build_group_addon_entries,
    collections_match,
)
from tests.unit.services.shared import (
    FakePlatform,
    make_account,
    make_addon,
    make_entry,
    make_group,
    make_manifest,
    make_user,
)

URL_A = "https://a.example.com/manifest.json"
URL_B = "https://b.example.com/manifest.json"
CINEMETA_URL = "https://v3-cinemeta.strem.io/manifest.json"


@pytest.fixture
def addons():
    return [
        make_addon("addon-a", URL_A, make_manifest("org.a", "Alpha")),
        make_addon("addon-b", URL_B, make_manifest("org.b", "Beta")),
    ]


@pytest.fixture
def policy():
    return ExclusionPolicy(default_addon_names=["Cinemeta"])


class TestBuildGroupAddonEntries:
    def test_entries_follow_position_and_skip_disabled(self, addons):
        group = make_group("g1", addons, ["u1"], disabled_addon_ids={"addon-a"})
        entries = build_group_addon_entries(group, make_account())
        assert [e.addon_id for e in entries] == ["addon-b"]
        assert entries[0].entry.transport_url == URL_B
        assert entries[0].entry.manifest["name"] == "Beta"

    def test_inactive_addon_is_skipped(self, addons):
        addons[0].is_active = False
        entries = build_group_addon_entries(make_group("g1", addons, []), make_account())
        assert [e.addon_id for e in entries] == ["addon-b"]

    def test_undecryptable_addon_is_skipped(self, addons):
        addons[0].manifest_url_encrypted = "garbage"
        entries = build_group_addon_entries(make_group("g1", addons, []), make_account())
        assert [e.addon_id for e in entries] == ["addon-b"]

    def test_overrides_replace_stored_manifest(self, addons):
        fresh = make_manifest("org.a", "Alpha", version="2.0.0")
        entries = build_group_addon_entries(make_group("g1", addons, []), make_account(), {"addon-a": fresh})
        assert entries[0].entry.manifest["version"] == "2.0.0"

    def test_custom_fields(self, addons):
        addon = addons[0]
        addon.name = "Renamed"
        addon.description = "Operator text"
        addon.custom_logo = " https://cdn.example.com/logo.png "
        manifest = make_manifest("org.a", "Alpha", description="Upstream text")

        plain = apply_custom_fields(manifest, addon, use_custom_fields=False)
        assert plain["name"] == "Alpha"
        assert plain["description"] == "Upstream text"
        assert plain["logo"] == "https://cdn.example.com/logo.png"

        custom = apply_custom_fields(manifest, addon, use_custom_fields=True)
        assert custom["name"] == "Renamed"
        assert custom["description"] == "Operator text"
        assert manifest["name"] == "Alpha"


class TestUserReconciler:
    @pytest.mark.asyncio
    async def test_writes_target_when_out_of_sync(self, addons, policy):
        user = make_user("u1")
        entries = build_group_addon_entries(make_group("g1", addons, ["u1"]), make_account())
        platform = FakePlatform({"key-u1": [make_entry(CINEMETA_URL, make_manifest("com.linvo.cinemeta", "Cinemeta"))]})

        result = await UserReconciler(platform, policy).reconcile(user, entries, safe_mode=True)

        assert result.ok and result.changed
        assert platform.urls("key-u1") == [URL_A, URL_B, CINEMETA_URL]

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, addons, policy):
        user = make_user("u1")
        entries = build_group_addon_entries(make_group("g1", addons, ["u1"]), make_account())
        platform = FakePlatform()
        reconciler = UserReconciler(platform, policy)

        first = await reconciler.reconcile(user, entries, safe_mode=True)
        second = await reconciler.reconcile(user, entries, safe_mode=True)

        assert first.changed is True
        assert second.ok and second.changed is False
        assert len(platform.writes) == 1
        assert len(platform.reads) == 2

    @pytest.mark.asyncio
    async def test_order_difference_triggers_write(self, addons, policy):
        user = make_user("u1")
        entries = build_group_addon_entries(make_group("g1", addons, ["u1"]), make_account())
        platform = FakePlatform({"key-u1": [e.entry for e in reversed(entries)]})
        result = await UserReconciler(platform, policy).reconcile(user, entries, safe_mode=False)
        assert result.changed
        assert platform.urls("key-u1") == [URL_A, URL_B]

    @pytest.mark.asyncio
    async def test_bad_credential_reports_auth(self, addons, policy):
        user = make_user("u1")
        user.auth_key_encrypted = "corrupted"
        platform = FakePlatform()
        result = await UserReconciler(platform, policy).reconcile(user, [], safe_mode=True)
        assert result.failed_reason == FAILED_AUTH
        assert platform.reads == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("failure", "reason"),
        [("auth", FAILED_AUTH), ("read", FAILED_READ), ("write", FAILED_WRITE), ("write_auth", FAILED_WRITE)],
    )
    async def test_platform_failures(self, addons, policy, failure, reason):
        user = make_user("u1")
        entries = build_group_addon_entries(make_group("g1", addons, ["u1"]), make_account())
        platform = FakePlatform()
        platform.failures["key-u1"] = failure
        result = await UserReconciler(platform, policy).reconcile(user, entries, safe_mode=True)
        assert result.failed_reason == reason
        assert not result.ok
        assert result.error

    @pytest.mark.asyncio
    async def test_session_rejected_on_write_is_a_write_failure(self, addons, policy):
        user = make_user("u1")
        entries = build_group_addon_entries(make_group("g1", addons, ["u1"]), make_account())
        platform = FakePlatform()
        platform.failures["key-u1"] = "write_auth"

        result = await UserReconciler(platform, policy).reconcile(user, entries, safe_mode=True)

        assert result.failed_reason == FAILED_WRITE
        assert platform.reads == ["key-u1"]
        assert platform.writes == []

    @pytest.mark.asyncio
    async def test_plan_does_not_write(self, addons, policy):
        user = make_user("u1")
        entries = build_group_addon_entries(make_group("g1", addons, ["u1"]), make_account())
        platform = FakePlatform()
        plan = await UserReconciler(platform, policy).plan(user, "key-u1", entries, safe_mode=True)
        assert not plan.already_synced
        assert [e.transport_url for e in plan.desired] == [URL_A, URL_B]
        assert platform.writes == []

    def test_collections_match_is_ordered(self):
        a = make_entry(URL_A, make_manifest("org.a", "Alpha"))
        b = make_entry(URL_B, make_manifest("org.b", "Beta"))
        assert collections_match([a, b], [a, b])
        assert not collections_match([a, b], [b, a])
        assert not collections_match([a], [a, b])
