"""Unit tests for sync report formatting and webhook delivery."""

import json

import httpx
import pytest

from addonsync.services.change_detector import ManifestDiff
from addonsync.services.notification_service import (
    AddonChange,
    NotificationDispatcher,
    SyncReport,
    build_payload,
    format_addon_change,
)

WEBHOOK = "https://hooks.example.com/webhook"


def report(**overrides):
    fields = {"groups": 2, "users": 5}
    fields.update(overrides)
    return SyncReport(**fields)


def dispatcher_for(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationDispatcher(client=client, timeout=1.0, avatar_url=None, username="Syncio")


class TestFormatting:
    def test_format_lists_added_and_removed(self):
        diff = ManifestDiff(added_resources=["meta"], removed_resources=["catalog"], added_catalogs=["movie:top"])
        assert format_addon_change(diff) == "```Resources:\n+ meta\n- catalog\n\nCatalogs:\n+ movie:top```"

    def test_format_empty_diff(self):
        assert format_addon_change(ManifestDiff()) is None

    def test_title_and_plain_source(self):
        embed = build_payload(report())["embeds"][0]
        assert embed["title"] == "Sync Succeeded on 2 Groups (5 Users)"
        assert "description" not in embed
        assert "author" not in embed
        assert embed["fields"] == []

    def test_advanced_mode_fields_and_author(self):
        changes = [
            AddonChange("a", "Alpha", ManifestDiff(added_resources=["meta"])),
            AddonChange("b", "Beta", ManifestDiff()),
        ]
        payload = build_payload(
            report(mode="advanced", addon_changes=changes, source_label="Auto-Sync", source_logo="https://x/logo.png"),
            avatar_url="https://x/avatar.png",
            username="Syncio",
        )
        embed = payload["embeds"][0]
        assert embed["description"] == "All Group Addons Reloaded"
        assert [f["name"] for f in embed["fields"]] == ["Alpha"]
        assert embed["author"] == {"name": "Auto-Sync", "icon_url": "https://x/logo.png"}
        assert payload["avatar_url"] == "https://x/avatar.png"
        assert payload["username"] == "Syncio"

    def test_notable(self):
        assert report().is_notable
        assert not report(groups=0).is_notable
        assert report(groups=0, addon_changes=[AddonChange("a", "A", ManifestDiff(added_catalogs=["x"]))]).is_notable


class TestNotificationDispatcher:
    @pytest.mark.asyncio
    async def test_notify_posts_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(204)

        assert await dispatcher_for(handler).notify(WEBHOOK, report()) is True
        assert seen[0]["embeds"][0]["title"].startswith("Sync Succeeded")
        assert seen[0]["username"] == "Syncio"

    @pytest.mark.asyncio
    async def test_rejected_delivery_returns_false(self):
        assert await dispatcher_for(lambda request: httpx.Response(404)).notify(WEBHOOK, report()) is False

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await dispatcher_for(handler).notify(WEBHOOK, report()) is False

    @pytest.mark.asyncio
    async def test_no_webhook(self):
        assert await dispatcher_for(lambda request: httpx.Response(200)).notify(None, report()) is False

    @pytest.mark.asyncio
    async def test_emit_runs_in_background(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200)

        dispatcher = dispatcher_for(handler)
        task = dispatcher.emit(WEBHOOK, report())
        assert task is not None
        await dispatcher.drain()
        assert len(seen) == 1
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_emit_skips_empty_report(self):
        dispatcher = dispatcher_for(lambda request: httpx.Response(200))
        assert dispatcher.emit(WEBHOOK, report(groups=0)) is None
        assert dispatcher.emit("", report()) is None
