"""
Sync notifications.

After a sync the orchestrator emits a SyncReport. The dispatcher turns it
into a Discord-compatible webhook message and posts it in the background:
delivery never blocks the sync path and a delivery failure is logged and
dropped, never raised.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from ..core.config import get_settings_instance
from ..core.http_client import get_http_client
from ..core.logging import get_logger
from .change_detector import ManifestDiff

logger = get_logger(__name__)

EMBED_COLOR = 0x808080
DEFAULT_SOURCE_LABEL = "API"
MAX_EMBED_FIELDS = 25


@dataclass
class AddonChange:
    addon_id: str
    name: str
    diff: ManifestDiff


@dataclass
class SyncReport:
    groups: int
    users: int
    mode: str = "normal"
    addon_changes: list[AddonChange] = field(default_factory=list)
    source_label: str = DEFAULT_SOURCE_LABEL
    source_logo: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_notable(self) -> bool:
        return self.groups > 0 or any(change.diff.has_changes for change in self.addon_changes)


def format_addon_change(diff: ManifestDiff) -> str | None:
    """Code-block body listing resource and catalog churn, or None if nothing changed."""
    resource_lines = [f"+ {r}" for r in diff.added_resources] + [f"- {r}" for r in diff.removed_resources]
    catalog_lines = [f"+ {c}" for c in diff.added_catalogs] + [f"- {c}" for c in diff.removed_catalogs]

    sections: list[str] = []
    if resource_lines:
        sections.append("Resources:")
        sections.extend(resource_lines)
    if catalog_lines:
        if resource_lines:
            sections.append("")
        sections.append("Catalogs:")
        sections.extend(catalog_lines)
    if not sections:
        return None
    return "```" + "\n".join(sections) + "```"


def build_payload(report: SyncReport, avatar_url: str | None = None, username: str | None = None) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": f"Sync Succeeded on {report.groups} Groups ({report.users} Users)",
        "color": EMBED_COLOR,
        "fields": [],
        "timestamp": report.timestamp.isoformat(),
    }
    if report.mode == "advanced":
        embed["description"] = "All Group Addons Reloaded"

    for change in report.addon_changes:
        value = format_addon_change(change.diff)
        if value is None:
            continue
        if len(embed["fields"]) >= MAX_EMBED_FIELDS:
            break
        embed["fields"].append({"name": change.name or change.addon_id, "value": value, "inline": False})

    if report.source_label != DEFAULT_SOURCE_LABEL or report.source_logo:
        embed["author"] = {"name": report.source_label}
        if report.source_logo:
            embed["author"]["icon_url"] = report.source_logo

    payload: dict[str, Any] = {"embeds": [embed]}
    if avatar_url:
        payload["avatar_url"] = avatar_url
    if username:
        payload["username"] = username
    return payload


class NotificationDispatcher:
    """Best-effort webhook delivery for sync reports."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        avatar_url: str | None = None,
        username: str | None = None,
    ) -> None:
        settings = get_settings_instance()
        self._client = client
        self._timeout = timeout if timeout is not None else settings.webhook_timeout
        self._avatar_url = avatar_url if avatar_url is not None else settings.webhook_avatar_url
        self._username = username if username is not None else settings.webhook_username
        self._pending: set[asyncio.Task] = set()

    async def notify(self, webhook_url: str | None, report: SyncReport) -> bool:
        """Post one report. Returns True on a 2xx response; never raises."""
        if not webhook_url:
            return False
        payload = build_payload(report, avatar_url=self._avatar_url, username=self._username)
        try:
            client = self._client or await get_http_client()
            response = await client.post(webhook_url, json=payload, timeout=self._timeout)
        except Exception as e:
            logger.warning("Webhook delivery failed", extra={"error": type(e).__name__})
            return False
        if response.status_code >= 400:
            logger.warning("Webhook rejected notification", extra={"status_code": response.status_code})
            return False
        logger.debug("Webhook notification delivered", extra={"status_code": response.status_code})
        return True

    def emit(self, webhook_url: str | None, report: SyncReport) -> asyncio.Task | None:
        """Schedule delivery without waiting for it."""
        if not webhook_url or not report.is_notable:
            return None
        task = asyncio.create_task(self.notify(webhook_url, report))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Global dispatcher instance
_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher  # noqa: PLW0603
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
