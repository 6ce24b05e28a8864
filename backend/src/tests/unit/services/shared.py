"""Builders and in-memory fakes shared by the sync service tests."""

import copy
from datetime import UTC, datetime
from typing import Any

from addonsync.core.exceptions import PlatformAuthError, PlatformReadError, PlatformWriteError
from addonsync.models import Account, Addon, Group, GroupAddon, User
from addonsync.schemas.manifest import AddonEntry
from addonsync.services.change_detector import manifest_hash

ACCOUNT_ID = "acc-1"
EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


def make_manifest(
    addon_id: str,
    name: str,
    resources: list[Any] | None = None,
    catalogs: list[dict[str, Any]] | None = None,
    version: str = "1.0.0",
    **extra: Any,
) -> dict[str, Any]:
    manifest = {
        "id": addon_id,
        "name": name,
        "version": version,
        "types": ["movie", "series"],
        "resources": resources if resources is not None else ["catalog", "stream"],
        "catalogs": catalogs if catalogs is not None else [],
    }
    manifest.update(extra)
    return manifest


def make_entry(url: str, manifest: dict[str, Any]) -> AddonEntry:
    return AddonEntry.model_validate({"transportUrl": url, "transportName": "", "manifest": manifest})


def make_account(account_id: str = ACCOUNT_ID, **overrides: Any) -> Account:
    fields = {
        "id": account_id,
        "name": "Household",
        "sync_enabled": True,
        "sync_frequency": "0",
        "sync_mode": "normal",
        "safe_mode": True,
        "use_custom_fields": False,
        "webhook_url": None,
    }
    fields.update(overrides)
    return Account(**fields)


def make_addon(
    addon_id: str,
    url: str,
    manifest: dict[str, Any],
    account_id: str = ACCOUNT_ID,
    resources: list[str] | None = None,
    catalogs: list[dict[str, str]] | None = None,
    **overrides: Any,
) -> Addon:
    fields = {
        "id": addon_id,
        "account_id": account_id,
        "name": manifest["name"],
        "is_active": True,
        "resources": resources or [],
        "catalogs": catalogs or [],
    }
    fields.update(overrides)
    addon = Addon(**fields)
    addon.set_manifest_url(url)
    addon.store_manifests(manifest, manifest, manifest_hash(manifest))
    return addon


def make_group(
    group_id: str,
    addons: list[Addon],
    user_ids: list[str],
    account_id: str = ACCOUNT_ID,
    created_at: datetime = EPOCH,
    disabled_addon_ids: set[str] | None = None,
) -> Group:
    group = Group(
        id=group_id,
        account_id=account_id,
        name=f"Group {group_id}",
        is_active=True,
        user_ids=list(user_ids),
        created_at=created_at,
    )
    disabled = disabled_addon_ids or set()
    group.addons = [
        GroupAddon(
            id=f"{group_id}-link-{position}",
            group_id=group_id,
            addon_id=addon.id,
            addon=addon,
            position=position,
            is_enabled=addon.id not in disabled,
        )
        for position, addon in enumerate(addons)
    ]
    return group


def make_user(
    user_id: str,
    account_id: str = ACCOUNT_ID,
    auth_key: str | None = None,
    excluded: list[str] | None = None,
    protected: list[str] | None = None,
    **overrides: Any,
) -> User:
    fields = {
        "id": user_id,
        "account_id": account_id,
        "username": user_id,
        "excluded_addons": excluded or [],
        "protected_addons": protected or [],
        "is_active": True,
    }
    fields.update(overrides)
    user = User(**fields)
    user.set_auth_key(auth_key or f"key-{user_id}")
    return user


class FakeRepository:
    """In-memory stand-in for SyncRepository."""

    def __init__(
        self,
        accounts: list[Account] | None = None,
        groups: list[Group] | None = None,
        users: list[User] | None = None,
        addons: list[Addon] | None = None,
    ) -> None:
        self.accounts = {a.id: a for a in accounts or []}
        self.groups = list(groups or [])
        self.users = {u.id: u for u in users or []}
        self.addons = {a.id: a for a in addons or []}
        self.commits = 0
        self.rollbacks = 0

    async def get_account(self, account_id):
        return self.accounts.get(account_id)

    async def get_group(self, group_id, account_id):
        for group in self.groups:
            if group.id == group_id and group.account_id == account_id:
                return group
        return None

    async def list_account_groups(self, account_id, active_only=True):
        groups = [g for g in self.groups if g.account_id == account_id and (g.is_active or not active_only)]
        return sorted(groups, key=lambda g: (g.created_at, g.id))

    async def get_users(self, account_id, user_ids):
        return {
            uid: self.users[uid]
            for uid in user_ids
            if uid in self.users and self.users[uid].account_id == account_id
        }

    async def get_user(self, user_id, account_id):
        user = self.users.get(user_id)
        return user if user is not None and user.account_id == account_id else None

    async def get_addon(self, addon_id, account_id):
        addon = self.addons.get(addon_id)
        return addon if addon is not None and addon.account_id == account_id else None

    async def list_addons_by_platform_id(self, account_id, platform_addon_id):
        return [
            a for a in self.addons.values() if a.account_id == account_id and a.platform_addon_id == platform_addon_id
        ]

    async def list_due_accounts(self, now, limit):
        due = [
            a
            for a in self.accounts.values()
            if a.sync_enabled and a.sync_frequency != "0" and (a.next_sync_at is None or a.next_sync_at <= now)
        ]
        return due[:limit]

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class FakePlatform:
    """In-memory addon platform keyed by auth key.

    ``failures`` maps an auth key to ``"auth"``, ``"read"`` or ``"write"`` to
    make that user's calls fail in that phase. ``"write_auth"`` reads fine but
    has the write rejected as an expired session.
    """

    def __init__(self, collections: dict[str, list[AddonEntry]] | None = None) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = {
            key: [e.to_wire() for e in entries] for key, entries in (collections or {}).items()
        }
        self.failures: dict[str, str] = {}
        self.reads: list[str] = []
        self.writes: list[tuple[str, list[AddonEntry]]] = []

    async def get_collection(self, auth_key: str) -> list[AddonEntry]:
        self.reads.append(auth_key)
        failure = self.failures.get(auth_key)
        if failure == "auth":
            raise PlatformAuthError()
        if failure == "read":
            raise PlatformReadError("addonCollectionGet failed: HTTP 500")
        return [AddonEntry.model_validate(copy.deepcopy(raw)) for raw in self.collections.get(auth_key, [])]

    async def set_collection(self, auth_key: str, entries: list[AddonEntry]) -> None:
        if self.failures.get(auth_key) == "write_auth":
            raise PlatformAuthError()
        if self.failures.get(auth_key) == "write":
            raise PlatformWriteError("addonCollectionSet timed out")
        self.writes.append((auth_key, list(entries)))
        self.collections[auth_key] = [e.to_wire() for e in entries]

    def urls(self, auth_key: str) -> list[str]:
        return [raw["transportUrl"] for raw in self.collections.get(auth_key, [])]
