"""
Group sync orchestrator.

Applies a group's addon configuration to every member user:

- In ``advanced`` mode each enabled group addon is first reloaded from
  upstream (re-fetched, re-filtered, re-hashed); the manifest diffs are
  collected once per addon. If the upstream fetch fails the stored manifest
  is used instead.
- In ``normal`` mode the stored filtered manifests are pushed as they are.
- Each member is reconciled independently with bounded concurrency; one
  user's failure never stops the others and the call always returns the
  full tally.

A user listed in several groups is synced only by their primary group: the
oldest active group of the account that lists them. Other groups report
that user as skipped. Single-user sync and status resolve the same primary
group.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings_instance
from ..core.exceptions import (
    AccountNotFoundError,
    AddonSyncException,
    CredentialError,
    GroupNotFoundError,
    PlatformAuthError,
    PlatformError,
    UserDisabledError,
    UserNotFoundError,
    ValidationError,
)
from ..models import SYNC_MODE_ADVANCED, SYNC_MODES, Account, Group, User
from .addon_reload_service import AddonReloadResult, AddonReloadService
from .exclusion_policy import ExclusionPolicy, GroupAddonEntry
from .manifest_fetcher import ManifestFetcher
from .notification_service import AddonChange, NotificationDispatcher, SyncReport, get_notification_dispatcher
from .platform_client import PlatformClient
from .reconciler import ReconcileResult, UserReconciler, build_group_addon_entries
from .sync_repository import SyncRepository

logger = structlog.get_logger(__name__)

FAILED_INTERNAL = "internal"

STATUS_SYNCED = "synced"
STATUS_UNSYNCED = "unsynced"
STATUS_CONNECT = "connect"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"


@dataclass
class GroupSyncResult:
    group_id: str
    group_name: str = ""
    synced_users: int = 0
    changed_users: int = 0
    failed_users: int = 0
    skipped_users: int = 0
    diffs_by_addon: list[AddonChange] = field(default_factory=list)
    user_results: list[ReconcileResult] = field(default_factory=list)
    skipped_user_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "group_name": self.group_name,
            "synced_users": self.synced_users,
            "changed_users": self.changed_users,
            "failed_users": self.failed_users,
            "skipped_users": self.skipped_users,
            "skipped_user_ids": list(self.skipped_user_ids),
            "diffs_by_addon": [
                {"id": c.addon_id, "name": c.name, "diffs": c.diff.to_dict()} for c in self.diffs_by_addon
            ],
            "users": [r.to_dict() for r in self.user_results],
        }


@dataclass
class AccountSyncResult:
    account_id: str
    mode: str
    groups: list[GroupSyncResult] = field(default_factory=list)
    failed_groups: list[str] = field(default_factory=list)
    diffs_by_addon: list[AddonChange] = field(default_factory=list)

    @property
    def synced_users(self) -> int:
        return sum(g.synced_users for g in self.groups)

    @property
    def failed_users(self) -> int:
        return sum(g.failed_users for g in self.groups)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "mode": self.mode,
            "synced_groups": len(self.groups),
            "failed_groups": list(self.failed_groups),
            "synced_users": self.synced_users,
            "failed_users": self.failed_users,
            "groups": [g.to_dict() for g in self.groups],
        }


@dataclass
class UserSyncResult:
    user_id: str
    mode: str
    result: ReconcileResult
    group_id: str | None = None
    addon_count: int = 0
    diffs_by_addon: list[AddonChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.result.to_dict(),
            "mode": self.mode,
            "group_id": self.group_id,
            "addon_count": self.addon_count,
            "diffs_by_addon": [
                {"id": c.addon_id, "name": c.name, "diffs": c.diff.to_dict()} for c in self.diffs_by_addon
            ],
        }


@dataclass
class UserSyncStatus:
    user_id: str
    username: str
    status: str
    error: str | None = None
    group_id: str | None = None


@dataclass
class GroupSyncStatus:
    group_id: str
    users: list[UserSyncStatus] = field(default_factory=list)

    @property
    def status(self) -> str:
        considered = [u for u in self.users if u.status != STATUS_SKIPPED]
        if considered and all(u.status == STATUS_SYNCED for u in considered):
            return STATUS_SYNCED
        return STATUS_UNSYNCED

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "status": self.status,
            "users": [
                {"user_id": u.user_id, "username": u.username, "status": u.status, "error": u.error}
                for u in self.users
            ],
        }


class _ReloadPass:
    """Per-invocation memo so each addon is reloaded at most once."""

    def __init__(self) -> None:
        self.results: dict[str, AddonReloadResult | None] = {}
        self.changes: list[AddonChange] = []


def primary_group_ids(groups: list[Group]) -> dict[str, str]:
    """Map user id to the first group (in the given order) that lists them."""
    primary: dict[str, str] = {}
    for group in groups:
        for user_id in group.member_ids:
            primary.setdefault(user_id, group.id)
    return primary


class GroupSyncService:
    def __init__(
        self,
        repository: SyncRepository,
        reconciler: UserReconciler,
        reload_service: AddonReloadService,
        dispatcher: NotificationDispatcher | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.repository = repository
        self.reconciler = reconciler
        self.reload_service = reload_service
        self.dispatcher = dispatcher
        self.concurrency = concurrency or get_settings_instance().sync_user_concurrency

    async def _load_account(self, account_id: str) -> Account:
        account = await self.repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    @staticmethod
    def _resolve_mode(account: Account, mode: str | None) -> str:
        resolved = mode or account.effective_sync_mode
        if resolved not in SYNC_MODES:
            raise ValidationError(f"Unknown sync mode '{resolved}'", details={"mode": resolved, "allowed": list(SYNC_MODES)})
        return resolved

    async def _reload_group_addons(self, group: Group, reload_pass: _ReloadPass) -> dict[str, dict[str, Any]]:
        overrides: dict[str, dict[str, Any]] = {}
        for link in group.addons or []:
            addon = link.addon
            if not link.is_enabled or addon is None or addon.is_active is False:
                continue
            if addon.id not in reload_pass.results:
                try:
                    result = await self.reload_service.refresh(addon)
                except AddonSyncException as e:
                    logger.warning("addon_reload_fallback", group_id=group.id, addon_id=addon.id, error=e.message)
                    result = None
                reload_pass.results[addon.id] = result
                if result is not None:
                    reload_pass.changes.append(AddonChange(addon_id=addon.id, name=addon.name, diff=result.diff))
            result = reload_pass.results[addon.id]
            if result is not None and result.filtered_manifest is not None:
                overrides[addon.id] = result.filtered_manifest
        return overrides

    async def _reconcile_users(
        self,
        users: list[User],
        entries: list[GroupAddonEntry],
        safe_mode: bool,
        group_id: str,
    ) -> list[ReconcileResult]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(user: User) -> ReconcileResult:
            async with semaphore:
                try:
                    return await self.reconciler.reconcile(user, entries, safe_mode)
                except Exception as e:
                    logger.exception("user_sync_crashed", group_id=group_id, user_id=user.id)
                    return ReconcileResult(user_id=user.id, failed_reason=FAILED_INTERNAL, error=str(e))

        return list(await asyncio.gather(*(_one(user) for user in users)))

    async def _sync_group(
        self,
        group: Group,
        account: Account,
        mode: str,
        primary: dict[str, str],
        reload_pass: _ReloadPass,
    ) -> GroupSyncResult:
        log = logger.bind(group_id=group.id, account_id=account.id, mode=mode)
        result = GroupSyncResult(group_id=group.id, group_name=group.name or "")

        overrides: dict[str, dict[str, Any]] = {}
        if mode == SYNC_MODE_ADVANCED:
            seen_before = set(reload_pass.results)
            overrides = await self._reload_group_addons(group, reload_pass)
            await self.repository.commit()
            result.diffs_by_addon = [c for c in reload_pass.changes if c.addon_id not in seen_before]

        entries = build_group_addon_entries(group, account, overrides)

        members = group.member_ids
        users_by_id = await self.repository.get_users(account.id, members)
        eligible: list[User] = []
        for user_id in members:
            user = users_by_id.get(user_id)
            owner = primary.get(user_id)
            if user is None or user.is_active is False or (owner is not None and owner != group.id):
                result.skipped_users += 1
                result.skipped_user_ids.append(user_id)
                continue
            eligible.append(user)

        log.info("group_sync_started", users=len(eligible), addons=len(entries))
        result.user_results = await self._reconcile_users(eligible, entries, bool(account.safe_mode), group.id)
        for user_result in result.user_results:
            if user_result.ok:
                result.synced_users += 1
                if user_result.changed:
                    result.changed_users += 1
            else:
                result.failed_users += 1

        log.info(
            "group_sync_completed",
            synced=result.synced_users,
            changed=result.changed_users,
            failed=result.failed_users,
            skipped=result.skipped_users,
        )
        return result

    async def sync_group(self, group_id: str, account_id: str, mode: str | None = None) -> GroupSyncResult:
        """Sync every member of one group.

        Args:
            group_id: Group to apply
            account_id: Owning account
            mode: "normal" or "advanced"; defaults to the account setting

        Raises:
            AccountNotFoundError: If the account does not exist
            GroupNotFoundError: If the group is not in the account
            ValidationError: If the mode is unknown

        """
        account = await self._load_account(account_id)
        resolved_mode = self._resolve_mode(account, mode)
        group = await self.repository.get_group(group_id, account_id)
        if group is None:
            raise GroupNotFoundError(group_id)

        primary = primary_group_ids(await self.repository.list_account_groups(account_id))
        return await self._sync_group(group, account, resolved_mode, primary, _ReloadPass())

    async def sync_account(
        self,
        account_id: str,
        mode: str | None = None,
        source_label: str = "API",
        source_logo: str | None = None,
    ) -> AccountSyncResult:
        """Sync every active group of an account and report the outcome."""
        account = await self._load_account(account_id)
        resolved_mode = self._resolve_mode(account, mode)
        groups = await self.repository.list_account_groups(account_id)
        primary = primary_group_ids(groups)
        reload_pass = _ReloadPass()

        result = AccountSyncResult(account_id=account_id, mode=resolved_mode)
        for group in groups:
            try:
                result.groups.append(await self._sync_group(group, account, resolved_mode, primary, reload_pass))
            except AddonSyncException as e:
                logger.warning("group_sync_failed", group_id=group.id, account_id=account_id, error=e.message)
                result.failed_groups.append(group.id)
        result.diffs_by_addon = list(reload_pass.changes)

        account.last_sync_at = datetime.now(UTC)
        await self.repository.commit()

        self.notify(account, result.groups, resolved_mode, source_label, source_logo)
        return result

    def notify(
        self,
        account: Account,
        group_results: list[GroupSyncResult],
        mode: str,
        source_label: str = "API",
        source_logo: str | None = None,
    ) -> None:
        """Emit a sync report to the account's webhook, if configured."""
        if self.dispatcher is None or not account.webhook_url:
            return
        changes: list[AddonChange] = []
        for group_result in group_results:
            changes.extend(group_result.diffs_by_addon)
        report = SyncReport(
            groups=len(group_results),
            users=sum(g.synced_users for g in group_results),
            mode=mode,
            addon_changes=changes,
            source_label=source_label or "API",
            source_logo=source_logo,
        )
        self.dispatcher.emit(account.webhook_url, report)

    async def get_group_sync_status(self, group_id: str, account_id: str) -> GroupSyncStatus:
        """Per-user sync status for a group, without writing anything."""
        account = await self._load_account(account_id)
        group = await self.repository.get_group(group_id, account_id)
        if group is None:
            raise GroupNotFoundError(group_id)

        primary = primary_group_ids(await self.repository.list_account_groups(account_id))
        entries = build_group_addon_entries(group, account)
        users_by_id = await self.repository.get_users(account_id, group.member_ids)

        status = GroupSyncStatus(group_id=group.id)
        for user_id in group.member_ids:
            user = users_by_id.get(user_id)
            if user is None:
                continue
            owner = primary.get(user_id)
            if user.is_active is False or (owner is not None and owner != group.id):
                status.users.append(UserSyncStatus(user.id, user.username, STATUS_SKIPPED))
                continue
            status.users.append(await self._user_status(user, entries, bool(account.safe_mode)))
        return status

    async def _load_user(self, user_id: str, account_id: str) -> User:
        user = await self.repository.get_user(user_id, account_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def _primary_group(self, user: User, account_id: str) -> Group | None:
        groups = await self.repository.list_account_groups(account_id)
        group_id = primary_group_ids(groups).get(user.id)
        return next((g for g in groups if g.id == group_id), None)

    async def sync_user(self, user_id: str, account_id: str, mode: str | None = None) -> UserSyncResult:
        """Sync one user against their primary group.

        A user in no active group is converged to an empty group collection:
        only their protected addons remain.

        Raises:
            AccountNotFoundError: If the account does not exist
            UserNotFoundError: If the user is not in the account
            UserDisabledError: If the user is inactive
            ValidationError: If the mode is unknown

        """
        account = await self._load_account(account_id)
        resolved_mode = self._resolve_mode(account, mode)
        user = await self._load_user(user_id, account_id)
        if user.is_active is False:
            raise UserDisabledError(user_id)

        group = await self._primary_group(user, account_id)
        overrides: dict[str, dict[str, Any]] = {}
        reload_pass = _ReloadPass()
        if group is not None and resolved_mode == SYNC_MODE_ADVANCED:
            overrides = await self._reload_group_addons(group, reload_pass)
            await self.repository.commit()
        entries = build_group_addon_entries(group, account, overrides) if group is not None else []

        logger.info(
            "user_sync_started",
            user_id=user.id,
            account_id=account_id,
            group_id=group.id if group else None,
            mode=resolved_mode,
        )
        (user_result,) = await self._reconcile_users(
            [user], entries, bool(account.safe_mode), group.id if group else ""
        )
        return UserSyncResult(
            user_id=user.id,
            mode=resolved_mode,
            result=user_result,
            group_id=group.id if group else None,
            addon_count=len(entries),
            diffs_by_addon=list(reload_pass.changes),
        )

    async def get_user_sync_status(self, user_id: str, account_id: str) -> UserSyncStatus:
        """Sync status of one user against their primary group, without writing anything."""
        account = await self._load_account(account_id)
        user = await self._load_user(user_id, account_id)
        group = await self._primary_group(user, account_id)
        group_id = group.id if group else None
        if user.is_active is False:
            return UserSyncStatus(user.id, user.username, STATUS_SKIPPED, group_id=group_id)

        entries = build_group_addon_entries(group, account) if group is not None else []
        status = await self._user_status(user, entries, bool(account.safe_mode))
        status.group_id = group_id
        return status

    async def _user_status(self, user: User, entries: list[GroupAddonEntry], safe_mode: bool) -> UserSyncStatus:
        try:
            auth_key = user.get_auth_key()
        except CredentialError:
            return UserSyncStatus(user.id, user.username, STATUS_CONNECT)
        try:
            plan = await self.reconciler.plan(user, auth_key, entries, safe_mode)
        except PlatformAuthError:
            return UserSyncStatus(user.id, user.username, STATUS_CONNECT)
        except PlatformError as e:
            return UserSyncStatus(user.id, user.username, STATUS_ERROR, error=e.message)
        return UserSyncStatus(user.id, user.username, STATUS_SYNCED if plan.already_synced else STATUS_UNSYNCED)


def create_group_sync_service(db: AsyncSession) -> GroupSyncService:
    """Wire a GroupSyncService against a database session with default collaborators."""
    repository = SyncRepository(db)
    return GroupSyncService(
        repository=repository,
        reconciler=UserReconciler(PlatformClient(), ExclusionPolicy()),
        reload_service=AddonReloadService(repository, ManifestFetcher()),
        dispatcher=get_notification_dispatcher(),
    )
