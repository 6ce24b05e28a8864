"""
Per-user reconciler.

Converges one user's remote addon collection to the collection the policy
computes for them: decrypt the auth key, read the remote collection, compute
the target, and write the whole target back only if it differs. Comparison
is by ordered fingerprint (canonical transport URL + manifest hash), so a
user who is already in sync costs one read and no write.

Failures are returned, not raised: every outcome is a ReconcileResult whose
``failed_reason`` says which phase failed ("auth", "read" or "write").
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from ..core.exceptions import CredentialError, PlatformAuthError, PlatformError, PlatformReadError, PlatformWriteError
from ..models import Account, Addon, Group, User
from ..schemas.manifest import AddonEntry
from .exclusion_policy import ExclusionPolicy, GroupAddonEntry, addon_fingerprint
from .platform_client import PlatformClient

logger = structlog.get_logger(__name__)

FAILED_AUTH = "auth"
FAILED_READ = "read"
FAILED_WRITE = "write"


@dataclass
class ReconcileResult:
    user_id: str
    changed: bool = False
    failed_reason: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_reason is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "changed": self.changed,
            "failed_reason": self.failed_reason,
            "error": self.error,
        }


@dataclass
class SyncPlan:
    current: list[AddonEntry] = field(default_factory=list)
    desired: list[AddonEntry] = field(default_factory=list)

    @property
    def already_synced(self) -> bool:
        return collections_match(self.current, self.desired)


def collections_match(current: list[AddonEntry], desired: list[AddonEntry]) -> bool:
    """Ordered fingerprint equality."""
    if len(current) != len(desired):
        return False
    return all(addon_fingerprint(a) == addon_fingerprint(b) for a, b in zip(current, desired, strict=True))


def apply_custom_fields(manifest: dict[str, Any], addon: Addon, use_custom_fields: bool) -> dict[str, Any]:
    """Overlay operator-edited name/description/logo on a manifest copy."""
    result = dict(manifest)
    if use_custom_fields:
        if addon.name:
            result["name"] = addon.name
        if addon.description is not None:
            result["description"] = addon.description
    if addon.custom_logo and addon.custom_logo.strip():
        result["logo"] = addon.custom_logo.strip()
    return result


def build_group_addon_entries(
    group: Group,
    account: Account,
    manifest_overrides: dict[str, dict[str, Any]] | None = None,
) -> list[GroupAddonEntry]:
    """Decrypt a group's enabled addons into wire entries, in position order.

    Args:
        group: Group with its addons relationship loaded
        account: Owning account (custom field setting)
        manifest_overrides: Filtered manifests by addon id that replace the
            stored ones (freshly reloaded manifests in advanced mode)

    Addons whose URL or manifest cannot be decrypted, or which have no
    manifest yet, are left out and logged.
    """
    overrides = manifest_overrides or {}
    entries: list[GroupAddonEntry] = []
    for link in sorted(group.addons or [], key=lambda ga: ga.position or 0):
        addon = link.addon
        if not link.is_enabled or addon is None or addon.is_active is False:
            continue
        try:
            manifest = overrides.get(addon.id) or addon.get_manifest()
            transport_url = addon.get_manifest_url()
        except CredentialError as e:
            logger.warning("group_addon_decrypt_failed", group_id=group.id, addon_id=addon.id, error=e.message)
            continue
        if not manifest:
            logger.warning("group_addon_missing_manifest", group_id=group.id, addon_id=addon.id)
            continue

        manifest = apply_custom_fields(manifest, addon, bool(account.use_custom_fields))
        entry = AddonEntry.model_validate(
            {
                "transportUrl": transport_url,
                "transportName": addon.name or manifest.get("name") or "",
                "manifest": manifest,
            }
        )
        entries.append(GroupAddonEntry(addon_id=addon.id, entry=entry))
    return entries


class UserReconciler:
    def __init__(self, platform: PlatformClient, policy: ExclusionPolicy) -> None:
        self.platform = platform
        self.policy = policy

    async def plan(self, user: User, auth_key: str, group_entries: list[GroupAddonEntry], safe_mode: bool) -> SyncPlan:
        """Read the user's collection and compute the target without writing."""
        current = await self.platform.get_collection(auth_key)
        desired = self.policy.resolve(
            group_entries,
            user.excluded_addon_ids,
            user.protected_addon_names,
            current,
            safe_mode,
        )
        return SyncPlan(current=current, desired=desired)

    async def reconcile(
        self,
        user: User,
        group_entries: list[GroupAddonEntry],
        safe_mode: bool,
    ) -> ReconcileResult:
        """Converge one user. Never raises for per-user failures."""
        log = logger.bind(user_id=user.id, account_id=user.account_id)

        try:
            auth_key = user.get_auth_key()
        except CredentialError as e:
            log.warning("user_sync_failed", phase=FAILED_AUTH, error=e.message)
            return ReconcileResult(user_id=user.id, failed_reason=FAILED_AUTH, error=e.message)

        try:
            plan = await self.plan(user, auth_key, group_entries, safe_mode)
        except PlatformAuthError as e:
            log.warning("user_sync_failed", phase=FAILED_AUTH, error=e.message)
            return ReconcileResult(user_id=user.id, failed_reason=FAILED_AUTH, error=e.message)
        except PlatformReadError as e:
            log.warning("user_sync_failed", phase=FAILED_READ, error=e.message)
            return ReconcileResult(user_id=user.id, failed_reason=FAILED_READ, error=e.message)
        except PlatformWriteError as e:
            # Only reachable through the null-collection repair write
            log.warning("user_sync_failed", phase=FAILED_READ, error=e.message)
            return ReconcileResult(user_id=user.id, failed_reason=FAILED_READ, error=e.message)

        if plan.already_synced:
            log.debug("user_already_synced", addons=len(plan.desired))
            return ReconcileResult(user_id=user.id, changed=False)

        try:
            await self.platform.set_collection(auth_key, plan.desired)
        except PlatformError as e:
            # Any rejection while writing, auth included, is a write failure
            log.warning("user_sync_failed", phase=FAILED_WRITE, error=e.message)
            return ReconcileResult(user_id=user.id, failed_reason=FAILED_WRITE, error=e.message)

        log.info("user_synced", before=len(plan.current), after=len(plan.desired))
        return ReconcileResult(user_id=user.id, changed=True)
