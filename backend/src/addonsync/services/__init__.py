"""
Services package for the AddonSync backend.

This package contains the sync engine: manifest filtering and change
detection, the exclusion/protection policy, the per-user reconciler, the
group sync orchestrator, addon reloads, notifications and the scheduler.
"""

from .addon_reload_service import AddonReloadResult, AddonReloadService
from .exclusion_policy import ExclusionPolicy
from .group_sync_service import GroupSyncService, create_group_sync_service
from .manifest_fetcher import ManifestFetcher
from .notification_service import NotificationDispatcher, SyncReport
from .platform_client import PlatformClient
from .reconciler import ReconcileResult, UserReconciler
from .sync_repository import SyncRepository
from .user_link_service import UserLinkService

__all__ = [
    "AddonReloadResult",
    "AddonReloadService",
    "ExclusionPolicy",
    "GroupSyncService",
    "ManifestFetcher",
    "NotificationDispatcher",
    "PlatformClient",
    "ReconcileResult",
    "SyncReport",
    "SyncRepository",
    "UserLinkService",
    "UserReconciler",
    "create_group_sync_service",
]
