"""Sync API endpoints.

Thin wrappers over the sync services. Domain errors propagate to the global
AddonSyncException handler, which renders the error envelope.
"""

import logging

from fastapi import APIRouter, Body, Depends, Header, Path, Query
from pydantic import BaseModel, Field

from ..core.response import AddonSyncResponse
from ..services.addon_reload_service import AddonReloadService
from ..services.group_sync_service import GroupSyncService
from ..services.user_link_service import UserLinkService
from .dependencies import get_account_id, get_addon_reload_service, get_group_sync_service, get_user_link_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


class ReloadByPlatformIdRequest(BaseModel):
    platform_addon_id: str = Field(..., min_length=1, description="Manifest id published by the addon")


class RelinkRequest(BaseModel):
    auth_key: str = Field(..., min_length=1, description="New platform auth key")


@router.post("/groups/{group_id}", summary="Sync a group", description="Apply a group's addons to all its members.")
async def sync_group(
    group_id: str = Path(..., description="Group ID"),
    mode: str | None = Query(None, description="normal or advanced; defaults to the account setting"),
    source: str | None = Header(None, alias="Source"),
    source_logo: str | None = Header(None, alias="Source-Logo"),
    account_id: str = Depends(get_account_id),
    service: GroupSyncService = Depends(get_group_sync_service),
):
    logger.info("Group sync requested", extra={"group_id": group_id, "account_id": account_id, "mode": mode})
    result = await service.sync_group(group_id, account_id, mode=mode)

    account = await service.repository.get_account(account_id)
    if account is not None:
        service.notify(
            account,
            [result],
            mode or account.effective_sync_mode,
            source_label=source or "API",
            source_logo=source_logo,
        )
    return AddonSyncResponse.success(result)


@router.get("/groups/{group_id}/status", summary="Group sync status")
async def get_group_sync_status(
    group_id: str = Path(..., description="Group ID"),
    account_id: str = Depends(get_account_id),
    service: GroupSyncService = Depends(get_group_sync_service),
):
    """Report whether each member already has the group's addons, without syncing."""
    return AddonSyncResponse.success(await service.get_group_sync_status(group_id, account_id))


@router.post("/accounts", summary="Sync all groups of the account")
async def sync_account(
    mode: str | None = Query(None, description="normal or advanced; defaults to the account setting"),
    source: str | None = Header(None, alias="Source"),
    source_logo: str | None = Header(None, alias="Source-Logo"),
    account_id: str = Depends(get_account_id),
    service: GroupSyncService = Depends(get_group_sync_service),
):
    result = await service.sync_account(account_id, mode=mode, source_label=source or "API", source_logo=source_logo)
    return AddonSyncResponse.success(result)


@router.post("/addons/reload-by-platform-id", summary="Reload addons by manifest id")
async def reload_by_platform_addon_id(
    request: ReloadByPlatformIdRequest,
    account_id: str = Depends(get_account_id),
    service: AddonReloadService = Depends(get_addon_reload_service),
):
    results = await service.reload_by_platform_addon_id(request.platform_addon_id, account_id)
    return AddonSyncResponse.success({"reloaded": len(results), "addons": results})


@router.post("/addons/{addon_id}/reload", summary="Reload an addon from its upstream manifest")
async def reload_addon(
    addon_id: str = Path(..., description="Addon ID"),
    account_id: str = Depends(get_account_id),
    service: AddonReloadService = Depends(get_addon_reload_service),
):
    return AddonSyncResponse.success(await service.reload_addon(addon_id, account_id))


@router.post("/users/{user_id}", summary="Sync one user against their primary group")
async def sync_user(
    user_id: str = Path(..., description="User ID"),
    mode: str | None = Query(None, description="normal or advanced; defaults to the account setting"),
    account_id: str = Depends(get_account_id),
    service: GroupSyncService = Depends(get_group_sync_service),
):
    return AddonSyncResponse.success(await service.sync_user(user_id, account_id, mode=mode))


@router.get("/users/{user_id}/status", summary="User sync status")
async def get_user_sync_status(
    user_id: str = Path(..., description="User ID"),
    account_id: str = Depends(get_account_id),
    service: GroupSyncService = Depends(get_group_sync_service),
):
    return AddonSyncResponse.success(await service.get_user_sync_status(user_id, account_id))


@router.post("/users/{user_id}/relink", summary="Replace a user's platform auth key")
async def relink_user(
    user_id: str = Path(..., description="User ID"),
    request: RelinkRequest = Body(...),
    account_id: str = Depends(get_account_id),
    service: UserLinkService = Depends(get_user_link_service),
):
    # Never log the key itself
    logger.info("User relink requested", extra={"user_id": user_id, "account_id": account_id})
    return AddonSyncResponse.success(await service.relink_user(user_id, account_id, request.auth_key))
