"""
FastAPI dependencies for the AddonSync API.

Authentication happens upstream; the gateway in front of this service sets
the caller's account in the ``X-Account-Id`` header and every sync operation
is scoped to it.
"""

import logging
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db as core_get_db
from ..services.addon_reload_service import AddonReloadService
from ..services.group_sync_service import GroupSyncService, create_group_sync_service
from ..services.manifest_fetcher import ManifestFetcher
from ..services.platform_client import PlatformClient
from ..services.sync_repository import SyncRepository
from ..services.user_link_service import UserLinkService

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session dependency."""
    async for session in core_get_db():
        yield session


def get_account_id(x_account_id: str | None = Header(None, alias="X-Account-Id")) -> str:
    """Account scope of the caller."""
    account_id = (x_account_id or "").strip()
    if not account_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Account-Id header")
    return account_id


def get_group_sync_service(db: AsyncSession = Depends(get_db)) -> GroupSyncService:
    return create_group_sync_service(db)


def get_addon_reload_service(db: AsyncSession = Depends(get_db)) -> AddonReloadService:
    return AddonReloadService(SyncRepository(db), ManifestFetcher())


def get_user_link_service(db: AsyncSession = Depends(get_db)) -> UserLinkService:
    return UserLinkService(SyncRepository(db), PlatformClient())
