"""Health check endpoint."""

import time

from fastapi import APIRouter

from ..core.cache_backend import InMemoryCacheBackend, get_cache_backend
from ..core.config import get_settings_instance
from ..core.database import check_db_connection
from ..core.logging import get_logger
from ..core.response import AddonSyncResponse

logger = get_logger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Health check")
async def health_check():
    """Database connectivity and cache backend in use."""
    settings = get_settings_instance()
    health_data = {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.version,
        "environment": settings.environment,
        "checks": {},
    }

    if await check_db_connection():
        health_data["checks"]["database"] = {"status": "healthy"}
    else:
        health_data["checks"]["database"] = {"status": "unhealthy"}
        health_data["status"] = "unhealthy"

    cache = await get_cache_backend()
    health_data["checks"]["cache"] = {
        "status": "healthy",
        "backend": "memory" if isinstance(cache, InMemoryCacheBackend) else "redis",
    }

    status_code = 200 if health_data["status"] == "healthy" else 503
    return AddonSyncResponse.success(health_data, status_code=status_code)
