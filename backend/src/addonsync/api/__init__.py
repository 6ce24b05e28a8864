"""
API package for the AddonSync backend.

This package contains FastAPI routers for all API endpoints.
"""

from .health import router as health_router
from .sync import router as sync_router

__all__ = [
    "health_router",
    "sync_router",
]
