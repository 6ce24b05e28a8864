"""AddonSync - FastAPI Application

This module creates and configures the FastAPI application for AddonSync.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .api.health import router as health_router
from .api.sync import router as sync_router
from .core.cache_backend import close_cache_backend
from .core.config import get_settings_instance
from .core.database import close_db, init_db
from .core.exceptions import AddonSyncException
from .core.http_client import close_http_client
from .core.logging import get_logger, setup_logging
from .core.middleware import RequestIDMiddleware, TimingMiddleware
from .core.response import AddonSyncResponse
from .services.notification_service import get_notification_dispatcher
from .services.scheduler_service import start_scheduler

logger = get_logger(__name__)
settings = get_settings_instance()


def generate_error_id() -> str:
    """Generate a unique error ID for tracking."""
    return f"ERR-{uuid.uuid4().hex[:8].upper()}"


def get_request_context(request: Request) -> dict[str, Any]:
    """Extract request context for error logging (no headers; they may carry keys)."""
    return {
        "method": request.method,
        "path": request.url.path,
        "query_params": dict(request.query_params),
        "request_id": getattr(request.state, "request_id", None),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()

    logger.info("Starting AddonSync...")
    logger.info(f"Version: {settings.version}")
    logger.info(f"Environment: {settings.environment}")

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        # Keep serving; health reflects DB status
        logger.error(f"Failed to initialize database: {e}", exc_info=True)

    try:
        app.state.scheduler_task = await start_scheduler()
    except Exception as e:
        logger.warning(f"Failed to start scheduler: {e}")
        app.state.scheduler_task = None

    yield

    logger.info("Shutting down AddonSync...")
    task = getattr(app.state, "scheduler_task", None)
    if task is not None and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await get_notification_dispatcher().drain()
    await close_http_client()
    await close_cache_backend()
    await close_db()
    logger.info("AddonSync shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Addon reconciliation and sync API",
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app)
    setup_exception_handlers(app)
    setup_routes(app)

    logger.info("AddonSync FastAPI application created successfully")
    return app


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    """Render AddonSyncException, HTTPException and unexpected errors as error envelopes."""

    @app.exception_handler(AddonSyncException)
    async def addonsync_exception_handler(request: Request, exc: AddonSyncException):
        error_id = generate_error_id() if exc.status_code >= 500 else None
        if exc.status_code >= 500:
            logger.error(
                "AddonSync server error",
                extra={
                    "error_id": error_id,
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    "request_context": get_request_context(request),
                },
            )
        else:
            logger.warning(
                "AddonSync client error",
                extra={
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    "request_context": get_request_context(request),
                },
            )
        details = dict(exc.details)
        if error_id:
            details["error_id"] = error_id
        return AddonSyncResponse.error(
            exc.message, code=exc.error_code, details=details or None, status_code=exc.status_code
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 400:
            logger.warning(
                "HTTP client error",
                extra={"status_code": exc.status_code, "request_context": get_request_context(request)},
            )
        return AddonSyncResponse.error(
            str(exc.detail),
            code=f"HTTP_{exc.status_code}",
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None) or None,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        error_id = generate_error_id()
        logger.error(
            "Unhandled exception",
            extra={
                "error_id": error_id,
                "exception_type": type(exc).__name__,
                "request_context": get_request_context(request),
            },
            exc_info=settings.debug,
        )
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error", "error_id": error_id}},
        )


def setup_routes(app: FastAPI) -> None:
    """Configure application routes."""
    app.include_router(health_router, prefix=settings.api_v1_prefix)
    app.include_router(sync_router, prefix=settings.api_v1_prefix)


# Configure logging before the app exists; the lifespan call is a no-op afterwards
setup_logging()

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "addonsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
