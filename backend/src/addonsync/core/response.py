"""Response helpers for the AddonSync API.

Every endpoint returns a single envelope: ``{"data": ...}`` on success or
``{"error": {"message", "code", "details"?}}`` on failure.
"""

import dataclasses
from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .logging import get_logger

logger = get_logger(__name__)


def to_serializable(obj):
    """Recursively convert Pydantic models, dataclasses, lists, and dicts to serializable types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, list):
        return [to_serializable(item) for item in obj]
    if isinstance(obj, dict):
        return {k: to_serializable(v) for k, v in obj.items()}
    return obj


class AddonSyncResponse:
    """Consistent single-envelope responses for API endpoints."""

    @staticmethod
    def success(
        data: Any, status_code: int = status.HTTP_200_OK, headers: dict[str, str] | None = None
    ) -> JSONResponse:
        response_content = jsonable_encoder({"data": to_serializable(data)})
        return JSONResponse(content=response_content, status_code=status_code, headers=headers)

    @staticmethod
    def error(
        message: str,
        code: str = "API_ERROR",
        details: Any | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: dict[str, str] | None = None,
    ) -> JSONResponse:
        """Create an error response with the error envelope.

        Args:
            message: Error message
            code: Error code for client handling
            details: Optional structured details
            status_code: HTTP status code (default: 400)
            headers: Optional response headers

        """
        error_content: dict[str, Any] = {"error": {"message": message, "code": code}}
        if details:
            error_content["error"]["details"] = to_serializable(details)

        logger.debug("Creating error response", extra={"status_code": status_code, "error_code": code})
        return JSONResponse(content=jsonable_encoder(error_content), status_code=status_code, headers=headers)
