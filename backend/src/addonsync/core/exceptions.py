"""Custom exceptions for the AddonSync backend.

Errors are scoped: credential, platform and upstream failures are caught
per user or per addon by the sync services and never abort a batch.
Lookup errors surface to API callers through the global exception handler.
"""

from typing import Any


class AddonSyncException(Exception):
    """Base exception class for the AddonSync backend."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Credential Exceptions
class CredentialError(AddonSyncException):
    """Raised when a stored secret cannot be encrypted or decrypted."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Credential error: {reason}",
            error_code="CREDENTIAL_ERROR",
            status_code=500,
            details=details or {"reason": reason},
        )


# Upstream manifest Exceptions
class UpstreamFetchError(AddonSyncException):
    """Raised when an addon manifest cannot be fetched from its upstream URL."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Failed to fetch addon manifest: {reason}",
            error_code="UPSTREAM_FETCH_ERROR",
            status_code=502,
            details=details or {"reason": reason},
        )


class ManifestValidationError(AddonSyncException):
    """Raised when a fetched manifest does not have the expected shape."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Invalid addon manifest: {reason}",
            error_code="MANIFEST_VALIDATION_ERROR",
            status_code=422,
            details=details or {"reason": reason},
        )


# Platform Exceptions
class PlatformError(AddonSyncException):
    """Base class for failures talking to the addon collection platform."""


class PlatformAuthError(PlatformError):
    """Raised when the platform rejects a user's auth key (invalid or expired session)."""

    def __init__(self, reason: str = "invalid or expired session", details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Platform authentication failed: {reason}",
            error_code="PLATFORM_AUTH_ERROR",
            status_code=401,
            details=details or {"reason": reason},
        )


class PlatformReadError(PlatformError):
    """Raised when a user's addon collection cannot be read."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Failed to read addon collection: {reason}",
            error_code="PLATFORM_READ_ERROR",
            status_code=502,
            details=details or {"reason": reason},
        )


class PlatformWriteError(PlatformError):
    """Raised when a user's addon collection cannot be written."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Failed to write addon collection: {reason}",
            error_code="PLATFORM_WRITE_ERROR",
            status_code=502,
            details=details or {"reason": reason},
        )


# Lookup Exceptions
class AccountNotFoundError(AddonSyncException):
    """Raised when an account is not found."""

    def __init__(self, account_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Account '{account_id}' not found",
            error_code="ACCOUNT_NOT_FOUND",
            status_code=404,
            details=details or {"account_id": account_id},
        )


class GroupNotFoundError(AddonSyncException):
    """Raised when a group is not found in the caller's account."""

    def __init__(self, group_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Group '{group_id}' not found",
            error_code="GROUP_NOT_FOUND",
            status_code=404,
            details=details or {"group_id": group_id},
        )


class UserNotFoundError(AddonSyncException):
    """Raised when a user is not found in the caller's account."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"User '{user_id}' not found",
            error_code="USER_NOT_FOUND",
            status_code=404,
            details=details or {"user_id": user_id},
        )


class AddonNotFoundError(AddonSyncException):
    """Raised when an addon is not found in the caller's account."""

    def __init__(self, addon_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Addon '{addon_id}' not found",
            error_code="ADDON_NOT_FOUND",
            status_code=404,
            details=details or {"addon_id": addon_id},
        )


class AddonDisabledError(AddonSyncException):
    """Raised when an operation targets an inactive addon."""

    def __init__(self, addon_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Addon '{addon_id}' is disabled",
            error_code="ADDON_DISABLED",
            status_code=400,
            details=details or {"addon_id": addon_id},
        )


class UserDisabledError(AddonSyncException):
    """Raised when a sync targets an inactive user."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"User '{user_id}' is disabled",
            error_code="USER_DISABLED",
            status_code=400,
            details=details or {"user_id": user_id},
        )


class ValidationError(AddonSyncException):
    """Raised when request input fails validation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details,
        )


# Database Exceptions
class DatabaseConnectionError(AddonSyncException):
    """Raised when there's a database connection error (network, auth, etc.)."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database connection error: {reason}",
            error_code="DATABASE_CONNECTION_ERROR",
            status_code=503,
            details=details or {"reason": reason},
        )


class DatabaseSessionError(AddonSyncException):
    """Raised when there's a database session management error."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Database session error: {reason}",
            error_code="DATABASE_SESSION_ERROR",
            status_code=500,
            details=details or {"reason": reason},
        )


# Cache Exceptions
class CacheConnectionError(AddonSyncException):
    """Raised when the cache backend cannot be reached."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Cache connection error: {reason}",
            error_code="CACHE_CONNECTION_ERROR",
            status_code=503,
            details=details or {"reason": reason},
        )
