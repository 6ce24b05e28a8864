"""
User re-link: replace a user's stored platform auth key.

A user whose sync fails with an "auth" reason needs a fresh key. The new key
is validated against the platform before it is encrypted and stored, so a
bad key never overwrites a working one.
"""

from dataclasses import dataclass
from typing import Any

from ..core.exceptions import UserNotFoundError, ValidationError
from ..core.logging import get_logger
from .platform_client import PlatformClient
from .sync_repository import SyncRepository

logger = get_logger(__name__)


@dataclass
class RelinkResult:
    user_id: str
    username: str
    platform_email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"user_id": self.user_id, "username": self.username, "platform_email": self.platform_email}


class UserLinkService:
    def __init__(self, repository: SyncRepository, platform: PlatformClient) -> None:
        self.repository = repository
        self.platform = platform

    async def relink_user(self, user_id: str, account_id: str, auth_key: str) -> RelinkResult:
        """Validate and store a new auth key for a user.

        Raises:
            ValidationError: If the key is blank
            UserNotFoundError: If the user is not in the account
            PlatformAuthError: If the platform rejects the key
            PlatformReadError: If the platform cannot be reached

        """
        auth_key = (auth_key or "").strip()
        if not auth_key:
            raise ValidationError("Auth key must not be empty", details={"field": "auth_key"})

        user = await self.repository.get_user(user_id, account_id)
        if user is None:
            raise UserNotFoundError(user_id)

        platform_user = await self.platform.validate_auth_key(auth_key)
        user.set_auth_key(auth_key)
        await self.repository.commit()

        logger.info("User re-linked", extra={"user_id": user.id, "account_id": account_id})
        return RelinkResult(user_id=user.id, username=user.username, platform_email=platform_user.get("email"))
