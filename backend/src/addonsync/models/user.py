"""User model: one end-user account on the addon platform.

The platform auth key is stored envelope-encrypted. Exclusion and
protection lists are JSON columns exposed through normalizing accessors so
services never see duplicates or untrimmed values.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from ..core.credentials import get_credential_gateway
from .base import BaseModel


def normalize_string_list(values: Iterable | None) -> list[str]:
    """Trim, drop empties and dedupe while keeping first-seen order."""
    out: list[str] = []
    seen: set[str] = set()
    for value in values or []:
        if value is None:
            continue
        item = str(value).strip()
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class User(BaseModel):
    __tablename__ = "users"

    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)

    username = Column(String, nullable=False)
    email = Column(String, nullable=True)

    # Platform auth key (envelope-encrypted, account-bound)
    auth_key_encrypted = Column(Text, nullable=True)

    # Ordered list of addon ids this user must not receive
    excluded_addons = Column(JSON, nullable=False, default=list)
    # Addon names that must never be removed from this user's collection
    protected_addons = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, nullable=False, default=True)

    account = relationship("Account", back_populates="users")

    __table_args__ = (Index("ix_users_account_username", "account_id", "username", unique=True),)

    @property
    def excluded_addon_ids(self) -> list[str]:
        return normalize_string_list(self.excluded_addons)

    def set_excluded_addons(self, addon_ids: Iterable[str]) -> None:
        self.excluded_addons = normalize_string_list(addon_ids)

    @property
    def protected_addon_names(self) -> list[str]:
        return normalize_string_list(self.protected_addons)

    def set_protected_addons(self, names: Iterable[str]) -> None:
        self.protected_addons = normalize_string_list(names)

    @property
    def has_auth_key(self) -> bool:
        return bool(self.auth_key_encrypted)

    def set_auth_key(self, auth_key: str) -> None:
        self.auth_key_encrypted = get_credential_gateway().encrypt(self.account_id, auth_key)

    def get_auth_key(self) -> str:
        """Decrypt the platform auth key. Raises CredentialError on failure."""
        return get_credential_gateway().decrypt(self.account_id, self.auth_key_encrypted)
