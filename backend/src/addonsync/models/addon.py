"""Addon model: an account's configured addon and its manifests.

``original_manifest`` is the manifest as last fetched from upstream;
``manifest`` is that manifest filtered to the selected ``resources`` and
``catalogs``. ``manifest_hash`` is always the hash of the filtered manifest.
The manifest URL and both manifests are stored envelope-encrypted.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from ..core.credentials import get_credential_gateway
from .base import BaseModel


class Addon(BaseModel):
    __tablename__ = "addons"

    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)

    # Operator-facing fields (pushed instead of upstream ones when custom fields are on)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    custom_logo = Column(Text, nullable=True)

    # Manifest "id" as published by the addon
    platform_addon_id = Column(String, nullable=True, index=True)
    version = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    manifest_url_encrypted = Column(Text, nullable=False)
    original_manifest_encrypted = Column(Text, nullable=True)
    manifest_encrypted = Column(Text, nullable=True)
    manifest_hash = Column(String(64), nullable=True)

    # Selection: resource names and [{"type", "id"}] catalog keys
    resources = Column(JSON, nullable=False, default=list)
    catalogs = Column(JSON, nullable=False, default=list)

    account = relationship("Account", back_populates="addons")
    group_links = relationship(
        "GroupAddon", back_populates="addon", cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )

    __table_args__ = (Index("ix_addons_account_platform_id", "account_id", "platform_addon_id"),)

    @property
    def selected_resources(self) -> list[str]:
        return [str(r) for r in (self.resources or []) if r]

    @property
    def selected_catalogs(self) -> list[dict[str, str]]:
        return [
            {"type": str(c["type"]), "id": str(c["id"])}
            for c in (self.catalogs or [])
            if isinstance(c, dict) and c.get("type") and c.get("id")
        ]

    def get_manifest_url(self) -> str:
        return get_credential_gateway().decrypt(self.account_id, self.manifest_url_encrypted)

    def set_manifest_url(self, url: str) -> None:
        self.manifest_url_encrypted = get_credential_gateway().encrypt(self.account_id, url)

    def get_original_manifest(self) -> dict[str, Any] | None:
        if not self.original_manifest_encrypted:
            return None
        return get_credential_gateway().decrypt_json(self.account_id, self.original_manifest_encrypted)

    def get_manifest(self) -> dict[str, Any] | None:
        if not self.manifest_encrypted:
            return None
        return get_credential_gateway().decrypt_json(self.account_id, self.manifest_encrypted)

    def store_manifests(self, original: dict[str, Any], filtered: dict[str, Any], manifest_hash: str) -> None:
        gateway = get_credential_gateway()
        self.original_manifest_encrypted = gateway.encrypt_json(self.account_id, original)
        self.manifest_encrypted = gateway.encrypt_json(self.account_id, filtered)
        self.manifest_hash = manifest_hash
        if original.get("version") is not None:
            self.version = str(original["version"])
        if original.get("id"):
            self.platform_addon_id = str(original["id"])
