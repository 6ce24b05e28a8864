"""Account model: the tenant boundary for users, groups and addons."""

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel

SYNC_MODE_NORMAL = "normal"
SYNC_MODE_ADVANCED = "advanced"
SYNC_MODES = (SYNC_MODE_NORMAL, SYNC_MODE_ADVANCED)


class Account(BaseModel):
    __tablename__ = "accounts"

    name = Column(String, nullable=False)

    # Sync configuration
    sync_enabled = Column(Boolean, nullable=False, default=False)
    # "0" disables scheduled sync; otherwise "<N>m" (minutes) or "<N>d" (days)
    sync_frequency = Column(String(16), nullable=False, default="0")
    sync_mode = Column(String(16), nullable=False, default=SYNC_MODE_NORMAL)
    # Protect platform default addons from removal
    safe_mode = Column(Boolean, nullable=False, default=True)
    # Push operator-edited addon name/description/logo instead of the upstream ones
    use_custom_fields = Column(Boolean, nullable=False, default=True)

    # Notification target for sync reports
    webhook_url = Column(Text, nullable=True)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    next_sync_at = Column(DateTime(timezone=True), nullable=True, index=True)

    users = relationship(
        "User", back_populates="account", cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )
    groups = relationship(
        "Group", back_populates="account", cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )
    addons = relationship(
        "Addon", back_populates="account", cascade="all, delete-orphan", passive_deletes=True, lazy="raise"
    )

    @property
    def effective_sync_mode(self) -> str:
        return self.sync_mode if self.sync_mode in SYNC_MODES else SYNC_MODE_NORMAL
