"""Group models: a named, ordered addon configuration applied to member users."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class Group(BaseModel):
    __tablename__ = "groups"

    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Ordered member user ids
    user_ids = Column(JSON, nullable=False, default=list)

    account = relationship("Account", back_populates="groups")
    addons = relationship(
        "GroupAddon",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupAddon.position",
        lazy="selectin",
    )

    @property
    def member_ids(self) -> list[str]:
        seen: set[str] = set()
        out = []
        for user_id in self.user_ids or []:
            if user_id and user_id not in seen:
                seen.add(user_id)
                out.append(str(user_id))
        return out


class GroupAddon(BaseModel):
    __tablename__ = "group_addons"

    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    addon_id = Column(String, ForeignKey("addons.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    is_enabled = Column(Boolean, nullable=False, default=True)

    group = relationship("Group", back_populates="addons")
    addon = relationship("Addon", back_populates="group_links", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("group_id", "position", name="uq_group_addons_group_position"),
        UniqueConstraint("group_id", "addon_id", name="uq_group_addons_group_addon"),
    )
