"""
Persistence adapter for the sync engine.

All lookups are scoped by account. The sync services depend on this class
rather than on the session directly so they can be exercised against an
in-memory stand-in.
"""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Account, Addon, Group, GroupAddon, User


class SyncRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_account(self, account_id: str) -> Account | None:
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def get_group(self, group_id: str, account_id: str) -> Group | None:
        stmt = (
            select(Group)
            .options(selectinload(Group.addons).selectinload(GroupAddon.addon))
            .where(and_(Group.id == group_id, Group.account_id == account_id))
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_account_groups(self, account_id: str, active_only: bool = True) -> list[Group]:
        """Groups of an account, oldest first (this order defines primary groups)."""
        stmt = (
            select(Group)
            .options(selectinload(Group.addons).selectinload(GroupAddon.addon))
            .where(Group.account_id == account_id)
            .order_by(Group.created_at.asc(), Group.id.asc())
        )
        if active_only:
            stmt = stmt.where(Group.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_users(self, account_id: str, user_ids: Iterable[str]) -> dict[str, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        stmt = select(User).where(and_(User.account_id == account_id, User.id.in_(ids)))
        result = await self.db.execute(stmt)
        return {user.id: user for user in result.scalars().all()}

    async def get_user(self, user_id: str, account_id: str) -> User | None:
        stmt = select(User).where(and_(User.id == user_id, User.account_id == account_id))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_addon(self, addon_id: str, account_id: str) -> Addon | None:
        stmt = select(Addon).where(and_(Addon.id == addon_id, Addon.account_id == account_id))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_addons_by_platform_id(self, account_id: str, platform_addon_id: str) -> list[Addon]:
        stmt = (
            select(Addon)
            .where(and_(Addon.account_id == account_id, Addon.platform_addon_id == platform_addon_id))
            .order_by(Addon.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_due_accounts(self, now: datetime, limit: int) -> list[Account]:
        """Claim accounts whose scheduled sync is due (or never planned).

        Rows are locked with SKIP LOCKED so concurrent schedulers never pick
        the same account.
        """
        stmt = (
            select(Account)
            .where(
                and_(
                    Account.sync_enabled == True,  # noqa: E712
                    Account.sync_frequency != "0",
                    or_(Account.next_sync_at.is_(None), Account.next_sync_at <= now),
                )
            )
            .order_by(Account.next_sync_at.asc().nullsfirst())
            .with_for_update(skip_locked=True)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
