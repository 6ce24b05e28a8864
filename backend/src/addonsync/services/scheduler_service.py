"""Scheduled sync.

A single background loop polls schedulable sources every tick. The account
source claims accounts whose ``next_sync_at`` is due (FOR UPDATE SKIP LOCKED,
so several replicas can run the loop), advances their schedule first, then
runs a full account sync labelled "Auto-Sync". One failing account never
blocks the others.

Frequencies are stored on the account as ``"0"`` (off), ``"<N>m"`` (every N
minutes) or ``"<N>d"`` (at midnight UTC, every N days).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, NamedTuple, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings_instance
from ..core.database import get_db_session
from .group_sync_service import GroupSyncService, create_group_sync_service
from .sync_repository import SyncRepository

logger = logging.getLogger(__name__)

AUTO_SYNC_SOURCE_LABEL = "Auto-Sync"


class SyncFrequency(NamedTuple):
    unit: str  # "m" or "d"
    count: int


def parse_sync_frequency(value: str | None) -> SyncFrequency | None:
    """Parse ``"15m"`` / ``"3d"``. Returns None for ``"0"``, blank or malformed values."""
    raw = (value or "").strip().lower()
    if len(raw) < 2 or raw[-1] not in ("m", "d"):
        return None
    try:
        count = int(raw[:-1])
    except ValueError:
        return None
    if count <= 0:
        return None
    return SyncFrequency(unit=raw[-1], count=count)


def next_midnight(now: datetime) -> datetime:
    start_of_day = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day + timedelta(days=1)


def compute_next_sync_at(frequency: SyncFrequency, now: datetime) -> datetime:
    """Next run time after ``now`` for a parsed frequency."""
    if frequency.unit == "m":
        return now + timedelta(minutes=frequency.count)
    return next_midnight(now) + timedelta(days=frequency.count - 1)


class SchedulableSource(Protocol):
    """Interface for things the scheduler polls each tick."""

    @property
    def name(self) -> str:
        """Source name for logging."""
        ...

    async def run_due(self, db: AsyncSession, *, limit: int) -> dict[str, int]:
        """Run due work and return source-specific counters."""
        ...


class AccountSyncSource:
    """Runs account-wide syncs for accounts whose schedule is due."""

    def __init__(
        self,
        service_factory: Callable[[AsyncSession], GroupSyncService] = create_group_sync_service,
        repository_factory: Callable[[AsyncSession], SyncRepository] = SyncRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._service_factory = service_factory
        self._repository_factory = repository_factory
        self._clock = clock

    @property
    def name(self) -> str:
        return "account_sync"

    async def run_due(self, db: AsyncSession, *, limit: int) -> dict[str, int]:
        now = self._clock()
        repository = self._repository_factory(db)
        due_accounts = await repository.list_due_accounts(now, limit)
        if not due_accounts:
            return {"due": 0, "synced": 0, "failed": 0, "disabled": 0}

        # Advance every claimed schedule before running anything so a slow or
        # failing sync cannot make the account due again on the next tick.
        runnable: list[str] = []
        disabled = 0
        for account in due_accounts:
            frequency = parse_sync_frequency(account.sync_frequency)
            if frequency is None:
                logger.warning(
                    "Disabling scheduled sync with invalid frequency",
                    extra={"account_id": account.id, "sync_frequency": account.sync_frequency},
                )
                account.sync_enabled = False
                account.next_sync_at = None
                disabled += 1
                continue
            if account.next_sync_at is None:
                # Never planned: schedule only, first run happens at the next slot
                account.next_sync_at = compute_next_sync_at(frequency, now)
                continue
            account.next_sync_at = compute_next_sync_at(frequency, now)
            runnable.append(account.id)
        await repository.commit()

        synced = 0
        failed = 0
        service = self._service_factory(db)
        for account_id in runnable:
            try:
                result = await service.sync_account(account_id, source_label=AUTO_SYNC_SOURCE_LABEL)
                synced += 1
                logger.info(
                    "Scheduled sync completed",
                    extra={
                        "account_id": account_id,
                        "groups": len(result.groups),
                        "synced_users": result.synced_users,
                        "failed_users": result.failed_users,
                    },
                )
            except Exception as e:
                failed += 1
                await repository.rollback()
                logger.error("Scheduled sync failed: %s", e, extra={"account_id": account_id})

        return {"due": len(due_accounts), "synced": synced, "failed": failed, "disabled": disabled}


class UnifiedSchedulerService:
    """Scheduler that iterates over registered sources per tick."""

    def __init__(self, db: AsyncSession, sources: list[SchedulableSource]) -> None:
        self.db = db
        self.sources = sources

    async def tick(self, *, limit: int = 10) -> dict[str, Any]:
        """Run one tick across all sources, keyed by source name."""
        results: dict[str, Any] = {}
        for source in self.sources:
            try:
                results[source.name] = await source.run_due(self.db, limit=limit)
            except Exception as e:
                logger.warning("Scheduler source '%s' failed: %s", source.name, e)
                results[source.name] = {"error": str(e)}
        return results


async def start_scheduler(sources: list[SchedulableSource] | None = None) -> asyncio.Task:
    """Start the scheduler background task."""
    settings = get_settings_instance()

    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled by configuration")
        return asyncio.create_task(asyncio.sleep(0), name="scheduler:disabled")

    tick_interval = max(1, settings.scheduler_tick_seconds)
    batch_limit = max(1, settings.scheduler_batch_limit)
    active_sources: list[SchedulableSource] = sources if sources is not None else [AccountSyncSource()]

    logger.info(
        "Starting scheduler | tick=%ds batch=%d sources=%s",
        tick_interval,
        batch_limit,
        [s.name for s in active_sources],
    )

    async def _runner() -> None:
        while True:
            try:
                db = get_db_session()
                async with db as session:
                    svc = UnifiedSchedulerService(session, active_sources)
                    results = await svc.tick(limit=batch_limit)
                    has_activity = any(
                        r.get("due", 0) > 0 for r in results.values() if isinstance(r, dict) and "error" not in r
                    )
                    if has_activity:
                        logger.info("Scheduler tick | %s", results)
            except Exception as ex:
                logger.warning("Scheduler tick failed: %s", ex)
            finally:
                try:
                    await asyncio.sleep(tick_interval)
                except asyncio.CancelledError:
                    logger.info("Scheduler stopped")
                    break

    return asyncio.create_task(_runner(), name="scheduler:sync")
