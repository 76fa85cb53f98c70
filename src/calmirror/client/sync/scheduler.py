"""Periodic and on-demand sync runs.

This module provides:
- SyncContext: Explicit per-instance sync state (in-progress flag, online flag)
- SyncScheduler: Drains the change queue and syncs every account, on an
  interval and on demand, dropping runs that overlap a running one
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from calmirror.client.api import APIError
from calmirror.client.sync.types import SyncError, SyncRunResult

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore
    from calmirror.client.sync.engine import SyncOrchestrator
    from calmirror.client.sync.processor import QueueProcessor

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "calendar_sync"


@dataclass
class SyncContext:
    """Mutable state shared by the scheduler and its triggers.

    Attributes:
        syncing: A run is in progress; new triggers are dropped.
        online: Connectivity as last reported.
        last_run_at: When the last run finished.
        last_result: Outcome of the last run.
    """

    syncing: bool = False
    online: bool = True
    last_run_at: float | None = None
    last_result: SyncRunResult | None = None


class SyncScheduler:
    """Runs queue drains and account syncs under a mutual-exclusion flag."""

    def __init__(
        self,
        context: SyncContext,
        orchestrator: SyncOrchestrator,
        processor: QueueProcessor,
        store: LocalStore,
        interval_minutes: int = 20,
        auto_sync: bool = True,
        probe: Callable[[], Awaitable[bool]] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the scheduler.

        Args:
            context: Shared sync state.
            orchestrator: Pulls remote changes.
            processor: Pushes queued local changes.
            store: Local store (source of accounts).
            interval_minutes: Period of automatic runs.
            auto_sync: Whether automatic runs are scheduled at all.
            probe: Connectivity check run before each scheduled run.
            clock: Time source (epoch seconds).
        """
        self._context = context
        self._orchestrator = orchestrator
        self._processor = processor
        self._store = store
        self._interval_minutes = interval_minutes
        self._auto_sync = auto_sync
        self._probe = probe
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def context(self) -> SyncContext:
        return self._context

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        """Start periodic runs. Must be called with an event loop running."""
        if self._scheduler is not None:
            return  # Already running
        if not self._auto_sync:
            logger.info("Auto-sync disabled in settings")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._sync_job,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=SYNC_JOB_ID,
            name="Periodic calendar sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Starting sync scheduler with {self._interval_minutes} minute interval")

    def shutdown(self) -> None:
        """Stop periodic runs."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    async def _sync_job(self) -> None:
        """Job function for scheduled syncs."""
        try:
            if self._probe is not None:
                self._context.online = await self._probe()
            await self.run_sync("scheduled")
        except Exception:
            logger.exception("Error during scheduled sync")

    async def set_online(self, online: bool) -> SyncRunResult | None:
        """Record connectivity; going back online triggers a run.

        Returns:
            The run triggered by reconnecting, if any.
        """
        was_online = self._context.online
        self._context.online = online
        if online and not was_online:
            logger.info("Network online - resuming sync")
            return await self.run_sync("reconnect")
        if not online and was_online:
            logger.info("Network offline - pausing sync")
        return None

    async def run_sync(self, reason: str = "manual") -> SyncRunResult:
        """Drain the queue, then refresh and sync every account.

        A run requested while another is in progress, or while offline, is
        dropped rather than queued.
        """
        if self._context.syncing:
            logger.info("Sync already in progress, skipping...")
            return SyncRunResult(reason=reason, skipped=True, skip_reason="in_progress")
        if not self._context.online:
            logger.info(f"Offline, skipping {reason} sync")
            return SyncRunResult(reason=reason, skipped=True, skip_reason="offline")

        self._context.syncing = True
        try:
            logger.info(f"Sync starting ({reason})...")
            result = SyncRunResult(reason=reason)
            result.drain = await self._processor.drain()

            for account in self._store.list_accounts():
                try:
                    await self._orchestrator.refresh_calendars(account.id)
                    result.accounts.append(await self._orchestrator.sync_account(account.id))
                except (APIError, SyncError) as e:
                    logger.error(f"Sync failed for account {account.id}: {e}")
                    result.errors[account.id] = str(e)

            self._context.last_result = result
            self._context.last_run_at = self._clock()
            logger.info("Sync complete")
            return result
        finally:
            self._context.syncing = False
