"""Sync orchestrator pulling remote calendars into the local store.

This module provides:
- SyncOrchestrator: Per-calendar and per-account synchronization

Each calendar pass:
    1. Computes the sliding window around "now"
    2. Lists events incrementally (sync token) or in full (window), page by page
    3. Merges every remote event: remote deletes, tombstone checks,
       inserts, conflict detection, overwrites
    4. Prunes events and tombstones that fell out of the window
    5. Re-surfaces unresolved conflicts
    6. Writes sync metadata (success, or error plus an error-log entry)
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from calmirror.client.api import APIError, SyncTokenExpiredError
from calmirror.client.sync.conflict import (
    create_conflict,
    create_delete_conflict,
    detect_conflict,
)
from calmirror.client.sync.errorlog import ErrorLog
from calmirror.client.sync.retry import BackoffExecutor
from calmirror.client.sync.types import (
    AccountSyncResult,
    Calendar,
    CalendarSyncError,
    DataIntegrityError,
    Event,
    SyncError,
    SyncMetadata,
    SyncResult,
)
from calmirror.client.sync.window import SyncWindow, compute_sync_window
from calmirror.core.config import SyncPolicy
from calmirror.core.types import ErrorKind, SyncStatus

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore
    from calmirror.client.sync.types import RemoteCalendarAPI

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Pulls remote events into the local store, one calendar at a time."""

    def __init__(
        self,
        store: LocalStore,
        client: RemoteCalendarAPI,
        executor: BackoffExecutor | None = None,
        policy: SyncPolicy | None = None,
        clock: Callable[[], float] = time.time,
        error_log: ErrorLog | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Local store.
            client: Remote calendar client.
            executor: Backoff executor wrapping every remote call.
            policy: Window and retry tunables.
            clock: Time source (epoch seconds).
            error_log: Sink for sync failures.
        """
        self._store = store
        self._client = client
        self._policy = policy or SyncPolicy()
        self._executor = executor or BackoffExecutor(self._policy)
        self._clock = clock
        self._error_log = error_log or ErrorLog(store, clock=clock)

    # === Calendars ===

    async def refresh_calendars(self, account_id: str) -> list[Calendar]:
        """Mirror the remote calendar list of an account.

        Calendars that disappeared remotely are removed locally together
        with their events and sync metadata.

        Returns:
            The account's calendars after the refresh.

        Raises:
            DataIntegrityError: If the account is unknown or has no primary
                calendar.
        """
        if self._store.get_account(account_id) is None:
            raise DataIntegrityError(f"Account not found: {account_id}")

        remote = await self._executor.execute(
            functools.partial(self._client.list_calendars, account_id)
        )
        if not any(c.primary for c in remote):
            raise DataIntegrityError(f"Primary calendar not found for account {account_id}")

        remote_ids = {c.id for c in remote}
        for item in remote:
            existing = self._store.get_calendar(item.id)
            self._store.upsert_calendar(
                Calendar(
                    id=item.id,
                    account_id=account_id,
                    summary=item.summary,
                    description=item.description,
                    color=item.color,
                    primary=item.primary,
                    access_role=item.access_role,
                    visible=existing.visible if existing else item.selected,
                )
            )

        for calendar in self._store.list_calendars(account_id):
            if calendar.id not in remote_ids:
                logger.info(f"Calendar {calendar.id} no longer exists remotely, removing")
                self._store.remove_calendar(calendar.id)

        return self._store.list_calendars(account_id)

    # === Account sync ===

    async def sync_account(self, account_id: str) -> AccountSyncResult:
        """Sync every calendar of an account.

        A failing calendar is recorded and the next one is synced anyway.

        Raises:
            DataIntegrityError: If the account is unknown.
        """
        if self._store.get_account(account_id) is None:
            raise DataIntegrityError(f"Account not found: {account_id}")

        account_result = AccountSyncResult(account_id=account_id)
        calendars = self._store.list_calendars(account_id)
        if not calendars:
            logger.info(f"No calendars found for account {account_id}")
            return account_result

        logger.info(f"Syncing {len(calendars)} calendars for account {account_id}")
        for calendar in calendars:
            try:
                result = await self.sync_calendar(account_id, calendar.id)
            except (APIError, SyncError) as e:
                # Already recorded by sync_calendar
                account_result.errors.append(
                    CalendarSyncError(calendar_id=calendar.id, error=str(e))
                )
                continue
            account_result.results.append(result)

        logger.info(
            f"Account sync complete: {account_result.calendars_processed} calendars, "
            f"+{account_result.total_added} ~{account_result.total_updated} "
            f"-{account_result.total_deleted} events"
        )
        return account_result

    # === Calendar sync ===

    async def sync_calendar(self, account_id: str, calendar_id: str) -> SyncResult:
        """Synchronize one calendar.

        Args:
            account_id: Owning account.
            calendar_id: Calendar to sync.

        Returns:
            Counts of added, updated, deleted and pruned records plus the ids
            of unresolved conflicts.

        Raises:
            DataIntegrityError: If the calendar is unknown locally.
            APIError: If the remote service failed after retries.
        """
        metadata = self._store.get_sync_metadata(calendar_id)
        sync_token = metadata.sync_token if metadata else None
        last_success = metadata.last_success_at if metadata else None
        window = compute_sync_window(self._clock(), self._policy)
        result = SyncResult(
            account_id=account_id, calendar_id=calendar_id, full_sync=sync_token is None
        )

        try:
            if self._store.get_calendar(calendar_id) is None:
                raise DataIntegrityError(f"Calendar not found: {calendar_id}")

            mode = "Full" if sync_token is None else "Incremental"
            logger.info(f"{mode} sync for calendar {calendar_id}")
            try:
                next_token = await self._pull(result, window, sync_token, last_success)
            except SyncTokenExpiredError:
                logger.warning(
                    f"Sync token expired for calendar {calendar_id}, falling back to full sync"
                )
                sync_token = None
                result = SyncResult(account_id=account_id, calendar_id=calendar_id, full_sync=True)
                next_token = await self._pull(result, window, None, last_success)

            result.events_pruned = self._prune_events(calendar_id, window)
            result.tombstones_pruned = self._prune_tombstones(calendar_id, window)
            result.conflicts = self._surface_conflicts(calendar_id)
            # A full listing without a token leaves no usable cursor
            result.sync_token = next_token or sync_token
        except Exception as e:
            self._record_failure(account_id, calendar_id, sync_token, last_success, e)
            raise

        finished = self._clock()
        self._store.save_sync_metadata(
            SyncMetadata(
                calendar_id=calendar_id,
                account_id=account_id,
                sync_token=result.sync_token,
                last_sync_at=finished,
                last_success_at=finished,
                last_sync_status=SyncStatus.SUCCESS,
            )
        )
        logger.info(
            f"Sync complete for calendar {calendar_id}: +{result.events_added} "
            f"~{result.events_updated} -{result.events_deleted + result.events_pruned}"
            + (f", {len(result.conflicts)} conflicts" if result.conflicts else "")
        )
        return result

    async def _pull(
        self,
        result: SyncResult,
        window: SyncWindow,
        sync_token: str | None,
        last_success: float | None,
    ) -> str | None:
        """Fetch every page and merge it. Returns the next sync token."""
        time_min, time_max = window.to_params()
        seen: set[str] = set()
        next_sync_token: str | None = None
        page_token: str | None = None

        while True:
            page = await self._executor.execute(
                functools.partial(
                    self._client.list_events,
                    result.account_id,
                    result.calendar_id,
                    time_min,
                    time_max,
                    sync_token=sync_token,
                    page_token=page_token,
                )
            )
            for item in page.items:
                event_id = item.get("id")
                if not event_id:
                    logger.warning(f"Skipping remote event without id in {result.calendar_id}")
                    continue
                if event_id in seen:
                    logger.debug(f"Event {event_id} returned twice in one pass, ignoring")
                    continue
                seen.add(event_id)
                self._merge(result, item, last_success)

            if page.next_sync_token:
                next_sync_token = page.next_sync_token
            page_token = page.next_page_token
            if not page_token:
                return next_sync_token

    def _merge(self, result: SyncResult, item: dict[str, Any], last_success: float | None) -> None:
        """Apply one remote event to the local store."""
        now = self._clock()
        try:
            remote = Event.from_remote(item, result.account_id, result.calendar_id, synced_at=now)
        except (KeyError, TypeError, ValueError) as e:
            raise DataIntegrityError(
                f"Malformed remote event {item.get('id')} in {result.calendar_id}: {e}"
            ) from e

        if remote.is_cancelled:
            if self._apply_remote_delete(remote.id):
                result.events_deleted += 1
            return

        conflict = self._store.get_conflict(remote.id)
        if conflict is not None:
            # Keep the primary record until the user decides
            conflict.remote_version = remote
            self._store.save_conflict(conflict)
            logger.debug(f"Refreshed remote snapshot of conflicted event {remote.id}")
            return

        tombstone = self._store.get_tombstone(remote.id)
        if tombstone is not None:
            if (remote.remote_updated_at or 0.0) > tombstone.deleted_at:
                logger.info(f"Conflict: event {remote.id} modified remotely after local delete")
                self._store.save_conflict(create_delete_conflict(remote, now))
            else:
                logger.debug(f"Skipping event {remote.id} - locally deleted")
            return

        local = self._store.get_event(remote.id)
        if local is None:
            self._store.upsert_event(remote)
            result.events_added += 1
            return

        info = detect_conflict(local, remote, last_success)
        if info.has_conflict:
            logger.info(f"Conflict detected for event {remote.id}: {info.reason}")
            self._store.save_conflict(create_conflict(local, remote, now))
            return

        if local.pending and (remote.remote_updated_at or 0.0) <= (last_success or 0.0):
            # Only the local side changed; the queue will push it
            return

        self._store.upsert_event(remote.with_changes(pending=local.pending))
        result.events_updated += 1

    def _apply_remote_delete(self, event_id: str) -> bool:
        """Forget an event deleted remotely. Returns True if it was stored."""
        with self._store.transaction():
            removed = self._store.delete_event(event_id)
            self._store.delete_conflict(event_id)
            self._store.delete_tombstone(event_id)
            self._store.delete_pending_changes_for_event(event_id)
        return removed

    def _prune_events(self, calendar_id: str, window: SyncWindow) -> int:
        """Delete events (and their conflicts) starting outside the window.

        Events still awaiting remote confirmation are kept.
        """
        pruned = 0
        for event in self._store.list_events(calendar_id):
            if window.contains(event.start_utc()):
                continue
            if event.pending or event.is_pending_identity:
                continue
            self._store.delete_event(event.id)
            self._store.delete_conflict(event.id)
            pruned += 1

        # Delete/update conflicts have no primary row to prune
        for conflict in self._store.list_conflicts(calendar_id=calendar_id):
            if self._store.get_event(conflict.event_id) is not None:
                continue
            if not window.contains(conflict.remote_version.start_utc()):
                self._store.delete_conflict(conflict.event_id)

        if pruned:
            logger.debug(f"Pruned {pruned} events outside sync window from {calendar_id}")
        return pruned

    def _prune_tombstones(self, calendar_id: str, window: SyncWindow) -> int:
        """Delete tombstones older than the window's lower bound."""
        pruned = 0
        for tombstone in self._store.list_tombstones():
            if tombstone.calendar_id != calendar_id:
                continue
            if tombstone.deleted_at < window.lower_bound:
                self._store.delete_tombstone(tombstone.event_id)
                pruned += 1
        if pruned:
            logger.debug(f"Pruned {pruned} tombstones outside sync window from {calendar_id}")
        return pruned

    def _surface_conflicts(self, calendar_id: str) -> list[str]:
        """Report every unresolved conflict of the calendar again."""
        event_ids = [c.event_id for c in self._store.list_conflicts(calendar_id=calendar_id)]
        self._store.mark_conflicts_surfaced(event_ids, self._clock())
        return event_ids

    def _record_failure(
        self,
        account_id: str,
        calendar_id: str,
        sync_token: str | None,
        last_success: float | None,
        error: Exception,
    ) -> None:
        message = str(error) or type(error).__name__
        logger.error(f"Sync failed for calendar {calendar_id}: {message}")
        self._store.save_sync_metadata(
            SyncMetadata(
                calendar_id=calendar_id,
                account_id=account_id,
                sync_token=sync_token,
                last_sync_at=self._clock(),
                last_success_at=last_success,
                last_sync_status=SyncStatus.ERROR,
                error_message=message,
            )
        )
        self._error_log.record(
            ErrorKind.SYNC_FAILURE,
            account_id,
            message,
            calendar_id=calendar_id,
            exc=error,
        )
