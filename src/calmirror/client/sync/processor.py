"""Queue processor pushing pending changes to the remote service.

This module provides:
- QueueProcessor: Drains the change queue in FIFO order

Each entry is re-read right before it is applied, so an entry already
removed by another drain is never applied twice. Updates and deletes of an
event with an unresolved conflict stay queued until the conflict is resolved. Failures increment the
entry's retry count; after the ceiling the entry stays in the queue as
failed until it is retried or discarded by hand.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from calmirror.client.api import APIError, NetworkError, NotFoundError
from calmirror.client.sync.errorlog import ErrorLog
from calmirror.client.sync.retry import BackoffExecutor
from calmirror.client.sync.types import (
    ChangeResult,
    DataIntegrityError,
    DrainResult,
    Event,
    PendingChange,
    SyncError,
    is_temporary_id,
)
from calmirror.core.config import SyncPolicy
from calmirror.core.types import ChangeOperation, ErrorKind

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore
    from calmirror.client.sync.types import RemoteCalendarAPI

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Applies queued local mutations to the remote service."""

    def __init__(
        self,
        store: LocalStore,
        client: RemoteCalendarAPI,
        executor: BackoffExecutor | None = None,
        policy: SyncPolicy | None = None,
        is_online: Callable[[], bool] | None = None,
        clock: Callable[[], float] = time.time,
        error_log: ErrorLog | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Local store holding the queue.
            client: Remote calendar client.
            executor: Backoff executor wrapping every remote call.
            policy: Retry ceiling and backoff tunables.
            is_online: Connectivity probe; drains are skipped while False.
            clock: Time source (epoch seconds).
            error_log: Sink for entries that reach the retry ceiling.
        """
        self._store = store
        self._client = client
        self._policy = policy or SyncPolicy()
        self._executor = executor or BackoffExecutor(self._policy)
        self._is_online = is_online
        self._clock = clock
        self._error_log = error_log or ErrorLog(store, clock=clock)
        self._draining = False

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def drain(self) -> DrainResult:
        """Apply every eligible queued change, oldest first.

        Returns:
            Applied and failed counts; ``skipped`` is set when another drain
            is in flight or the client is offline.
        """
        if self._draining:
            logger.debug("Drain already in progress, skipping")
            return DrainResult(skipped=True)
        if self._is_online is not None and not self._is_online():
            logger.info("Offline, not draining the change queue")
            return DrainResult(skipped=True)

        self._draining = True
        try:
            return await self._drain()
        finally:
            self._draining = False

    async def _drain(self) -> DrainResult:
        result = DrainResult()
        queued = self._store.list_pending_changes()
        if not queued:
            return result

        logger.info(f"Processing {len(queued)} pending changes...")
        max_retries = self._policy.queue_max_retries
        for snapshot in queued:
            change = self._store.get_pending_change(snapshot.id)
            if change is None:
                logger.debug(f"Change {snapshot.id} already applied, skipping")
                continue

            if change.is_failed(max_retries):
                logger.debug(f"Skipping change {change.id} - max retries reached")
                result.failed += 1
                result.results.append(
                    ChangeResult(
                        change_id=change.id,
                        operation=change.operation,
                        success=False,
                        event_id=change.event_id,
                        error=change.last_error or "Max retries reached",
                    )
                )
                continue

            if change.operation != ChangeOperation.CREATE and is_temporary_id(change.event_id):
                # The create ahead of it has not been confirmed yet
                logger.debug(f"Change {change.id} waits for creation of {change.event_id}")
                continue

            if (
                change.operation != ChangeOperation.CREATE
                and self._store.get_conflict(change.event_id) is not None
            ):
                # Resolution drops or keeps the entry; never push it before that
                logger.debug(f"Change {change.id} held: {change.event_id} has an open conflict")
                result.held += 1
                continue

            outcome = await self._process(change)
            if outcome.success:
                result.applied += 1
            else:
                result.failed += 1
            result.results.append(outcome)

        logger.info(
            f"Queue processing complete: {result.applied} successful, {result.failed} failed"
        )
        return result

    async def _process(self, change: PendingChange) -> ChangeResult:
        try:
            event_id = await self._apply(change)
        except (APIError, SyncError) as e:
            return self._record_failure(change, e)
        return ChangeResult(
            change_id=change.id,
            operation=change.operation,
            success=True,
            event_id=event_id,
        )

    async def _apply(self, change: PendingChange) -> str:
        """Run the remote call of an entry and confirm it locally.

        Returns:
            The canonical event id.
        """
        if change.operation == ChangeOperation.DELETE:
            try:
                await self._executor.execute(
                    functools.partial(
                        self._client.delete_event,
                        change.account_id,
                        change.calendar_id,
                        change.event_id,
                    )
                )
            except NotFoundError:
                logger.info(f"Event {change.event_id} already deleted remotely")
            self._store.confirm_delete(change.event_id, change.id)
            logger.debug(f"Successfully deleted event: {change.event_id}")
            return change.event_id

        if change.payload is None:
            raise DataIntegrityError(f"{change.operation.value} of {change.event_id} has no payload")

        if change.operation == ChangeOperation.CREATE:
            created = await self._executor.execute(
                functools.partial(
                    self._client.create_event,
                    change.account_id,
                    change.calendar_id,
                    change.payload,
                )
            )
            event = Event.from_remote(
                created, change.account_id, change.calendar_id, synced_at=self._clock()
            )
            self._store.replace_pending_event(change.event_id, event, change.id)
            logger.debug(f"Successfully created event: {event.id} (was {change.event_id})")
            return event.id

        updated = await self._executor.execute(
            functools.partial(
                self._client.update_event,
                change.account_id,
                change.calendar_id,
                change.event_id,
                change.payload,
            )
        )
        event = Event.from_remote(
            updated, change.account_id, change.calendar_id, synced_at=self._clock()
        )
        self._store.confirm_update(event, change.id)
        logger.debug(f"Successfully updated event: {change.event_id}")
        return event.id

    def _record_failure(self, change: PendingChange, error: Exception) -> ChangeResult:
        message = str(error) or type(error).__name__
        ceiling = self._policy.queue_max_retries
        change.retry_count += 1

        if change.retry_count >= ceiling:
            change.last_error = f"FAILED after {ceiling} attempts: {message}"
            logger.error(f"Max retries ({ceiling}) reached for change {change.id}: {message}")
            self._error_log.record(
                ErrorKind.NETWORK_ERROR if isinstance(error, NetworkError) else ErrorKind.API_ERROR,
                change.account_id,
                message,
                calendar_id=change.calendar_id,
                details={
                    "change_id": change.id,
                    "operation": change.operation.value,
                    "event_id": change.event_id,
                    "retry_count": change.retry_count,
                },
                exc=error,
            )
        else:
            change.last_error = message
            logger.warning(
                f"Failed to process change {change.id} "
                f"(attempt {change.retry_count}/{ceiling}): {message}"
            )

        self._store.update_pending_change(change)
        return ChangeResult(
            change_id=change.id,
            operation=change.operation,
            success=False,
            event_id=change.event_id,
            error=message,
        )
