"""Durable queue of local mutations awaiting remote confirmation.

This module provides:
- ChangeQueue: FIFO of pending creates, updates and deletes backed by the
  local store, with manual retry and discard of failed entries
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from calmirror.client.sync.types import (
    PendingChange,
    QueueError,
    is_temporary_id,
    new_change_id,
)
from calmirror.core.types import ChangeOperation

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class ChangeQueue:
    """FIFO of local mutations, persisted in the local store."""

    def __init__(
        self,
        store: LocalStore,
        clock: Callable[[], float] = time.time,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """Initialize the queue.

        Args:
            store: Local store holding the entries.
            clock: Time source for enqueue timestamps.
            max_retries: Failed attempts after which an entry needs manual
                attention.
        """
        self._store = store
        self._clock = clock
        self._max_retries = max_retries

    def __len__(self) -> int:
        return len(self._store.list_pending_changes())

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def enqueue(self, change: PendingChange) -> PendingChange:
        """Persist a change at the tail of the queue.

        Raises:
            QueueError: If a create or update carries no payload.
        """
        if change.operation != ChangeOperation.DELETE and change.payload is None:
            raise QueueError(f"{change.operation.value} of {change.event_id} requires a payload")
        if change.operation == ChangeOperation.CREATE and not is_temporary_id(change.event_id):
            raise QueueError(f"Create must target a temporary id, got {change.event_id}")
        self._store.add_pending_change(change)
        logger.debug(f"Added {change.operation.value} operation to queue: {change.id}")
        return change

    def _new(
        self,
        operation: ChangeOperation,
        account_id: str,
        calendar_id: str,
        event_id: str,
        payload: dict[str, Any] | None,
    ) -> PendingChange:
        return self.enqueue(
            PendingChange(
                id=new_change_id(),
                operation=operation,
                event_id=event_id,
                account_id=account_id,
                calendar_id=calendar_id,
                payload=payload,
                created_at=self._clock(),
            )
        )

    def enqueue_create(
        self,
        account_id: str,
        calendar_id: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> PendingChange:
        """Queue the remote creation of a temporary event."""
        return self._new(ChangeOperation.CREATE, account_id, calendar_id, event_id, payload)

    def enqueue_update(
        self,
        account_id: str,
        calendar_id: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> PendingChange:
        return self._new(ChangeOperation.UPDATE, account_id, calendar_id, event_id, payload)

    def enqueue_delete(self, account_id: str, calendar_id: str, event_id: str) -> PendingChange:
        return self._new(ChangeOperation.DELETE, account_id, calendar_id, event_id, None)

    def list(self) -> list[PendingChange]:
        """All entries in FIFO order."""
        return self._store.list_pending_changes()

    def failed(self) -> list[PendingChange]:
        """Entries that automatic draining has given up on."""
        return [c for c in self.list() if c.is_failed(self._max_retries)]

    def get(self, change_id: str) -> PendingChange | None:
        return self._store.get_pending_change(change_id)

    def _require(self, change_id: str) -> PendingChange:
        change = self._store.get_pending_change(change_id)
        if change is None:
            raise QueueError(f"No queued change with id {change_id}")
        return change

    def retry(self, change_id: str) -> PendingChange:
        """Make a failed entry eligible for automatic draining again.

        Raises:
            QueueError: If the entry does not exist.
        """
        change = self._require(change_id)
        change.retry_count = 0
        change.last_error = None
        self._store.update_pending_change(change)
        logger.info(f"Change {change_id} reset for retry")
        return change

    def discard(self, change_id: str) -> PendingChange:
        """Drop an entry and roll back its optimistic local effect.

        A discarded create removes the temporary event (and anything else
        queued for it); a discarded delete restores the event and removes
        its tombstone; a discarded update leaves the local content for the
        next sync to overwrite.

        Raises:
            QueueError: If the entry does not exist.
        """
        change = self._require(change_id)
        with self._store.transaction():
            self._store.delete_pending_change(change.id)
            if change.operation == ChangeOperation.CREATE:
                self._store.delete_event(change.event_id)
                self._store.delete_pending_changes_for_event(change.event_id)
                self._store.delete_conflict(change.event_id)
            else:
                remaining = self._store.list_pending_changes_for_event(change.event_id)
                event = self._store.get_event(change.event_id)
                if change.operation == ChangeOperation.DELETE:
                    self._store.delete_tombstone(change.event_id)
                if event is not None:
                    restored = event.with_changes(
                        pending=bool(remaining),
                        deleted=event.deleted and change.operation != ChangeOperation.DELETE,
                    )
                    self._store.upsert_event(restored)
        logger.info(f"Discarded {change.operation.value} of {change.event_id} ({change_id})")
        return change
