"""Manual resolution of sync conflicts.

This module provides:
- ConflictResolver: Lists unresolved conflicts and applies the user's choice
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from calmirror.client.sync.conflict import resolve_with_local, resolve_with_remote
from calmirror.client.sync.types import (
    ConflictedEvent,
    ConflictKind,
    ConflictRecord,
    ConflictResolutionError,
    Event,
    ResolutionChoice,
    Tombstone,
)
from calmirror.core.types import ChangeOperation

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore
    from calmirror.client.sync.queue import ChangeQueue

logger = logging.getLogger(__name__)


class ConflictResolver:
    """Conflict surface: list conflicts and resolve them."""

    def __init__(
        self,
        store: LocalStore,
        queue: ChangeQueue,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue = queue
        self._clock = clock

    def list_conflicts(self, account_id: str | None = None) -> list[ConflictedEvent]:
        """Unresolved conflicts, oldest first."""
        return [
            ConflictedEvent(event=self._store.get_event(c.event_id), conflict=c)
            for c in self._store.list_conflicts(account_id=account_id)
        ]

    def get(self, event_id: str) -> ConflictedEvent | None:
        conflict = self._store.get_conflict(event_id)
        if conflict is None:
            return None
        return ConflictedEvent(event=self._store.get_event(event_id), conflict=conflict)

    def resolve(self, event_id: str, choice: ResolutionChoice | str) -> Event | None:
        """Apply a resolution.

        Args:
            event_id: Event in conflict.
            choice: local, remote or defer.

        Returns:
            The primary record after resolution (None when the local
            deletion wins).

        Raises:
            ConflictResolutionError: If there is no conflict for the event,
                or the chosen side does not exist.
        """
        choice = ResolutionChoice(choice)
        conflict = self._store.get_conflict(event_id)
        if conflict is None:
            raise ConflictResolutionError(f"No unresolved conflict for event {event_id}")

        if choice == ResolutionChoice.DEFER:
            logger.info(f"Conflict on {event_id} deferred")
            return self._store.get_event(event_id)
        if choice == ResolutionChoice.REMOTE:
            return self._keep_remote(conflict)
        if conflict.kind == ConflictKind.DELETE_UPDATE:
            self._keep_local_delete(conflict)
            return None
        return self._keep_local(conflict)

    def _keep_local(self, conflict: ConflictRecord) -> Event:
        now = self._clock()
        resolved = resolve_with_local(conflict).with_changes(
            pending=True, updated_at=now, last_synced_at=now
        )
        queued = self._store.list_pending_changes_for_event(conflict.event_id)
        with self._store.transaction():
            self._store.upsert_event(resolved)
            self._store.delete_conflict(conflict.event_id)
            if not any(c.operation == ChangeOperation.UPDATE for c in queued):
                self._queue.enqueue_update(
                    resolved.account_id, resolved.calendar_id, resolved.id, resolved.to_payload()
                )
        logger.info(f"Conflict on {conflict.event_id} resolved with local version")
        return resolved

    def _keep_local_delete(self, conflict: ConflictRecord) -> None:
        now = self._clock()
        queued = self._store.list_pending_changes_for_event(conflict.event_id)
        with self._store.transaction():
            self._store.delete_event(conflict.event_id)
            self._store.delete_conflict(conflict.event_id)
            # Newer than the remote edit, so the next fetch does not re-raise it
            self._store.add_tombstone(
                Tombstone(
                    event_id=conflict.event_id,
                    account_id=conflict.account_id,
                    calendar_id=conflict.calendar_id,
                    deleted_at=now,
                )
            )
            if not any(c.operation == ChangeOperation.DELETE for c in queued):
                self._queue.enqueue_delete(
                    conflict.account_id, conflict.calendar_id, conflict.event_id
                )
        logger.info(f"Conflict on {conflict.event_id} resolved with local deletion")

    def _keep_remote(self, conflict: ConflictRecord) -> Event:
        now = self._clock()
        resolved = resolve_with_remote(conflict).with_changes(last_synced_at=now)
        with self._store.transaction():
            self._store.delete_pending_changes_for_event(
                conflict.event_id, [ChangeOperation.UPDATE, ChangeOperation.DELETE]
            )
            self._store.delete_tombstone(conflict.event_id)
            self._store.upsert_event(resolved)
            self._store.delete_conflict(conflict.event_id)
        logger.info(f"Conflict on {conflict.event_id} resolved with remote version")
        return resolved
