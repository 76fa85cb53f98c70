"""Local, optimistic event mutations.

This module provides:
- EventEditor: Creates, updates and deletes events locally and queues the
  matching remote change, then kicks a best-effort background drain

Deletes are soft: the event is flagged, a tombstone is written and a
delete is queued. An event that only exists locally (temporary id) is
removed outright together with everything queued for it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from calmirror.client.sync.types import (
    NO_TITLE,
    Attendee,
    DataIntegrityError,
    Event,
    EventDraft,
    Tombstone,
    new_temporary_id,
)
from calmirror.core.types import ResponseStatus

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore
    from calmirror.client.sync.processor import QueueProcessor
    from calmirror.client.sync.queue import ChangeQueue

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {"summary", "description", "location", "start", "end", "status", "recurrence", "attendees"}
)


class EventEditor:
    """Applies user edits locally and queues them for the remote service."""

    def __init__(
        self,
        store: LocalStore,
        queue: ChangeQueue,
        processor: QueueProcessor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue = queue
        self._processor = processor
        self._clock = clock
        self._background: set[asyncio.Task[Any]] = set()

    def _require_event(self, event_id: str) -> Event:
        event = self._store.get_event(event_id)
        if event is None or event.deleted:
            raise DataIntegrityError(f"Event {event_id} not found")
        return event

    def create_event(self, account_id: str, calendar_id: str, draft: EventDraft) -> Event:
        """Create an event under a temporary id and queue its creation.

        Raises:
            DataIntegrityError: If the calendar is not known for the account.
        """
        calendar = self._store.get_calendar(calendar_id)
        if calendar is None or calendar.account_id != account_id:
            raise DataIntegrityError(f"Calendar {calendar_id} not found for account {account_id}")

        now = self._clock()
        event = Event(
            id=new_temporary_id(),
            account_id=account_id,
            calendar_id=calendar_id,
            summary=draft.summary or NO_TITLE,
            start=draft.start,
            end=draft.end,
            description=draft.description,
            location=draft.location,
            status=draft.status,
            recurrence=list(draft.recurrence),
            attendees=list(draft.attendees),
            pending=True,
            updated_at=now,
            created_at=now,
        )
        with self._store.transaction():
            self._store.upsert_event(event)
            self._queue.enqueue_create(account_id, calendar_id, event.id, event.to_payload())
        logger.info(f"Created event {event.id} in {calendar_id}")
        self._kick_drain()
        return event

    def update_event(self, event_id: str, **changes: Any) -> Event:
        """Apply field changes locally and queue an update.

        Raises:
            ValueError: If a field cannot be edited.
            DataIntegrityError: If the event does not exist.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        event = self._require_event(event_id)
        updated = event.with_changes(**changes, pending=True, updated_at=self._clock())
        with self._store.transaction():
            self._store.upsert_event(updated)
            self._queue.enqueue_update(
                updated.account_id, updated.calendar_id, updated.id, updated.to_payload()
            )
        logger.info(f"Updated event {event_id}")
        self._kick_drain()
        return updated

    def delete_event(self, event_id: str) -> None:
        """Soft-delete an event and queue the remote delete.

        Raises:
            DataIntegrityError: If the event does not exist.
        """
        event = self._require_event(event_id)

        if event.is_pending_identity:
            with self._store.transaction():
                self._store.delete_event(event_id)
                self._store.delete_pending_changes_for_event(event_id)
                self._store.delete_conflict(event_id)
            logger.info(f"Removed unsynced event {event_id}")
            return

        now = self._clock()
        with self._store.transaction():
            self._store.upsert_event(event.with_changes(deleted=True, pending=True, updated_at=now))
            self._store.add_tombstone(
                Tombstone(
                    event_id=event_id,
                    account_id=event.account_id,
                    calendar_id=event.calendar_id,
                    deleted_at=now,
                )
            )
            self._queue.enqueue_delete(event.account_id, event.calendar_id, event_id)
        logger.info(f"Event {event_id} soft-deleted with tombstone")
        self._kick_drain()

    def respond_to_invitation(
        self,
        event_id: str,
        email: str,
        response: ResponseStatus | str,
    ) -> Event:
        """Record an attendee's response and queue it.

        Raises:
            ValueError: If the response is not a known status.
            DataIntegrityError: If the event does not exist or ``email`` is
                not invited.
        """
        status = ResponseStatus(response).value
        event = self._require_event(event_id)

        attendees: list[Attendee] = []
        found = False
        for attendee in event.attendees:
            if attendee.email.lower() == email.lower():
                attendee = Attendee(
                    email=attendee.email,
                    display_name=attendee.display_name,
                    response_status=status,
                    organizer=attendee.organizer,
                )
                found = True
            attendees.append(attendee)
        if not found:
            raise DataIntegrityError(f"{email} is not an attendee of {event_id}")

        return self.update_event(event_id, attendees=attendees)

    def _kick_drain(self) -> None:
        """Start a drain in the background if an event loop is running."""
        if self._processor is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next scheduled or manual drain picks the change up
            return
        task = loop.create_task(self._processor.drain())
        self._background.add(task)
        task.add_done_callback(self._drain_done)

    def _drain_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background drain failed", exc_info=error)
