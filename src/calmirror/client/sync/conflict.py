"""Conflict detection between local and remote event versions.

This module provides:
- ConflictInfo: Outcome of comparing a local and a remote version
- detect_conflict: Both sides modified since the last successful sync?
- events_are_different: Do two versions differ in fields users care about?
- create_conflict, create_delete_conflict: Build conflict records
- resolve_with_local, resolve_with_remote: Pick the surviving version

Every function here is pure; persisting conflicts is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass

from calmirror.client.sync.types import (
    ConflictKind,
    ConflictRecord,
    ConflictResolutionError,
    Event,
)


@dataclass(frozen=True)
class ConflictInfo:
    """Result of conflict detection."""

    has_conflict: bool
    reason: str | None = None
    kind: ConflictKind | None = None


NO_CONFLICT = ConflictInfo(has_conflict=False)


def detect_conflict(local: Event, remote: Event, last_sync_at: float | None) -> ConflictInfo:
    """Classify a local/remote pair against the last successful sync.

    A conflict exists only when both sides were modified after
    ``last_sync_at``. Local edits are exactly the records still awaiting
    remote confirmation; a record written by a merge carries the server's
    update time and never counts as a local modification, even when a
    failed pass left ``last_sync_at`` behind. Identical content is never a
    conflict.

    Args:
        local: Current local record.
        remote: Incoming remote version.
        last_sync_at: Time of the last successful sync (None if never).

    Returns:
        Conflict information.
    """
    baseline = last_sync_at or 0.0
    local_modified = local.pending
    remote_modified = (remote.remote_updated_at or remote.updated_at) > baseline

    if not (local_modified and remote_modified):
        return NO_CONFLICT
    if not events_are_different(local, remote):
        return NO_CONFLICT
    return ConflictInfo(
        has_conflict=True,
        reason="Both local and remote versions modified since last sync",
        kind=ConflictKind.UPDATE_UPDATE,
    )


def _attendee_emails(event: Event) -> list[str]:
    return sorted(a.email.lower() for a in event.attendees)


def events_are_different(first: Event, second: Event) -> bool:
    """Compare title, times, description, location and attendee e-mails."""
    if first.summary != second.summary:
        return True
    if (first.description or None) != (second.description or None):
        return True
    if (first.location or None) != (second.location or None):
        return True
    if first.start.key() != second.start.key():
        return True
    if first.end.key() != second.end.key():
        return True
    return _attendee_emails(first) != _attendee_emails(second)


def create_conflict(local: Event, remote: Event, detected_at: float) -> ConflictRecord:
    """Build an update/update conflict carrying both snapshots."""
    return ConflictRecord(
        event_id=local.id,
        account_id=local.account_id,
        calendar_id=local.calendar_id,
        kind=ConflictKind.UPDATE_UPDATE,
        local_version=local,
        remote_version=remote,
        detected_at=detected_at,
    )


def create_delete_conflict(remote: Event, detected_at: float) -> ConflictRecord:
    """Build a delete/update conflict: deleted locally, modified remotely."""
    return ConflictRecord(
        event_id=remote.id,
        account_id=remote.account_id,
        calendar_id=remote.calendar_id,
        kind=ConflictKind.DELETE_UPDATE,
        local_version=None,
        remote_version=remote,
        detected_at=detected_at,
    )


def resolve_with_local(conflict: ConflictRecord) -> Event:
    """Return the local snapshot as the record to keep.

    Raises:
        ConflictResolutionError: If the local side deleted the event.
    """
    if conflict.local_version is None:
        raise ConflictResolutionError(
            f"No local version available for conflict on {conflict.event_id}"
        )
    return conflict.local_version.with_changes()


def resolve_with_remote(conflict: ConflictRecord) -> Event:
    """Return the remote snapshot as the record to keep."""
    return conflict.remote_version.with_changes(pending=False, deleted=False)
