"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, DataIntegrityError, ConflictResolutionError, QueueError: Exceptions
- EventTime, Attendee, Event: The local event model
- EventIdentity: Pending (temporary id) vs confirmed (remote id) events
- PendingChange, Tombstone, SyncMetadata, ErrorLogEntry: Durable bookkeeping
- ConflictRecord, ConflictedEvent: Conflicts kept beside the primary record
- Calendar, Account: Collections and owners of events
- SyncResult, AccountSyncResult, ChangeResult, DrainResult, SyncRunResult:
  Operation results
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Protocol

from calmirror.core.types import (
    ChangeOperation,
    ErrorKind,
    EventStatus,
    ResponseStatus,
    SyncStatus,
)

if TYPE_CHECKING:
    from calmirror.client.api import EventsPage, RemoteCalendar

TEMP_ID_PREFIX = "temp-"

NO_TITLE = "(No title)"


class SyncError(Exception):
    """Base exception for sync errors."""


class DataIntegrityError(SyncError):
    """Local state required by an operation is missing or inconsistent."""


class ConflictResolutionError(SyncError):
    """A conflict cannot be resolved the way it was asked to be."""


class QueueError(SyncError):
    """A queued change is malformed or unknown."""


def new_temporary_id() -> str:
    """Generate an identifier for an event not yet known to the remote service."""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(event_id: str) -> bool:
    """Check whether an event id was generated locally."""
    return event_id.startswith(TEMP_ID_PREFIX)


def new_change_id() -> str:
    """Generate an identifier for a queued change."""
    return f"change-{uuid.uuid4().hex}"


def parse_timestamp(value: str | None) -> float | None:
    """Parse an RFC 3339 timestamp into epoch seconds."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.timestamp()


def format_timestamp(value: float) -> str:
    """Format epoch seconds as an RFC 3339 UTC timestamp."""
    return datetime.fromtimestamp(value, tz=UTC).isoformat().replace("+00:00", "Z")


class EventIdentity(Enum):
    """Whether an event has been confirmed by the remote service."""

    PENDING = auto()  # Temporary local id, create not yet applied remotely
    CONFIRMED = auto()  # Canonical id assigned by the remote service


@dataclass(frozen=True)
class EventTime:
    """Start or end of an event.

    Timed events carry ``date_time`` (timezone-aware); all-day events carry
    ``date_only``.
    """

    date_time: datetime | None = None
    date_only: date | None = None
    time_zone: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EventTime | None:
        """Create from a ``{"dateTime", "date", "timeZone"}`` dictionary."""
        if not data:
            return None
        date_time = None
        if data.get("dateTime"):
            date_time = datetime.fromisoformat(data["dateTime"])
            if date_time.tzinfo is None:
                date_time = date_time.replace(tzinfo=UTC)
        date_only = date.fromisoformat(data["date"]) if data.get("date") else None
        return cls(date_time=date_time, date_only=date_only, time_zone=data.get("timeZone"))

    def to_dict(self) -> dict[str, str]:
        """Serialize to the remote service's representation."""
        data: dict[str, str] = {}
        if self.date_time is not None:
            data["dateTime"] = self.date_time.isoformat()
        if self.date_only is not None:
            data["date"] = self.date_only.isoformat()
        if self.time_zone:
            data["timeZone"] = self.time_zone
        return data

    @property
    def is_all_day(self) -> bool:
        return self.date_time is None and self.date_only is not None

    def as_utc(self) -> datetime | None:
        """Instant of this time in UTC (all-day dates start at midnight UTC)."""
        if self.date_time is not None:
            return self.date_time.astimezone(UTC)
        if self.date_only is not None:
            return datetime.combine(self.date_only, time.min, tzinfo=UTC)
        return None

    def key(self) -> str | None:
        """Comparable representation ignoring the display time zone."""
        instant = self.as_utc()
        if self.is_all_day and self.date_only is not None:
            return self.date_only.isoformat()
        return instant.isoformat() if instant else None


@dataclass(frozen=True)
class Attendee:
    """An invited participant of an event."""

    email: str
    display_name: str | None = None
    response_status: str = ResponseStatus.NEEDS_ACTION.value
    organizer: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attendee:
        """Create from API response dictionary."""
        return cls(
            email=data.get("email") or "",
            display_name=data.get("displayName"),
            response_status=data.get("responseStatus") or ResponseStatus.NEEDS_ACTION.value,
            organizer=bool(data.get("organizer", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"email": self.email, "responseStatus": self.response_status}
        if self.display_name:
            data["displayName"] = self.display_name
        if self.organizer:
            data["organizer"] = True
        return data


@dataclass
class Event:
    """A calendar event as mirrored in the local store.

    Attributes:
        id: Remote id, or a ``temp-`` id until the create is confirmed.
        account_id: Owning account.
        calendar_id: Owning calendar.
        summary: Title.
        start: Start time (instant or all-day date).
        end: End time (instant or all-day date).
        description: Optional free text.
        location: Optional location.
        status: confirmed, tentative or cancelled.
        recurrence: RRULE/EXDATE lines of a recurring series.
        recurring_event_id: Parent series of a modified occurrence.
        original_start_time: Original start of a modified occurrence.
        attendees: Invited participants.
        deleted: Soft-deleted locally, delete not yet confirmed remotely.
        pending: Local changes not yet confirmed by the remote service.
        updated_at: Last local update (epoch seconds).
        remote_updated_at: Last known remote update (epoch seconds).
        last_synced_at: When the record last matched the remote service.
        created_at: Creation time (epoch seconds).
    """

    id: str
    account_id: str
    calendar_id: str
    summary: str
    start: EventTime
    end: EventTime
    description: str | None = None
    location: str | None = None
    status: str = EventStatus.CONFIRMED.value
    recurrence: list[str] = field(default_factory=list)
    recurring_event_id: str | None = None
    original_start_time: EventTime | None = None
    attendees: list[Attendee] = field(default_factory=list)
    deleted: bool = False
    pending: bool = False
    updated_at: float = 0.0
    remote_updated_at: float | None = None
    last_synced_at: float | None = None
    created_at: float = 0.0

    @property
    def identity(self) -> EventIdentity:
        """Pending until the remote service has assigned the id."""
        if is_temporary_id(self.id):
            return EventIdentity.PENDING
        return EventIdentity.CONFIRMED

    @property
    def is_pending_identity(self) -> bool:
        return self.identity is EventIdentity.PENDING

    @property
    def is_cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED.value

    def start_utc(self) -> datetime | None:
        return self.start.as_utc()

    def with_changes(self, **changes: Any) -> Event:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_remote(
        cls,
        data: dict[str, Any],
        account_id: str,
        calendar_id: str,
        synced_at: float | None = None,
    ) -> Event:
        """Create from a remote event resource.

        Args:
            data: Event resource as returned by the remote service.
            account_id: Owning account.
            calendar_id: Calendar the event was listed from.
            synced_at: Stamp for ``last_synced_at`` (None leaves it unset).

        Returns:
            The local representation, not pending. Its ``updated_at``
            equals the remote update time.
        """
        updated = parse_timestamp(data.get("updated"))
        created = parse_timestamp(data.get("created"))
        fallback = synced_at or 0.0
        return cls(
            id=data["id"],
            account_id=account_id,
            calendar_id=calendar_id,
            summary=data.get("summary") or NO_TITLE,
            description=data.get("description"),
            location=data.get("location"),
            start=EventTime.from_dict(data.get("start")) or EventTime(),
            end=EventTime.from_dict(data.get("end")) or EventTime(),
            status=data.get("status") or EventStatus.CONFIRMED.value,
            recurrence=list(data.get("recurrence") or []),
            recurring_event_id=data.get("recurringEventId"),
            original_start_time=EventTime.from_dict(data.get("originalStartTime")),
            attendees=[Attendee.from_dict(a) for a in data.get("attendees") or []],
            updated_at=updated if updated is not None else fallback,
            remote_updated_at=updated,
            last_synced_at=synced_at,
            created_at=created if created is not None else fallback,
        )

    def to_payload(self) -> dict[str, Any]:
        """Build the request body sent to the remote service."""
        payload: dict[str, Any] = {
            "summary": self.summary,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "status": self.status,
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.location is not None:
            payload["location"] = self.location
        if self.recurrence:
            payload["recurrence"] = list(self.recurrence)
        if self.attendees:
            payload["attendees"] = [a.to_dict() for a in self.attendees]
        return payload

    def to_dict(self) -> dict[str, Any]:
        """Serialize every field for local persistence."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "calendar_id": self.calendar_id,
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "status": self.status,
            "recurrence": list(self.recurrence),
            "recurring_event_id": self.recurring_event_id,
            "original_start_time": (
                self.original_start_time.to_dict() if self.original_start_time else None
            ),
            "attendees": [a.to_dict() for a in self.attendees],
            "deleted": self.deleted,
            "pending": self.pending,
            "updated_at": self.updated_at,
            "remote_updated_at": self.remote_updated_at,
            "last_synced_at": self.last_synced_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Inverse of :meth:`to_dict`."""
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            calendar_id=data["calendar_id"],
            summary=data.get("summary") or NO_TITLE,
            description=data.get("description"),
            location=data.get("location"),
            start=EventTime.from_dict(data.get("start")) or EventTime(),
            end=EventTime.from_dict(data.get("end")) or EventTime(),
            status=data.get("status") or EventStatus.CONFIRMED.value,
            recurrence=list(data.get("recurrence") or []),
            recurring_event_id=data.get("recurring_event_id"),
            original_start_time=EventTime.from_dict(data.get("original_start_time")),
            attendees=[Attendee.from_dict(a) for a in data.get("attendees") or []],
            deleted=bool(data.get("deleted", False)),
            pending=bool(data.get("pending", False)),
            updated_at=float(data.get("updated_at") or 0.0),
            remote_updated_at=data.get("remote_updated_at"),
            last_synced_at=data.get("last_synced_at"),
            created_at=float(data.get("created_at") or 0.0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> Event:
        return cls.from_dict(json.loads(raw))


@dataclass
class EventDraft:
    """User input for a new event, before any id is assigned."""

    summary: str
    start: EventTime
    end: EventTime
    description: str | None = None
    location: str | None = None
    recurrence: list[str] = field(default_factory=list)
    attendees: list[Attendee] = field(default_factory=list)
    status: str = EventStatus.CONFIRMED.value


# =============================================================================
# Durable bookkeeping
# =============================================================================


@dataclass
class PendingChange:
    """A local mutation waiting for remote confirmation.

    Attributes:
        id: Queue entry id.
        operation: create, update or delete.
        event_id: Target event (temporary id for creates).
        account_id: Owning account.
        calendar_id: Owning calendar.
        payload: Remote request body for create/update.
        created_at: Enqueue time, defines FIFO order.
        retry_count: Failed attempts so far.
        last_error: Message of the last failure.
    """

    id: str
    operation: ChangeOperation
    event_id: str
    account_id: str
    calendar_id: str
    payload: dict[str, Any] | None = None
    created_at: float = 0.0
    retry_count: int = 0
    last_error: str | None = None

    def is_failed(self, max_retries: int) -> bool:
        """Whether automatic draining has given up on this entry."""
        return self.retry_count >= max_retries


@dataclass
class Tombstone:
    """Marker of a local delete that must not be undone by a stale fetch."""

    event_id: str
    account_id: str
    calendar_id: str
    deleted_at: float


@dataclass
class SyncMetadata:
    """Per-calendar sync bookkeeping.

    Attributes:
        calendar_id: Calendar this record belongs to.
        account_id: Owning account.
        sync_token: Opaque cursor; present means incremental sync is possible.
        last_sync_at: Time of the last attempt, successful or not.
        last_success_at: Time of the last successful attempt.
        last_sync_status: Outcome of the last attempt.
        error_message: Failure message of the last attempt.
    """

    calendar_id: str
    account_id: str
    sync_token: str | None = None
    last_sync_at: float = 0.0
    last_success_at: float | None = None
    last_sync_status: SyncStatus = SyncStatus.SUCCESS
    error_message: str | None = None


@dataclass
class ErrorLogEntry:
    """Operator-visible record of an unrecoverable failure."""

    id: str
    timestamp: float
    kind: ErrorKind
    account_id: str
    message: str
    calendar_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class Calendar:
    """A calendar owned by an account."""

    id: str
    account_id: str
    summary: str
    description: str | None = None
    color: str | None = None
    primary: bool = False
    access_role: str = "owner"
    visible: bool = True


@dataclass
class Account:
    """A remote account and its credentials."""

    id: str
    email: str
    access_token: str | None = None
    refresh_token: str | None = None
    token_expiry: float = 0.0


# =============================================================================
# Conflicts
# =============================================================================


class ConflictKind(str, Enum):
    """How the two sides diverged."""

    UPDATE_UPDATE = "update_update"  # Both sides edited since the last sync
    DELETE_UPDATE = "delete_update"  # Deleted locally, edited remotely


class ResolutionChoice(str, Enum):
    """Manual decision on a conflict."""

    LOCAL = "local"
    REMOTE = "remote"
    DEFER = "defer"


@dataclass
class ConflictRecord:
    """Both sides of an unresolved conflict, kept beside the primary record.

    Attributes:
        event_id: Event in conflict (at most one record per id).
        account_id: Owning account.
        calendar_id: Owning calendar.
        kind: update/update or delete/update.
        local_version: Local snapshot (None when the local side deleted).
        remote_version: Remote snapshot.
        detected_at: When the conflict was first materialized.
        surfaced_count: Sync passes that reported this conflict.
        last_surfaced_at: Last time a sync pass reported it.
    """

    event_id: str
    account_id: str
    calendar_id: str
    kind: ConflictKind
    local_version: Event | None
    remote_version: Event
    detected_at: float
    surfaced_count: int = 0
    last_surfaced_at: float | None = None


@dataclass
class ConflictedEvent:
    """Primary record joined with its conflict snapshots."""

    event: Event | None
    conflict: ConflictRecord

    @property
    def event_id(self) -> str:
        return self.conflict.event_id

    @property
    def has_conflict(self) -> bool:
        return True

    @property
    def local_version(self) -> Event | None:
        return self.conflict.local_version

    @property
    def remote_version(self) -> Event:
        return self.conflict.remote_version


# =============================================================================
# Operation results
# =============================================================================


@dataclass
class SyncResult:
    """Result of syncing one calendar."""

    account_id: str
    calendar_id: str
    events_added: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    events_pruned: int = 0
    tombstones_pruned: int = 0
    conflicts: list[str] = field(default_factory=list)
    full_sync: bool = False
    sync_token: str | None = None

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return len(self.conflicts) > 0


@dataclass
class CalendarSyncError:
    """A calendar that failed during an account sync."""

    calendar_id: str
    error: str


@dataclass
class AccountSyncResult:
    """Result of syncing every calendar of an account."""

    account_id: str
    results: list[SyncResult] = field(default_factory=list)
    errors: list[CalendarSyncError] = field(default_factory=list)

    @property
    def calendars_processed(self) -> int:
        return len(self.results)

    @property
    def total_added(self) -> int:
        return sum(r.events_added for r in self.results)

    @property
    def total_updated(self) -> int:
        return sum(r.events_updated for r in self.results)

    @property
    def total_deleted(self) -> int:
        return sum(r.events_deleted + r.events_pruned for r in self.results)

    @property
    def conflicts(self) -> list[str]:
        return [event_id for r in self.results for event_id in r.conflicts]


@dataclass
class ChangeResult:
    """Result of applying one queued change."""

    change_id: str
    operation: ChangeOperation
    success: bool
    event_id: str | None = None
    error: str | None = None


@dataclass
class DrainResult:
    """Result of draining the change queue."""

    applied: int = 0
    failed: int = 0
    held: int = 0
    skipped: bool = False
    results: list[ChangeResult] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return self.applied + self.failed


@dataclass
class SyncRunResult:
    """Result of one scheduler pass (queue drain plus account syncs)."""

    reason: str
    skipped: bool = False
    skip_reason: str | None = None
    drain: DrainResult | None = None
    accounts: list[AccountSyncResult] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Collaborators
# =============================================================================


class RemoteCalendarAPI(Protocol):
    """Remote operations the sync core depends on."""

    async def list_calendars(self, account_id: str) -> list[RemoteCalendar]: ...

    async def list_events(
        self,
        account_id: str,
        calendar_id: str,
        time_min: str | None = None,
        time_max: str | None = None,
        sync_token: str | None = None,
        page_token: str | None = None,
    ) -> EventsPage: ...

    async def create_event(
        self, account_id: str, calendar_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def update_event(
        self, account_id: str, calendar_id: str, event_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def delete_event(self, account_id: str, calendar_id: str, event_id: str) -> None: ...
