"""Synchronization core of the calendar mirror.

Architecture:
    EventEditor → ChangeQueue → QueueProcessor → remote service
    remote service → SyncOrchestrator → LocalStore (+ conflicts)

Components:
- **SyncOrchestrator**: Pulls remote events per calendar (window, sync
  token, pagination, pruning, sync metadata)
- **ChangeQueue**: Durable FIFO of local mutations
- **QueueProcessor**: Pushes queued mutations, swapping temporary ids for
  canonical ones
- **Conflict detection**: Pure functions classifying local/remote pairs
- **BackoffExecutor**: Retries transient remote failures with jitter
- **EventEditor**: Optimistic local creates, updates and soft deletes
- **ConflictResolver**: Lists conflicts and applies local/remote/defer
- **ErrorLog**: Operator-visible failure records
- **SyncScheduler**: Periodic and on-demand runs under a mutex flag
"""

from calmirror.client.sync.conflict import (
    ConflictInfo,
    create_conflict,
    create_delete_conflict,
    detect_conflict,
    events_are_different,
    resolve_with_local,
    resolve_with_remote,
)
from calmirror.client.sync.editor import EventEditor
from calmirror.client.sync.engine import SyncOrchestrator
from calmirror.client.sync.errorlog import ErrorLog
from calmirror.client.sync.processor import QueueProcessor
from calmirror.client.sync.queue import ChangeQueue
from calmirror.client.sync.resolver import ConflictResolver
from calmirror.client.sync.retry import (
    BackoffExecutor,
    apply_jitter,
    compute_delay,
    is_retryable,
)
from calmirror.client.sync.scheduler import SyncContext, SyncScheduler
from calmirror.client.sync.types import (
    TEMP_ID_PREFIX,
    Account,
    AccountSyncResult,
    Attendee,
    Calendar,
    CalendarSyncError,
    ChangeResult,
    ConflictedEvent,
    ConflictKind,
    ConflictRecord,
    ConflictResolutionError,
    DataIntegrityError,
    DrainResult,
    ErrorLogEntry,
    Event,
    EventDraft,
    EventIdentity,
    EventTime,
    PendingChange,
    QueueError,
    RemoteCalendarAPI,
    ResolutionChoice,
    SyncError,
    SyncMetadata,
    SyncResult,
    SyncRunResult,
    Tombstone,
    is_temporary_id,
    new_temporary_id,
)
from calmirror.client.sync.window import SyncWindow, compute_sync_window

__all__ = [
    # Orchestration
    "SyncOrchestrator",
    "SyncScheduler",
    "SyncContext",
    "SyncWindow",
    "compute_sync_window",
    # Queue
    "ChangeQueue",
    "QueueProcessor",
    "EventEditor",
    # Conflicts
    "ConflictInfo",
    "ConflictResolver",
    "create_conflict",
    "create_delete_conflict",
    "detect_conflict",
    "events_are_different",
    "resolve_with_local",
    "resolve_with_remote",
    # Retry
    "BackoffExecutor",
    "apply_jitter",
    "compute_delay",
    "is_retryable",
    # Error log
    "ErrorLog",
    # Types
    "TEMP_ID_PREFIX",
    "Account",
    "AccountSyncResult",
    "Attendee",
    "Calendar",
    "CalendarSyncError",
    "ChangeResult",
    "ConflictKind",
    "ConflictRecord",
    "ConflictResolutionError",
    "ConflictedEvent",
    "DataIntegrityError",
    "DrainResult",
    "ErrorLogEntry",
    "Event",
    "EventDraft",
    "EventIdentity",
    "EventTime",
    "PendingChange",
    "QueueError",
    "RemoteCalendarAPI",
    "ResolutionChoice",
    "SyncError",
    "SyncMetadata",
    "SyncResult",
    "SyncRunResult",
    "Tombstone",
    "is_temporary_id",
    "new_temporary_id",
]
