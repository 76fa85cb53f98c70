"""Shared types for calmirror.

This module defines enums used across the client, the sync core and the CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Outcome of the last synchronization attempt of a calendar."""

    SUCCESS = "success"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Kind of an entry in the operator-visible error log."""

    SYNC_FAILURE = "sync_failure"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    TOKEN_REFRESH = "token_refresh"
    CONFLICT_DETECTION = "conflict_detection"
    OTHER = "other"


class ChangeOperation(str, Enum):
    """Operation carried by a queued local mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EventStatus(str, Enum):
    """Status of a calendar event as reported by the remote service."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ResponseStatus(str, Enum):
    """Attendee response to an invitation."""

    NEEDS_ACTION = "needsAction"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    ACCEPTED = "accepted"
