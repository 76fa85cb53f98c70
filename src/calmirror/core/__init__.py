"""Core module - Shared configuration and enums."""

from calmirror.core.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_TOKEN_URL,
    ClientConfig,
    SyncPolicy,
)
from calmirror.core.types import (
    ChangeOperation,
    ErrorKind,
    EventStatus,
    ResponseStatus,
    SyncStatus,
)

__all__ = [
    # Config
    "ClientConfig",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_TOKEN_URL",
    "SyncPolicy",
    # Types
    "ChangeOperation",
    "ErrorKind",
    "EventStatus",
    "ResponseStatus",
    "SyncStatus",
]
