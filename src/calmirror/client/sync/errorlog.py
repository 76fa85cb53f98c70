"""Operator-visible error log.

Every unrecoverable failure of the sync core is appended here with enough
context for a troubleshooting view to render it.
"""

from __future__ import annotations

import logging
import time
import traceback
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from calmirror.client.sync.types import ErrorLogEntry
from calmirror.core.types import ErrorKind

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore

logger = logging.getLogger(__name__)


class ErrorLog:
    """Appends structured failure records to the local store."""

    def __init__(self, store: LocalStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        kind: ErrorKind,
        account_id: str,
        message: str,
        calendar_id: str | None = None,
        details: dict[str, Any] | None = None,
        exc: BaseException | None = None,
    ) -> ErrorLogEntry:
        """Append an entry.

        A failure to persist the entry is logged and swallowed so it never
        masks the error being reported.

        Args:
            kind: Error category.
            account_id: Affected account.
            message: Human-readable message.
            calendar_id: Affected calendar, if any.
            details: Extra context.
            exc: Exception to describe (type, message, traceback).

        Returns:
            The entry that was (or would have been) stored.
        """
        blob: dict[str, Any] = dict(details or {})
        if calendar_id is not None:
            blob.setdefault("calendar_id", calendar_id)
        if exc is not None:
            blob["error"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "status_code": getattr(exc, "status_code", None),
                "traceback": "".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
            }

        entry = ErrorLogEntry(
            id=str(uuid.uuid4()),
            timestamp=self._clock(),
            kind=kind,
            account_id=account_id,
            calendar_id=calendar_id,
            message=message,
            details=blob,
        )
        try:
            self._store.append_error(entry)
        except Exception:
            logger.exception("Failed to write error log entry")
        else:
            logger.info(f"Error logged: {kind.value} - {message}")
        return entry

    def entries(
        self,
        since: float | None = None,
        until: float | None = None,
        kind: ErrorKind | None = None,
        account_id: str | None = None,
        limit: int | None = None,
    ) -> list[ErrorLogEntry]:
        """Entries in a time range, newest first."""
        return self._store.list_errors(
            since=since, until=until, kind=kind, account_id=account_id, limit=limit
        )
