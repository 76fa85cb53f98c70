"""Local store for the calendar mirror.

This module provides:
- LocalStore: SQLite-based durable state for events, calendars, queued
  changes, tombstones, conflicts, sync metadata and the error log

Architecture:
    Every public method is atomic on its own (autocommit). Operations that
    must change several tables together (replacing a temporary event with
    its canonical copy, confirming a remote delete) run inside a single
    transaction so a crash can never leave both a temporary and a canonical
    copy of the same event behind.

    Conflicts live in their own table keyed by event id, which keeps the
    primary event shape simple and allows at most one unresolved conflict
    per event.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from calmirror.client.sync.types import (
    Account,
    Calendar,
    ConflictKind,
    ConflictRecord,
    ErrorLogEntry,
    Event,
    PendingChange,
    SyncMetadata,
    Tombstone,
)
from calmirror.core.types import ChangeOperation, ErrorKind, SyncStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from calmirror.client.keystore import TokenKeyStore

logger = logging.getLogger(__name__)


class LocalStore:
    """SQLite-based local state for the sync client."""

    def __init__(self, db_path: Path | str, keystore: TokenKeyStore | None = None) -> None:
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file (":memory:" for a
                throwaway store).
            keystore: Encrypts access and refresh tokens at rest. Without
                one the token columns hold plaintext.
        """
        self._keystore = keystore
        self._db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self._db_path, Path):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()
        self._in_transaction = False

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                access_token TEXT,
                refresh_token TEXT,
                token_expiry REAL NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS calendars (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                summary TEXT NOT NULL,
                description TEXT,
                color TEXT,
                is_primary INTEGER NOT NULL DEFAULT 0,
                access_role TEXT NOT NULL DEFAULT 'owner',
                visible INTEGER NOT NULL DEFAULT 1
            );
            CREATE INDEX IF NOT EXISTS idx_calendars_account ON calendars(account_id);

            -- Primary event records; the full snapshot lives in data
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                calendar_id TEXT NOT NULL,
                start_utc REAL,
                pending INTEGER NOT NULL DEFAULT 0,
                deleted INTEGER NOT NULL DEFAULT 0,
                data TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_events_calendar ON events(calendar_id, start_utc);

            -- One row per event in conflict
            CREATE TABLE IF NOT EXISTS conflicts (
                event_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                calendar_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                local_version TEXT,
                remote_version TEXT NOT NULL,
                detected_at REAL NOT NULL,
                surfaced_count INTEGER NOT NULL DEFAULT 0,
                last_surfaced_at REAL
            );

            -- FIFO queue of local mutations; seq breaks created_at ties
            CREATE TABLE IF NOT EXISTS pending_changes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                operation TEXT NOT NULL,
                event_id TEXT NOT NULL,
                account_id TEXT NOT NULL,
                calendar_id TEXT NOT NULL,
                payload TEXT,
                created_at REAL NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_pending_event ON pending_changes(event_id);

            CREATE TABLE IF NOT EXISTS tombstones (
                event_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                calendar_id TEXT NOT NULL,
                deleted_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_metadata (
                calendar_id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                sync_token TEXT,
                last_sync_at REAL NOT NULL,
                last_success_at REAL,
                last_sync_status TEXT NOT NULL,
                error_message TEXT
            );

            CREATE TABLE IF NOT EXISTS error_log (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                timestamp REAL NOT NULL,
                kind TEXT NOT NULL,
                account_id TEXT NOT NULL,
                calendar_id TEXT,
                message TEXT NOT NULL,
                details TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_error_log_timestamp ON error_log(timestamp);
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed store calls as one atomic unit.

        Nested use joins the outer transaction.
        """
        with self._lock:
            if self._in_transaction:
                yield
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._in_transaction = False

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            row: sqlite3.Row | None = self._conn.execute(sql, tuple(params)).fetchone()
        return row

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._conn.execute(sql, tuple(params)).fetchall())

    # === Accounts ===

    def upsert_account(self, account: Account) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO accounts (id, email, access_token, refresh_token, token_expiry)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                account.id,
                account.email,
                self._seal(account.access_token),
                self._seal(account.refresh_token),
                account.token_expiry,
            ),
        )

    def get_account(self, account_id: str) -> Account | None:
        row = self._fetchone("SELECT * FROM accounts WHERE id = ?", (account_id,))
        return self._account_from_row(row) if row else None

    def list_accounts(self) -> list[Account]:
        rows = self._fetchall("SELECT * FROM accounts ORDER BY id")
        return [self._account_from_row(r) for r in rows]

    def _seal(self, token: str | None) -> str | None:
        if token is None or self._keystore is None:
            return token
        return self._keystore.encrypt(token)

    def _unseal(self, token: str | None) -> str | None:
        if token is None or self._keystore is None:
            return token
        return self._keystore.decrypt(token)

    def _account_from_row(self, row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            email=row["email"],
            access_token=self._unseal(row["access_token"]),
            refresh_token=self._unseal(row["refresh_token"]),
            token_expiry=row["token_expiry"],
        )

    def update_account_tokens(
        self,
        account_id: str,
        access_token: str,
        token_expiry: float,
        refresh_token: str | None = None,
    ) -> None:
        """Store a refreshed access token (and a rotated refresh token, if any)."""
        if refresh_token is None:
            self._execute(
                "UPDATE accounts SET access_token = ?, token_expiry = ? WHERE id = ?",
                (self._seal(access_token), token_expiry, account_id),
            )
        else:
            self._execute(
                "UPDATE accounts SET access_token = ?, token_expiry = ?, refresh_token = ? "
                "WHERE id = ?",
                (self._seal(access_token), token_expiry, self._seal(refresh_token), account_id),
            )

    # === Calendars ===

    def upsert_calendar(self, calendar: Calendar) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO calendars (
                id, account_id, summary, description, color, is_primary, access_role, visible
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                calendar.id,
                calendar.account_id,
                calendar.summary,
                calendar.description,
                calendar.color,
                int(calendar.primary),
                calendar.access_role,
                int(calendar.visible),
            ),
        )

    def get_calendar(self, calendar_id: str) -> Calendar | None:
        row = self._fetchone("SELECT * FROM calendars WHERE id = ?", (calendar_id,))
        return _calendar_from_row(row) if row else None

    def list_calendars(self, account_id: str | None = None) -> list[Calendar]:
        if account_id is None:
            rows = self._fetchall("SELECT * FROM calendars ORDER BY account_id, id")
        else:
            rows = self._fetchall(
                "SELECT * FROM calendars WHERE account_id = ? ORDER BY is_primary DESC, id",
                (account_id,),
            )
        return [_calendar_from_row(r) for r in rows]

    def remove_calendar(self, calendar_id: str) -> None:
        """Remove a calendar together with everything stored for it."""
        with self.transaction():
            for table in ("events", "conflicts", "pending_changes", "tombstones", "sync_metadata"):
                self._execute(f"DELETE FROM {table} WHERE calendar_id = ?", (calendar_id,))
            self._execute("DELETE FROM calendars WHERE id = ?", (calendar_id,))
        logger.info(f"Removed calendar {calendar_id} and its local data")

    # === Events ===

    def get_event(self, event_id: str) -> Event | None:
        row = self._fetchone("SELECT data FROM events WHERE id = ?", (event_id,))
        return Event.from_json(row["data"]) if row else None

    def upsert_event(self, event: Event) -> None:
        """Insert or overwrite an event by id."""
        start = event.start_utc()
        self._execute(
            """
            INSERT OR REPLACE INTO events (
                id, account_id, calendar_id, start_utc, pending, deleted, data
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.account_id,
                event.calendar_id,
                start.timestamp() if start else None,
                int(event.pending),
                int(event.deleted),
                event.to_json(),
            ),
        )

    def delete_event(self, event_id: str) -> bool:
        """Delete an event row. Returns True if a row was removed."""
        cursor = self._execute("DELETE FROM events WHERE id = ?", (event_id,))
        return cursor.rowcount > 0

    def list_events(self, calendar_id: str, include_deleted: bool = True) -> list[Event]:
        sql = "SELECT data FROM events WHERE calendar_id = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        rows = self._fetchall(sql + " ORDER BY start_utc, id", (calendar_id,))
        return [Event.from_json(r["data"]) for r in rows]

    def list_events_in_range(self, calendar_id: str, start: float, end: float) -> list[Event]:
        """Events of a calendar starting within [start, end] (epoch seconds)."""
        rows = self._fetchall(
            "SELECT data FROM events WHERE calendar_id = ? AND start_utc BETWEEN ? AND ? "
            "ORDER BY start_utc, id",
            (calendar_id, start, end),
        )
        return [Event.from_json(r["data"]) for r in rows]

    # === Compound confirmations ===

    def replace_pending_event(self, temp_id: str, event: Event, change_id: str) -> Event:
        """Swap a temporary event for its canonical copy in one transaction.

        Inserts the canonical event before removing the temporary row, drops
        the create entry, and re-targets later queue entries to the new id.

        Returns:
            The stored canonical event.
        """
        with self.transaction():
            self._execute(
                "UPDATE pending_changes SET event_id = ? WHERE event_id = ? AND id != ?",
                (event.id, temp_id, change_id),
            )
            self._execute("DELETE FROM pending_changes WHERE id = ?", (change_id,))
            remaining = self.list_pending_changes_for_event(event.id)
            stored = event.with_changes(pending=bool(remaining))
            self.upsert_event(stored)
            if temp_id != event.id:
                self._execute("DELETE FROM events WHERE id = ?", (temp_id,))
                self._execute(
                    "UPDATE OR REPLACE conflicts SET event_id = ? WHERE event_id = ?",
                    (event.id, temp_id),
                )
        logger.debug(f"Replaced temporary event {temp_id} with {event.id}")
        return stored

    def confirm_update(self, event: Event, change_id: str) -> Event:
        """Record a confirmed remote update and drop its queue entry.

        If newer local changes are still queued for the event, the local
        content is kept and only the remote bookkeeping is refreshed.
        """
        with self.transaction():
            self._execute("DELETE FROM pending_changes WHERE id = ?", (change_id,))
            remaining = self.list_pending_changes_for_event(event.id)
            existing = self.get_event(event.id)
            if remaining and existing is not None:
                stored = existing.with_changes(
                    remote_updated_at=event.remote_updated_at,
                    pending=True,
                )
            else:
                stored = event.with_changes(pending=False, deleted=False)
            self.upsert_event(stored)
        return stored

    def confirm_delete(self, event_id: str, change_id: str) -> None:
        """Forget an event whose remote delete has been confirmed."""
        with self.transaction():
            self._execute("DELETE FROM events WHERE id = ?", (event_id,))
            self._execute("DELETE FROM tombstones WHERE event_id = ?", (event_id,))
            self._execute("DELETE FROM conflicts WHERE event_id = ?", (event_id,))
            self._execute(
                "DELETE FROM pending_changes WHERE id = ? OR event_id = ?",
                (change_id, event_id),
            )

    # === Pending changes ===

    def add_pending_change(self, change: PendingChange) -> None:
        self._execute(
            """
            INSERT INTO pending_changes (
                id, operation, event_id, account_id, calendar_id, payload,
                created_at, retry_count, last_error
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                change.id,
                change.operation.value,
                change.event_id,
                change.account_id,
                change.calendar_id,
                json.dumps(change.payload) if change.payload is not None else None,
                change.created_at,
                change.retry_count,
                change.last_error,
            ),
        )

    def get_pending_change(self, change_id: str) -> PendingChange | None:
        row = self._fetchone("SELECT * FROM pending_changes WHERE id = ?", (change_id,))
        return _change_from_row(row) if row else None

    def update_pending_change(self, change: PendingChange) -> None:
        """Persist retry bookkeeping (and payload) of a queue entry."""
        self._execute(
            """
            UPDATE pending_changes
            SET payload = ?, retry_count = ?, last_error = ?, event_id = ?
            WHERE id = ?
            """,
            (
                json.dumps(change.payload) if change.payload is not None else None,
                change.retry_count,
                change.last_error,
                change.event_id,
                change.id,
            ),
        )

    def delete_pending_change(self, change_id: str) -> bool:
        cursor = self._execute("DELETE FROM pending_changes WHERE id = ?", (change_id,))
        return cursor.rowcount > 0

    def list_pending_changes(self) -> list[PendingChange]:
        """All queued changes in FIFO order."""
        rows = self._fetchall("SELECT * FROM pending_changes ORDER BY created_at, seq")
        return [_change_from_row(r) for r in rows]

    def list_pending_changes_for_event(self, event_id: str) -> list[PendingChange]:
        rows = self._fetchall(
            "SELECT * FROM pending_changes WHERE event_id = ? ORDER BY created_at, seq",
            (event_id,),
        )
        return [_change_from_row(r) for r in rows]

    def delete_pending_changes_for_event(
        self,
        event_id: str,
        operations: Iterable[ChangeOperation] | None = None,
    ) -> int:
        """Drop queued changes of an event, optionally only some operations."""
        if operations is None:
            cursor = self._execute("DELETE FROM pending_changes WHERE event_id = ?", (event_id,))
        else:
            ops = [op.value for op in operations]
            placeholders = ", ".join("?" for _ in ops)
            cursor = self._execute(
                f"DELETE FROM pending_changes WHERE event_id = ? AND operation IN ({placeholders})",
                (event_id, *ops),
            )
        return cursor.rowcount

    # === Tombstones ===

    def add_tombstone(self, tombstone: Tombstone) -> None:
        self._execute(
            "INSERT OR REPLACE INTO tombstones (event_id, account_id, calendar_id, deleted_at) "
            "VALUES (?, ?, ?, ?)",
            (tombstone.event_id, tombstone.account_id, tombstone.calendar_id, tombstone.deleted_at),
        )

    def get_tombstone(self, event_id: str) -> Tombstone | None:
        row = self._fetchone("SELECT * FROM tombstones WHERE event_id = ?", (event_id,))
        return _tombstone_from_row(row) if row else None

    def delete_tombstone(self, event_id: str) -> bool:
        cursor = self._execute("DELETE FROM tombstones WHERE event_id = ?", (event_id,))
        return cursor.rowcount > 0

    def list_tombstones(self) -> list[Tombstone]:
        rows = self._fetchall("SELECT * FROM tombstones ORDER BY deleted_at")
        return [_tombstone_from_row(r) for r in rows]

    # === Sync metadata ===

    def get_sync_metadata(self, calendar_id: str) -> SyncMetadata | None:
        row = self._fetchone("SELECT * FROM sync_metadata WHERE calendar_id = ?", (calendar_id,))
        if row is None:
            return None
        return SyncMetadata(
            calendar_id=row["calendar_id"],
            account_id=row["account_id"],
            sync_token=row["sync_token"],
            last_sync_at=row["last_sync_at"],
            last_success_at=row["last_success_at"],
            last_sync_status=SyncStatus(row["last_sync_status"]),
            error_message=row["error_message"],
        )

    def save_sync_metadata(self, metadata: SyncMetadata) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO sync_metadata (
                calendar_id, account_id, sync_token, last_sync_at,
                last_success_at, last_sync_status, error_message
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                metadata.calendar_id,
                metadata.account_id,
                metadata.sync_token,
                metadata.last_sync_at,
                metadata.last_success_at,
                metadata.last_sync_status.value,
                metadata.error_message,
            ),
        )

    # === Conflicts ===

    def save_conflict(self, conflict: ConflictRecord) -> None:
        """Insert or replace the conflict of an event (one row per event)."""
        self._execute(
            """
            INSERT OR REPLACE INTO conflicts (
                event_id, account_id, calendar_id, kind, local_version, remote_version,
                detected_at, surfaced_count, last_surfaced_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conflict.event_id,
                conflict.account_id,
                conflict.calendar_id,
                conflict.kind.value,
                conflict.local_version.to_json() if conflict.local_version else None,
                conflict.remote_version.to_json(),
                conflict.detected_at,
                conflict.surfaced_count,
                conflict.last_surfaced_at,
            ),
        )

    def get_conflict(self, event_id: str) -> ConflictRecord | None:
        row = self._fetchone("SELECT * FROM conflicts WHERE event_id = ?", (event_id,))
        return _conflict_from_row(row) if row else None

    def list_conflicts(
        self,
        account_id: str | None = None,
        calendar_id: str | None = None,
    ) -> list[ConflictRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if calendar_id is not None:
            clauses.append("calendar_id = ?")
            params.append(calendar_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(f"SELECT * FROM conflicts{where} ORDER BY detected_at", params)
        return [_conflict_from_row(r) for r in rows]

    def delete_conflict(self, event_id: str) -> bool:
        cursor = self._execute("DELETE FROM conflicts WHERE event_id = ?", (event_id,))
        return cursor.rowcount > 0

    def mark_conflicts_surfaced(self, event_ids: Iterable[str], at: float) -> None:
        ids = list(event_ids)
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        self._execute(
            f"UPDATE conflicts SET surfaced_count = surfaced_count + 1, last_surfaced_at = ? "
            f"WHERE event_id IN ({placeholders})",
            (at, *ids),
        )

    # === Error log ===

    def append_error(self, entry: ErrorLogEntry) -> None:
        self._execute(
            """
            INSERT INTO error_log (
                id, timestamp, kind, account_id, calendar_id, message, details
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.timestamp,
                entry.kind.value,
                entry.account_id,
                entry.calendar_id,
                entry.message,
                json.dumps(entry.details, default=str),
            ),
        )

    def list_errors(
        self,
        since: float | None = None,
        until: float | None = None,
        kind: ErrorKind | None = None,
        account_id: str | None = None,
        limit: int | None = None,
    ) -> list[ErrorLogEntry]:
        """Range query over the error log, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(until)
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        sql = "SELECT * FROM error_log"
        if clauses:
            sql += f" WHERE {' AND '.join(clauses)}"
        sql += " ORDER BY timestamp DESC, seq DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_error_from_row(r) for r in self._fetchall(sql, params)]

    def clear_errors(self, before: float | None = None) -> int:
        if before is None:
            cursor = self._execute("DELETE FROM error_log")
        else:
            cursor = self._execute("DELETE FROM error_log WHERE timestamp < ?", (before,))
        return cursor.rowcount


# === Row mappers ===


def _calendar_from_row(row: sqlite3.Row) -> Calendar:
    return Calendar(
        id=row["id"],
        account_id=row["account_id"],
        summary=row["summary"],
        description=row["description"],
        color=row["color"],
        primary=bool(row["is_primary"]),
        access_role=row["access_role"],
        visible=bool(row["visible"]),
    )


def _change_from_row(row: sqlite3.Row) -> PendingChange:
    return PendingChange(
        id=row["id"],
        operation=ChangeOperation(row["operation"]),
        event_id=row["event_id"],
        account_id=row["account_id"],
        calendar_id=row["calendar_id"],
        payload=json.loads(row["payload"]) if row["payload"] else None,
        created_at=row["created_at"],
        retry_count=row["retry_count"],
        last_error=row["last_error"],
    )


def _tombstone_from_row(row: sqlite3.Row) -> Tombstone:
    return Tombstone(
        event_id=row["event_id"],
        account_id=row["account_id"],
        calendar_id=row["calendar_id"],
        deleted_at=row["deleted_at"],
    )


def _conflict_from_row(row: sqlite3.Row) -> ConflictRecord:
    return ConflictRecord(
        event_id=row["event_id"],
        account_id=row["account_id"],
        calendar_id=row["calendar_id"],
        kind=ConflictKind(row["kind"]),
        local_version=Event.from_json(row["local_version"]) if row["local_version"] else None,
        remote_version=Event.from_json(row["remote_version"]),
        detected_at=row["detected_at"],
        surfaced_count=row["surfaced_count"],
        last_surfaced_at=row["last_surfaced_at"],
    )


def _error_from_row(row: sqlite3.Row) -> ErrorLogEntry:
    return ErrorLogEntry(
        id=row["id"],
        timestamp=row["timestamp"],
        kind=ErrorKind(row["kind"]),
        account_id=row["account_id"],
        calendar_id=row["calendar_id"],
        message=row["message"],
        details=json.loads(row["details"]),
    )
