"""Tests for the sync orchestrator."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from calmirror.client.api import (
    BadRequestError,
    EventsPage,
    PermissionDeniedError,
    RemoteCalendar,
)
from calmirror.client.state import LocalStore
from calmirror.client.sync.engine import SyncOrchestrator
from calmirror.client.sync.retry import BackoffExecutor
from calmirror.client.sync.types import (
    Calendar,
    ConflictKind,
    DataIntegrityError,
    SyncMetadata,
    Tombstone,
)
from calmirror.client.sync.window import compute_sync_window
from calmirror.core.types import ErrorKind, SyncStatus
from tests.client.fakes import (
    ACCOUNT_ID,
    CALENDAR_ID,
    NOW,
    FakeClock,
    FakeRemoteClient,
    make_event,
    remote_event,
)


@pytest.fixture
def orchestrator(
    store: LocalStore,
    remote: FakeRemoteClient,
    executor: BackoffExecutor,
    clock: FakeClock,
) -> SyncOrchestrator:
    return SyncOrchestrator(store, remote, executor=executor, clock=clock)


def set_last_success(store: LocalStore, at: float, sync_token: str | None = None) -> None:
    store.save_sync_metadata(
        SyncMetadata(
            calendar_id=CALENDAR_ID,
            account_id=ACCOUNT_ID,
            sync_token=sync_token,
            last_sync_at=at,
            last_success_at=at,
        )
    )


class TestInitialSync:
    """Tests for syncing an empty calendar."""

    @pytest.mark.asyncio
    async def test_inserts_remote_events_and_records_token(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should store every remote event and save a successful metadata record."""
        remote.set_events(
            CALENDAR_ID,
            [remote_event("evt-1"), remote_event("evt-2", summary="Lunch")],
            next_sync_token="token-1",
        )

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.full_sync is True
        assert result.events_added == 2
        assert {e.id for e in store.list_events(CALENDAR_ID)} == {"evt-1", "evt-2"}
        metadata = store.get_sync_metadata(CALENDAR_ID)
        assert metadata is not None
        assert metadata.last_sync_status == SyncStatus.SUCCESS
        assert metadata.sync_token == "token-1"
        assert metadata.last_success_at == NOW.timestamp()

    @pytest.mark.asyncio
    async def test_no_token_when_server_supplies_none(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """A listing without nextSyncToken leaves the metadata without a token."""
        remote.set_events(CALENDAR_ID, [remote_event("evt-1")])

        await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        metadata = store.get_sync_metadata(CALENDAR_ID)
        assert metadata is not None
        assert metadata.sync_token is None
        assert metadata.last_sync_status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_sends_window_only_for_full_sync(
        self, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """The first pass lists without a sync token, the next one with it."""
        remote.set_events(CALENDAR_ID, [remote_event("evt-1")], next_sync_token="token-1")

        await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)
        second = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        tokens = [call[2] for call in remote.calls_to("list_events")]
        assert tokens == [None, "token-1"]
        assert second.full_sync is False

    @pytest.mark.asyncio
    async def test_unknown_calendar_raises(self, orchestrator: SyncOrchestrator) -> None:
        """Should fail with a data-integrity error for a calendar not stored locally."""
        with pytest.raises(DataIntegrityError):
            await orchestrator.sync_calendar(ACCOUNT_ID, "missing")


class TestIdempotence:
    """Tests for repeated syncs without remote changes."""

    @pytest.mark.asyncio
    async def test_second_sync_changes_nothing(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Two passes in a row leave the same events, token and no conflicts."""
        remote.set_events(
            CALENDAR_ID,
            [remote_event("evt-1"), remote_event("evt-2")],
            next_sync_token="token-1",
        )

        await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)
        before = {e.id: e.summary for e in store.list_events(CALENDAR_ID)}
        second = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert {e.id: e.summary for e in store.list_events(CALENDAR_ID)} == before
        assert second.conflicts == []
        assert second.sync_token == "token-1"
        assert store.list_conflicts() == []


class TestPagination:
    """Tests for following page tokens."""

    @pytest.mark.asyncio
    async def test_follows_every_page(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should fetch all pages and keep the token from the last one."""
        items = [remote_event(f"evt-{i}") for i in range(5)]
        remote.set_events(CALENDAR_ID, items, next_sync_token="token-9", page_size=2)

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert len(remote.calls_to("list_events")) == 3
        assert result.events_added == 5
        assert result.sync_token == "token-9"

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_applied_once(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """An id repeated on a later page keeps the first occurrence."""
        items = [remote_event("evt-1", summary="First"), remote_event("evt-1", summary="Again")]
        remote.set_events(CALENDAR_ID, items, page_size=1)

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_added == 1
        stored = store.get_event("evt-1")
        assert stored is not None
        assert stored.summary == "First"

    @pytest.mark.asyncio
    async def test_items_without_id_are_skipped(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should ignore malformed items instead of failing the pass."""
        broken = remote_event("x")
        del broken["id"]
        remote.set_events(CALENDAR_ID, [broken, remote_event("evt-1")])

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_added == 1


class TestRemoteDeletes:
    """Tests for cancelled events in incremental listings."""

    @pytest.mark.asyncio
    async def test_cancelled_event_removes_local_copy(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should delete the local record and count the deletion."""
        store.upsert_event(make_event("evt-1", updated_at=NOW.timestamp() - 500))
        set_last_success(store, NOW.timestamp() - 100, sync_token="token-1")
        remote.set_events(
            CALENDAR_ID, [remote_event("evt-1", status="cancelled")], next_sync_token="token-2"
        )

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_deleted == 1
        assert store.get_event("evt-1") is None

    @pytest.mark.asyncio
    async def test_cancelled_unknown_event_is_not_counted(
        self, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """A cancellation for an event never stored locally is a no-op."""
        remote.set_events(CALENDAR_ID, [remote_event("ghost", status="cancelled")])

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_deleted == 0


class TestTombstones:
    """Tests for locally deleted events seen again remotely."""

    @pytest.mark.asyncio
    async def test_stale_remote_copy_is_suppressed(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """A remote update older than the local delete must not resurrect the event."""
        deleted_at = NOW.timestamp() - 10
        store.add_tombstone(
            Tombstone(
                event_id="evt-1",
                account_id=ACCOUNT_ID,
                calendar_id=CALENDAR_ID,
                deleted_at=deleted_at,
            )
        )
        remote.set_events(CALENDAR_ID, [remote_event("evt-1", updated=deleted_at)])

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert store.get_event("evt-1") is None
        assert store.get_conflict("evt-1") is None
        assert result.conflicts == []

    @pytest.mark.asyncio
    async def test_newer_remote_update_creates_delete_conflict(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Tombstone at T=1000 and remote update at T=2000 is a delete/update conflict."""
        store.add_tombstone(
            Tombstone(event_id="E1", account_id=ACCOUNT_ID, calendar_id=CALENDAR_ID, deleted_at=1000)
        )
        remote.set_events(CALENDAR_ID, [remote_event("E1", summary="Moved", updated=2000)])

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        conflict = store.get_conflict("E1")
        assert conflict is not None
        assert conflict.kind == ConflictKind.DELETE_UPDATE
        assert conflict.local_version is None
        assert conflict.remote_version.summary == "Moved"
        assert result.conflicts == ["E1"]
        assert store.get_event("E1") is None

    @pytest.mark.asyncio
    async def test_old_tombstones_are_pruned(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Tombstones older than the window's lower bound are removed."""
        window = compute_sync_window(NOW)
        store.add_tombstone(
            Tombstone(
                event_id="old",
                account_id=ACCOUNT_ID,
                calendar_id=CALENDAR_ID,
                deleted_at=window.lower_bound - 1,
            )
        )
        store.add_tombstone(
            Tombstone(
                event_id="recent",
                account_id=ACCOUNT_ID,
                calendar_id=CALENDAR_ID,
                deleted_at=NOW.timestamp() - 60,
            )
        )

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.tombstones_pruned == 1
        assert store.get_tombstone("old") is None
        assert store.get_tombstone("recent") is not None


class TestConflicts:
    """Tests for update/update conflicts found during a pass."""

    @pytest.mark.asyncio
    async def test_both_sides_modified_creates_conflict(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should keep the local record and store both snapshots."""
        store.upsert_event(
            make_event("evt-1", summary="Local title", pending=True, updated_at=NOW.timestamp() - 10)
        )
        set_last_success(store, NOW.timestamp() - 100)
        remote.set_events(
            CALENDAR_ID, [remote_event("evt-1", summary="Remote title", updated=NOW.timestamp() - 50)]
        )

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.conflicts == ["evt-1"]
        conflict = store.get_conflict("evt-1")
        assert conflict is not None
        assert conflict.kind == ConflictKind.UPDATE_UPDATE
        assert conflict.local_version is not None
        assert conflict.local_version.summary == "Local title"
        assert conflict.remote_version.summary == "Remote title"
        stored = store.get_event("evt-1")
        assert stored is not None
        assert stored.summary == "Local title"

    @pytest.mark.asyncio
    async def test_identical_content_is_not_a_conflict(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Both sides touched but converged on the same content."""
        store.upsert_event(make_event("evt-1", pending=True, updated_at=NOW.timestamp() - 10))
        set_last_success(store, NOW.timestamp() - 100)
        remote.set_events(CALENDAR_ID, [remote_event("evt-1", updated=NOW.timestamp() - 50)])

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.conflicts == []
        assert store.get_conflict("evt-1") is None

    @pytest.mark.asyncio
    async def test_conflict_is_kept_once_and_resurfaced(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Repeated passes keep one record per event and count how often it was reported."""
        store.upsert_event(
            make_event("evt-1", summary="Local title", pending=True, updated_at=NOW.timestamp() - 10)
        )
        set_last_success(store, NOW.timestamp() - 100)
        remote.set_events(
            CALENDAR_ID, [remote_event("evt-1", summary="Remote title", updated=NOW.timestamp() - 50)]
        )

        await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)
        second = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert second.conflicts == ["evt-1"]
        conflicts = store.list_conflicts()
        assert len(conflicts) == 1
        assert conflicts[0].surfaced_count == 2

    @pytest.mark.asyncio
    async def test_pending_local_edit_survives_unchanged_remote(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Only the local side changed: keep it for the queue to push."""
        store.upsert_event(
            make_event("evt-1", summary="Local edit", pending=True, updated_at=NOW.timestamp() - 10)
        )
        set_last_success(store, NOW.timestamp() - 100)
        remote.set_events(CALENDAR_ID, [remote_event("evt-1", updated=NOW.timestamp() - 200)])

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        stored = store.get_event("evt-1")
        assert stored is not None
        assert stored.summary == "Local edit"
        assert stored.pending is True
        assert result.conflicts == []

    @pytest.mark.asyncio
    async def test_remote_only_change_overwrites_local(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Only the remote side changed: apply it and stamp last_synced_at."""
        store.upsert_event(make_event("evt-1", summary="Old", updated_at=NOW.timestamp() - 500))
        set_last_success(store, NOW.timestamp() - 100)
        remote.set_events(
            CALENDAR_ID, [remote_event("evt-1", summary="New", updated=NOW.timestamp() - 50)]
        )

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        stored = store.get_event("evt-1")
        assert stored is not None
        assert stored.summary == "New"
        assert stored.last_synced_at == NOW.timestamp()
        assert result.events_updated == 1

    @pytest.mark.asyncio
    async def test_failed_pass_does_not_leave_a_local_edit_behind(
        self,
        store: LocalStore,
        remote: FakeRemoteClient,
        orchestrator: SyncOrchestrator,
        clock: FakeClock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A version merged by a pass that failed later is still a remote copy."""
        remote.set_events(
            CALENDAR_ID, [remote_event("evt-1", summary="v1")], next_sync_token="token-1"
        )
        await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        clock.advance(100)
        remote.set_events(
            CALENDAR_ID,
            [remote_event("evt-1", summary="v2", updated=clock() - 10), remote_event("evt-2")],
            page_size=1,
        )
        list_events = remote.list_events

        async def fail_second_page(*args: Any, **kwargs: Any) -> EventsPage:
            if kwargs.get("page_token"):
                raise BadRequestError("Bad Request", 400)
            return await list_events(*args, **kwargs)

        monkeypatch.setattr(remote, "list_events", fail_second_page)
        with pytest.raises(BadRequestError):
            await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)
        monkeypatch.undo()
        merged = store.get_event("evt-1")
        assert merged is not None
        assert merged.summary == "v2"

        clock.advance(100)
        remote.set_events(
            CALENDAR_ID,
            [remote_event("evt-1", summary="v3", updated=clock() - 10)],
            next_sync_token="token-2",
        )
        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.conflicts == []
        assert store.get_conflict("evt-1") is None
        stored = store.get_event("evt-1")
        assert stored is not None
        assert stored.summary == "v3"
        assert stored.pending is False


class TestWindowPruning:
    """Tests for dropping events outside the sliding window."""

    @pytest.mark.asyncio
    async def test_prunes_events_outside_window(
        self, store: LocalStore, orchestrator: SyncOrchestrator
    ) -> None:
        """Events starting before or after the window are removed."""
        store.upsert_event(make_event("past", start=NOW - timedelta(days=60)))
        store.upsert_event(make_event("future", start=NOW + timedelta(days=60)))
        store.upsert_event(make_event("inside", start=NOW + timedelta(days=3)))

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_pruned == 2
        assert [e.id for e in store.list_events(CALENDAR_ID)] == ["inside"]

    @pytest.mark.asyncio
    async def test_window_bounds_are_inclusive(
        self, store: LocalStore, orchestrator: SyncOrchestrator
    ) -> None:
        """Events starting exactly on a bound are kept."""
        window = compute_sync_window(NOW)
        store.upsert_event(make_event("lower", start=window.time_min))
        store.upsert_event(make_event("upper", start=window.time_max))

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_pruned == 0
        assert {e.id for e in store.list_events(CALENDAR_ID)} == {"lower", "upper"}

    @pytest.mark.asyncio
    async def test_pending_events_are_not_pruned(
        self, store: LocalStore, orchestrator: SyncOrchestrator
    ) -> None:
        """Unconfirmed local changes stay until the queue has pushed them."""
        store.upsert_event(make_event("temp-1", start=NOW - timedelta(days=90), pending=True))

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert result.events_pruned == 0
        assert store.get_event("temp-1") is not None


class TestSyncTokenExpiry:
    """Tests for the full-sync fallback on an expired token."""

    @pytest.mark.asyncio
    async def test_expired_token_falls_back_to_full_sync(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should retry once without a token and store the new one."""
        set_last_success(store, NOW.timestamp() - 100, sync_token="stale")
        remote.expired_tokens.add("stale")
        remote.set_events(CALENDAR_ID, [remote_event("evt-1")], next_sync_token="fresh")

        result = await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        assert [call[2] for call in remote.calls_to("list_events")] == ["stale", None]
        assert result.full_sync is True
        metadata = store.get_sync_metadata(CALENDAR_ID)
        assert metadata is not None
        assert metadata.sync_token == "fresh"


class TestFailures:
    """Tests for failure bookkeeping."""

    @pytest.mark.asyncio
    async def test_failure_writes_error_metadata_and_log(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """Should record the error, keep the token and re-raise."""
        set_last_success(store, NOW.timestamp() - 100, sync_token="token-1")
        remote.errors["list_events"].append(PermissionDeniedError("Forbidden", 403))

        with pytest.raises(PermissionDeniedError):
            await orchestrator.sync_calendar(ACCOUNT_ID, CALENDAR_ID)

        metadata = store.get_sync_metadata(CALENDAR_ID)
        assert metadata is not None
        assert metadata.last_sync_status == SyncStatus.ERROR
        assert metadata.error_message == "Forbidden"
        assert metadata.sync_token == "token-1"
        assert metadata.last_success_at == NOW.timestamp() - 100
        entries = store.list_errors(kind=ErrorKind.SYNC_FAILURE)
        assert len(entries) == 1
        assert entries[0].calendar_id == CALENDAR_ID
        assert entries[0].details["error"]["status_code"] == 403


class TestSyncAccount:
    """Tests for per-account fan-out."""

    @pytest.mark.asyncio
    async def test_failing_calendar_does_not_stop_the_others(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """The second calendar is synced even though the first one failed."""
        store.upsert_calendar(Calendar(id="work", account_id=ACCOUNT_ID, summary="Work"))
        remote.set_events("work", [remote_event("work-1")])
        remote.errors["list_events"].append(PermissionDeniedError("Forbidden", 403))

        result = await orchestrator.sync_account(ACCOUNT_ID)

        assert [e.calendar_id for e in result.errors] == [CALENDAR_ID]
        assert [r.calendar_id for r in result.results] == ["work"]
        assert store.get_event("work-1") is not None

    @pytest.mark.asyncio
    async def test_malformed_event_fails_only_its_calendar(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """An unparseable remote item is a data-integrity failure of its calendar."""
        store.upsert_calendar(Calendar(id="work", account_id=ACCOUNT_ID, summary="Work"))
        bad = remote_event("bad-1")
        bad["start"] = {"dateTime": "tomorrow at nine"}
        remote.set_events(CALENDAR_ID, [bad])
        remote.set_events("work", [remote_event("work-1")])

        result = await orchestrator.sync_account(ACCOUNT_ID)

        assert [e.calendar_id for e in result.errors] == [CALENDAR_ID]
        assert "Malformed remote event bad-1" in result.errors[0].error
        assert [r.calendar_id for r in result.results] == ["work"]
        assert store.get_event("work-1") is not None
        metadata = store.get_sync_metadata(CALENDAR_ID)
        assert metadata is not None
        assert metadata.last_sync_status == SyncStatus.ERROR
        entries = store.list_errors(kind=ErrorKind.SYNC_FAILURE)
        assert [e.calendar_id for e in entries] == [CALENDAR_ID]
        assert entries[0].details["error"]["type"] == "DataIntegrityError"

    @pytest.mark.asyncio
    async def test_unknown_account_raises(self, orchestrator: SyncOrchestrator) -> None:
        """Should fail for an account that is not registered."""
        with pytest.raises(DataIntegrityError):
            await orchestrator.sync_account("nobody@example.com")


class TestRefreshCalendars:
    """Tests for mirroring the calendar list."""

    @pytest.mark.asyncio
    async def test_adds_and_removes_calendars(
        self, store: LocalStore, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """New remote calendars are added, vanished ones removed with their events."""
        store.upsert_calendar(Calendar(id="gone", account_id=ACCOUNT_ID, summary="Gone"))
        store.upsert_event(make_event("gone-1", calendar_id="gone"))
        remote.set_calendars(
            ACCOUNT_ID,
            RemoteCalendar(id=CALENDAR_ID, summary="Alice", primary=True),
            RemoteCalendar(id="team", summary="Team"),
        )

        calendars = await orchestrator.refresh_calendars(ACCOUNT_ID)

        assert {c.id for c in calendars} == {CALENDAR_ID, "team"}
        assert store.get_calendar("gone") is None
        assert store.get_event("gone-1") is None

    @pytest.mark.asyncio
    async def test_missing_primary_calendar_raises(
        self, remote: FakeRemoteClient, orchestrator: SyncOrchestrator
    ) -> None:
        """An account without a primary calendar is a data-integrity error."""
        remote.set_calendars(ACCOUNT_ID, RemoteCalendar(id="team", summary="Team"))

        with pytest.raises(DataIntegrityError):
            await orchestrator.refresh_calendars(ACCOUNT_ID)
