"""Tests for CLI commands - init, account, queue, conflicts, errors."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from calmirror.client.cli import cli
from calmirror.client.cli.config import open_store
from calmirror.client.keystore import KEYFILE_NAME
from calmirror.client.state import LocalStore
from calmirror.client.sync.conflict import create_conflict
from calmirror.client.sync.errorlog import ErrorLog
from calmirror.client.sync.queue import ChangeQueue
from calmirror.client.sync.types import Account, Calendar
from calmirror.core.types import ErrorKind
from tests.client.fakes import ACCOUNT_ID, CALENDAR_ID, make_event


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a temporary configuration directory."""
    monkeypatch.setenv("CALMIRROR_HOME", str(tmp_path))
    monkeypatch.delenv("CALMIRROR_DB", raising=False)
    monkeypatch.delenv("CALMIRROR_API_URL", raising=False)
    return tmp_path


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def seeded(home: Path) -> Path:
    """Local store with one account and its primary calendar."""
    db_path = home / "calendar.db"
    with open_store() as store:
        store.upsert_account(Account(id=ACCOUNT_ID, email=ACCOUNT_ID, refresh_token="refresh"))
        store.upsert_calendar(
            Calendar(id=CALENDAR_ID, account_id=ACCOUNT_ID, summary="Alice", primary=True)
        )
    return db_path


class TestInitCommand:
    """Tests for 'calmirror init' command."""

    def test_init_writes_config_and_store(self, runner: CliRunner, home: Path) -> None:
        """Init should write config.json and create the local store."""
        result = runner.invoke(
            cli, ["init", "--interval", "15", "--no-auto-sync"], input="client-1\nsecret-1\n"
        )

        assert result.exit_code == 0, result.output
        config = json.loads((home / "config.json").read_text())
        assert config["client_id"] == "client-1"
        assert config["sync_interval_minutes"] == 15
        assert config["auto_sync"] is False
        assert config["policy"]["queue_max_retries"] == 3
        assert (home / "calendar.db").exists()

    def test_init_fails_if_already_initialized(self, runner: CliRunner, home: Path) -> None:
        runner.invoke(cli, ["init", "--client-id", "a", "--client-secret", "b"])

        result = runner.invoke(cli, ["init", "--client-id", "a", "--client-secret", "b"])

        assert result.exit_code == 1
        assert "already initialized" in result.output

    def test_init_force_overwrites(self, runner: CliRunner, home: Path) -> None:
        runner.invoke(cli, ["init", "--client-id", "a", "--client-secret", "b"])

        result = runner.invoke(
            cli, ["init", "--client-id", "c", "--client-secret", "d", "--force"]
        )

        assert result.exit_code == 0
        assert json.loads((home / "config.json").read_text())["client_id"] == "c"

    def test_init_rejects_zero_interval(self, runner: CliRunner, home: Path) -> None:
        result = runner.invoke(
            cli, ["init", "--client-id", "a", "--client-secret", "b", "--interval", "0"]
        )

        assert result.exit_code == 1
        assert not (home / "config.json").exists()


class TestAccountCommands:
    """Tests for 'calmirror account' commands."""

    def test_add_and_list(self, runner: CliRunner, home: Path) -> None:
        result = runner.invoke(cli, ["account", "add", ACCOUNT_ID], input="refresh-1\n")
        assert result.exit_code == 0, result.output

        assert (home / KEYFILE_NAME).exists()
        with open_store() as store:
            account = store.get_account(ACCOUNT_ID)
        assert account is not None
        assert account.refresh_token == "refresh-1"
        with LocalStore(home / "calendar.db") as raw:
            stored = raw.get_account(ACCOUNT_ID)
        assert stored is not None
        assert stored.refresh_token != "refresh-1"
        assert account.token_expiry == 0.0

        listing = runner.invoke(cli, ["account", "list"])
        assert listing.exit_code == 0
        assert f"{ACCOUNT_ID}: 0 calendars, token expires never" in listing.output

    def test_list_without_accounts(self, runner: CliRunner, home: Path) -> None:
        result = runner.invoke(cli, ["account", "list"])

        assert "No accounts registered." in result.output


class TestQueueCommands:
    """Tests for 'calmirror queue' commands."""

    def test_list_empty(self, runner: CliRunner, seeded: Path) -> None:
        result = runner.invoke(cli, ["queue", "list"])

        assert result.exit_code == 0
        assert "Queue is empty." in result.output

    def test_list_shows_failed_entries(self, runner: CliRunner, seeded: Path) -> None:
        with LocalStore(seeded) as store:
            change = ChangeQueue(store).enqueue_update(ACCOUNT_ID, CALENDAR_ID, "evt-1", {"summary": "x"})
            change.retry_count = 3
            change.last_error = "FAILED after 3 attempts: Invalid event"
            store.update_pending_change(change)
            ChangeQueue(store).enqueue_delete(ACCOUNT_ID, CALENDAR_ID, "evt-2")

        result = runner.invoke(cli, ["queue", "list", "--failed"])

        assert result.exit_code == 0
        assert change.id in result.output
        assert "FAILED (attempts: 3" in result.output
        assert "last error: FAILED after 3 attempts: Invalid event" in result.output
        assert "evt-2" not in result.output

    def test_retry_resets_attempts(self, runner: CliRunner, seeded: Path) -> None:
        with LocalStore(seeded) as store:
            change = ChangeQueue(store).enqueue_delete(ACCOUNT_ID, CALENDAR_ID, "evt-1")
            change.retry_count = 3
            store.update_pending_change(change)

        result = runner.invoke(cli, ["queue", "retry", change.id])

        assert result.exit_code == 0
        with LocalStore(seeded) as store:
            stored = store.get_pending_change(change.id)
        assert stored is not None
        assert stored.retry_count == 0

    def test_retry_unknown_change(self, runner: CliRunner, seeded: Path) -> None:
        result = runner.invoke(cli, ["queue", "retry", "change-missing"])

        assert result.exit_code == 1
        assert "No queued change" in result.output

    def test_discard_needs_confirmation(self, runner: CliRunner, seeded: Path) -> None:
        with LocalStore(seeded) as store:
            change = ChangeQueue(store).enqueue_delete(ACCOUNT_ID, CALENDAR_ID, "evt-1")

        declined = runner.invoke(cli, ["queue", "discard", change.id], input="n\n")
        assert declined.exit_code == 1

        accepted = runner.invoke(cli, ["queue", "discard", change.id, "--yes"])
        assert accepted.exit_code == 0
        assert "Discarded delete of evt-1." in accepted.output
        with LocalStore(seeded) as store:
            assert store.list_pending_changes() == []


class TestConflictCommands:
    """Tests for 'calmirror conflicts' commands."""

    def seed_conflict(self, db_path: Path) -> None:
        local = make_event("evt-1", summary="Local", pending=True)
        with LocalStore(db_path) as store:
            store.upsert_event(local)
            store.save_conflict(
                create_conflict(local, make_event("evt-1", summary="Remote"), detected_at=5.0)
            )

    def test_list_shows_both_versions(self, runner: CliRunner, seeded: Path) -> None:
        self.seed_conflict(seeded)

        result = runner.invoke(cli, ["conflicts", "list"])

        assert result.exit_code == 0
        assert "evt-1  [update_update]" in result.output
        assert "local:  Local @" in result.output
        assert "remote: Remote @" in result.output

    def test_list_empty(self, runner: CliRunner, seeded: Path) -> None:
        assert "No conflicts." in runner.invoke(cli, ["conflicts", "list"]).output

    def test_resolve_remote(self, runner: CliRunner, seeded: Path) -> None:
        self.seed_conflict(seeded)

        result = runner.invoke(cli, ["conflicts", "resolve", "evt-1", "--keep", "remote"])

        assert result.exit_code == 0
        assert "Kept remote version: Remote @" in result.output
        with LocalStore(seeded) as store:
            assert store.get_conflict("evt-1") is None

    def test_resolve_defer(self, runner: CliRunner, seeded: Path) -> None:
        self.seed_conflict(seeded)

        result = runner.invoke(cli, ["conflicts", "resolve", "evt-1", "--keep", "defer"])

        assert "Conflict on evt-1 deferred." in result.output
        with LocalStore(seeded) as store:
            assert store.get_conflict("evt-1") is not None

    def test_resolve_without_conflict(self, runner: CliRunner, seeded: Path) -> None:
        result = runner.invoke(cli, ["conflicts", "resolve", "evt-1", "--keep", "local"])

        assert result.exit_code == 1
        assert "No unresolved conflict" in result.output


class TestErrorsCommand:
    """Tests for 'calmirror errors' command."""

    def test_no_errors(self, runner: CliRunner, seeded: Path) -> None:
        assert "No errors recorded." in runner.invoke(cli, ["errors"]).output

    def test_filter_and_verbose(self, runner: CliRunner, seeded: Path) -> None:
        with LocalStore(seeded) as store:
            log = ErrorLog(store)
            log.record(ErrorKind.TOKEN_REFRESH, ACCOUNT_ID, "Token refresh failed (400)")
            log.record(
                ErrorKind.SYNC_FAILURE,
                ACCOUNT_ID,
                "Service Unavailable",
                calendar_id=CALENDAR_ID,
                exc=RuntimeError("Service Unavailable"),
            )

        result = runner.invoke(cli, ["errors", "--kind", "sync_failure", "-v"])

        assert result.exit_code == 0
        assert f"{ACCOUNT_ID}/{CALENDAR_ID}: Service Unavailable" in result.output
        assert "error: RuntimeError: Service Unavailable" in result.output
        assert "Token refresh failed" not in result.output

    def test_clear(self, runner: CliRunner, seeded: Path) -> None:
        with LocalStore(seeded) as store:
            ErrorLog(store).record(ErrorKind.OTHER, ACCOUNT_ID, "boom")

        result = runner.invoke(cli, ["errors", "--clear"])

        assert "Cleared 1 error log entries." in result.output
        with LocalStore(seeded) as store:
            assert store.list_errors() == []


class TestSyncCommands:
    """Tests for sync commands that need no remote calls."""

    def test_calendars_without_accounts(self, runner: CliRunner, home: Path) -> None:
        result = runner.invoke(cli, ["calendars"])

        assert result.exit_code == 0
        assert "No accounts registered." in result.output

    def test_drain_empty_queue(self, runner: CliRunner, home: Path) -> None:
        result = runner.invoke(cli, ["drain"])

        assert result.exit_code == 0, result.output
        assert "Queue: nothing to push" in result.output

    def test_sync_unknown_calendar(self, runner: CliRunner, seeded: Path) -> None:
        result = runner.invoke(cli, ["sync", "--calendar", "missing-cal"])

        assert result.exit_code == 1
        assert "Unknown calendar: missing-cal" in result.output
