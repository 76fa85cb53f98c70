"""Shared fixtures for client tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from calmirror.client.api import RemoteCalendar
from calmirror.client.state import LocalStore
from calmirror.client.sync.retry import BackoffExecutor
from calmirror.client.sync.types import Account, Calendar
from tests.client.fakes import ACCOUNT_ID, CALENDAR_ID, FakeClock, FakeRemoteClient, no_sleep


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalStore]:
    """Local store with one account and its primary calendar."""
    s = LocalStore(tmp_path / "calendar.db")
    s.upsert_account(Account(id=ACCOUNT_ID, email=ACCOUNT_ID, refresh_token="refresh"))
    s.upsert_calendar(
        Calendar(id=CALENDAR_ID, account_id=ACCOUNT_ID, summary="Alice", primary=True)
    )
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemoteClient:
    """Fake remote service listing the primary calendar."""
    fake = FakeRemoteClient()
    fake.set_calendars(ACCOUNT_ID, RemoteCalendar(id=CALENDAR_ID, summary="Alice", primary=True))
    return fake


@pytest.fixture
def executor() -> BackoffExecutor:
    """Backoff executor that never actually sleeps."""
    return BackoffExecutor(sleep=no_sleep)
