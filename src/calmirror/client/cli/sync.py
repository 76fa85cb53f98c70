"""Sync commands for the calmirror CLI.

Commands:
- calendars: Refresh and list the calendars of every account
- sync: Push queued changes, then pull remote changes
- drain: Push queued changes only
- watch: Sync periodically until interrupted
"""

from __future__ import annotations

import asyncio
import sys

import click

from calmirror.client.api import APIError
from calmirror.client.cli.output import format_time
from calmirror.client.cli.runtime import SyncRuntime, run_with_runtime
from calmirror.client.keystore import KeyStoreError
from calmirror.client.sync.types import (
    AccountSyncResult,
    DataIntegrityError,
    DrainResult,
    SyncError,
    SyncResult,
    SyncRunResult,
)


def _echo_drain(result: DrainResult) -> None:
    if result.skipped:
        click.echo("Queue: skipped (offline or already draining)")
        return
    if result.total_processed == 0 and not result.held:
        click.echo("Queue: nothing to push")
        return
    click.echo(f"Queue: {result.applied} pushed, {result.failed} failed")
    if result.held:
        click.echo(f"Queue: {result.held} held until their conflicts are resolved")
    for change in result.results:
        if not change.success:
            click.echo(f"  ! {change.operation.value} {change.event_id}: {change.error}", err=True)


def _echo_calendar(result: SyncResult) -> None:
    mode = "full" if result.full_sync else "incremental"
    click.echo(
        f"  {result.calendar_id} ({mode}): +{result.events_added} "
        f"~{result.events_updated} -{result.events_deleted + result.events_pruned}"
    )
    for event_id in result.conflicts:
        click.echo(f"    conflict: {event_id}")


def _echo_account(result: AccountSyncResult) -> None:
    click.echo(f"{result.account_id}: {result.calendars_processed} calendars synced")
    for calendar in result.results:
        _echo_calendar(calendar)
    for error in result.errors:
        click.echo(f"  ! {error.calendar_id}: {error.error}", err=True)


def _echo_run(result: SyncRunResult) -> None:
    if result.skipped:
        click.echo(f"Sync skipped ({result.skip_reason})")
        return
    if result.drain is not None:
        _echo_drain(result.drain)
    for account in result.accounts:
        _echo_account(account)
    for account_id, error in result.errors.items():
        click.echo(f"! {account_id}: {error}", err=True)


@click.command()
def calendars() -> None:
    """Refresh and list the calendars of every account."""

    async def run(runtime: SyncRuntime) -> None:
        accounts = runtime.store.list_accounts()
        if not accounts:
            click.echo("No accounts registered. Run 'calmirror account add' first.")
            return
        for account in accounts:
            await runtime.orchestrator.refresh_calendars(account.id)
            click.echo(f"{account.email}:")
            for calendar in runtime.store.list_calendars(account.id):
                marker = "*" if calendar.primary else " "
                metadata = runtime.store.get_sync_metadata(calendar.id)
                last = format_time(metadata.last_success_at if metadata else None)
                click.echo(f" {marker} {calendar.id}  {calendar.summary}  (last sync: {last})")

    try:
        run_with_runtime(run)
    except (APIError, SyncError, KeyStoreError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command()
@click.option("--account", "account_id", default=None, help="Only sync this account.")
@click.option("--calendar", "calendar_id", default=None, help="Only sync this calendar.")
def sync(account_id: str | None, calendar_id: str | None) -> None:
    """Push queued local changes, then pull remote changes.

    Without options every account is synced.
    """

    async def run(runtime: SyncRuntime) -> None:
        if calendar_id is not None:
            calendar = runtime.store.get_calendar(calendar_id)
            if calendar is None:
                raise DataIntegrityError(f"Unknown calendar: {calendar_id}")
            _echo_drain(await runtime.processor.drain())
            result = await runtime.orchestrator.sync_calendar(calendar.account_id, calendar.id)
            _echo_calendar(result)
        elif account_id is not None:
            _echo_drain(await runtime.processor.drain())
            await runtime.orchestrator.refresh_calendars(account_id)
            _echo_account(await runtime.orchestrator.sync_account(account_id))
        else:
            _echo_run(await runtime.scheduler.run_sync("manual"))

    try:
        run_with_runtime(run)
    except (APIError, SyncError, KeyStoreError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command()
def drain() -> None:
    """Push queued local changes without pulling."""

    async def run(runtime: SyncRuntime) -> None:
        _echo_drain(await runtime.processor.drain())

    run_with_runtime(run)


@click.command()
def watch() -> None:
    """Sync now and then periodically until interrupted (Ctrl+C)."""

    async def run(runtime: SyncRuntime) -> None:
        if not runtime.config.auto_sync:
            click.echo("Warning: auto_sync is disabled; only the initial sync will run.", err=True)
        runtime.scheduler.start()
        _echo_run(await runtime.scheduler.run_sync("startup"))
        click.echo(f"Watching (every {runtime.config.sync_interval_minutes} min). Press Ctrl+C to stop.")
        await asyncio.Event().wait()

    try:
        run_with_runtime(run)
    except KeyboardInterrupt:
        click.echo("\nStopped.")
