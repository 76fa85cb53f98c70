"""Change queue commands for the calmirror CLI.

Commands:
- queue list: Show queued local changes
- queue retry: Reset the attempt counter of a failed change
- queue discard: Drop a change and roll back its local effect
"""

from __future__ import annotations

import sys

import click

from calmirror.client.cli.config import load_client_config, open_store
from calmirror.client.cli.output import format_time
from calmirror.client.state import LocalStore
from calmirror.client.sync.queue import ChangeQueue
from calmirror.client.sync.types import QueueError


def _open_queue(store: LocalStore) -> ChangeQueue:
    config = load_client_config()
    return ChangeQueue(store, max_retries=config.policy.queue_max_retries)


@click.group()
def queue() -> None:
    """Inspect and manage queued local changes."""


@queue.command("list")
@click.option("--failed", "failed_only", is_flag=True, help="Only show failed changes.")
def list_changes(failed_only: bool) -> None:
    """List queued changes, oldest first."""
    config = load_client_config()
    with open_store(config) as store:
        change_queue = _open_queue(store)
        changes = change_queue.failed() if failed_only else change_queue.list()
        if not changes:
            click.echo("Queue is empty.")
            return
        for change in changes:
            status = "FAILED" if change.is_failed(change_queue.max_retries) else "pending"
            click.echo(
                f"{change.id}  {change.operation.value:<6}  {change.event_id}  "
                f"{status} (attempts: {change.retry_count}, queued {format_time(change.created_at)})"
            )
            if change.last_error:
                click.echo(f"    last error: {change.last_error}")


@queue.command("retry")
@click.argument("change_id")
def retry_change(change_id: str) -> None:
    """Make a failed change eligible for the next drain."""
    config = load_client_config()
    with open_store(config) as store:
        try:
            change = _open_queue(store).retry(change_id)
        except QueueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Change {change.id} ({change.operation.value} {change.event_id}) will be retried.")


@queue.command("discard")
@click.argument("change_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def discard_change(change_id: str, yes: bool) -> None:
    """Drop a queued change and undo its local effect."""
    if not yes:
        click.confirm(f"Discard change {change_id}?", abort=True)
    config = load_client_config()
    with open_store(config) as store:
        try:
            change = _open_queue(store).discard(change_id)
        except QueueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Discarded {change.operation.value} of {change.event_id}.")
