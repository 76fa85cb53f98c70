"""Conflict commands for the calmirror CLI.

Commands:
- conflicts list: Show unresolved conflicts with both versions
- conflicts resolve: Keep the local or remote version, or defer
"""

from __future__ import annotations

import sys

import click

from calmirror.client.cli.config import load_client_config, open_store
from calmirror.client.cli.output import describe_event, format_time
from calmirror.client.sync.queue import ChangeQueue
from calmirror.client.sync.resolver import ConflictResolver
from calmirror.client.sync.types import ConflictResolutionError, ResolutionChoice


@click.group()
def conflicts() -> None:
    """Inspect and resolve sync conflicts."""


@conflicts.command("list")
@click.option("--account", "account_id", default=None, help="Only show this account.")
def list_conflicts(account_id: str | None) -> None:
    """List unresolved conflicts."""
    config = load_client_config()
    with open_store(config) as store:
        resolver = ConflictResolver(store, ChangeQueue(store))
        items = resolver.list_conflicts(account_id)
        if not items:
            click.echo("No conflicts.")
            return
        for item in items:
            conflict = item.conflict
            click.echo(
                f"{item.event_id}  [{conflict.kind.value}]  detected {format_time(conflict.detected_at)}, "
                f"reported {conflict.surfaced_count}x"
            )
            click.echo(f"    local:  {describe_event(item.local_version)}")
            click.echo(f"    remote: {describe_event(item.remote_version)}")


@conflicts.command("resolve")
@click.argument("event_id")
@click.option(
    "--keep",
    type=click.Choice([c.value for c in ResolutionChoice]),
    required=True,
    help="Version to keep (defer leaves the conflict in place).",
)
def resolve_conflict(event_id: str, keep: str) -> None:
    """Resolve the conflict on EVENT_ID.

    Keeping the local version queues it for the next sync.
    """
    config = load_client_config()
    with open_store(config) as store:
        queue = ChangeQueue(store, max_retries=config.policy.queue_max_retries)
        resolver = ConflictResolver(store, queue)
        try:
            event = resolver.resolve(event_id, keep)
        except ConflictResolutionError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    if keep == ResolutionChoice.DEFER.value:
        click.echo(f"Conflict on {event_id} deferred.")
    elif event is None:
        click.echo(f"Kept local deletion of {event_id}; it will be pushed on the next sync.")
    else:
        click.echo(f"Kept {keep} version: {describe_event(event)}")
