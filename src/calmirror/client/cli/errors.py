"""Error log command for the calmirror CLI.

Commands:
- errors: Show (or clear) recorded sync failures
"""

from __future__ import annotations

from datetime import datetime

import click

from calmirror.client.cli.config import load_client_config, open_store
from calmirror.client.cli.output import format_time
from calmirror.client.sync.errorlog import ErrorLog
from calmirror.core.types import ErrorKind


@click.command()
@click.option(
    "--kind",
    type=click.Choice([k.value for k in ErrorKind]),
    default=None,
    help="Only show this kind of error.",
)
@click.option("--since", type=click.DateTime(), default=None, help="Only show errors after this time.")
@click.option("--account", "account_id", default=None, help="Only show this account.")
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum entries to show.")
@click.option("--verbose", "-v", is_flag=True, help="Show error details.")
@click.option("--clear", is_flag=True, help="Delete all entries instead of showing them.")
def errors(
    kind: str | None,
    since: datetime | None,
    account_id: str | None,
    limit: int,
    verbose: bool,
    clear: bool,
) -> None:
    """Show recorded sync failures, newest first."""
    config = load_client_config()
    with open_store(config) as store:
        if clear:
            removed = store.clear_errors()
            click.echo(f"Cleared {removed} error log entries.")
            return

        entries = ErrorLog(store).entries(
            since=since.timestamp() if since else None,
            kind=ErrorKind(kind) if kind else None,
            account_id=account_id,
            limit=limit,
        )
    if not entries:
        click.echo("No errors recorded.")
        return
    for entry in entries:
        where = entry.account_id if entry.calendar_id is None else f"{entry.account_id}/{entry.calendar_id}"
        click.echo(f"{format_time(entry.timestamp)}  {entry.kind.value:<18}  {where}: {entry.message}")
        if verbose:
            for key, value in entry.details.items():
                if key == "error" and isinstance(value, dict):
                    click.echo(f"    error: {value.get('type')}: {value.get('message')}")
                    continue
                click.echo(f"    {key}: {value}")
