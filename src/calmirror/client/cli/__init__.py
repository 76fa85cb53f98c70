"""Command-line interface for calmirror.

This module provides the main CLI entry point and assembles all commands.

Commands:
- init: Write the configuration and create the local store
- account: Register and list accounts
- calendars: Refresh and list calendars
- sync: Push queued changes, then pull remote changes
- drain: Push queued changes only
- watch: Sync periodically until interrupted
- queue: Inspect, retry and discard queued changes
- conflicts: List and resolve conflicts
- errors: Show the error log
"""

from __future__ import annotations

import logging

import click

from calmirror.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_db_path,
    load_client_config,
    load_config,
    open_store,
    save_config,
)
from calmirror.client.cli.conflicts import conflicts
from calmirror.client.cli.errors import errors
from calmirror.client.cli.logging import setup_logging
from calmirror.client.cli.queue import queue
from calmirror.client.cli.setup import account, init
from calmirror.client.cli.sync import calendars, drain, sync, watch


@click.group()
@click.version_option(package_name="calmirror")
@click.option("--verbose", "-v", is_flag=True, help="Log sync activity to stdout.")
@click.option("--debug", is_flag=True, help="Log everything, including queue internals.")
def cli(verbose: bool, debug: bool) -> None:
    """calmirror - local-first calendar mirror."""
    if debug:
        setup_logging(logging.DEBUG, get_config_dir() / "calmirror.log")
    elif verbose:
        setup_logging(logging.INFO)
    else:
        setup_logging()


# Setup commands
cli.add_command(init)
cli.add_command(account)

# Sync commands
cli.add_command(calendars)
cli.add_command(sync)
cli.add_command(drain)
cli.add_command(watch)

# Local state commands
cli.add_command(queue)
cli.add_command(conflicts)
cli.add_command(errors)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_db_path",
    "load_client_config",
    "load_config",
    "open_store",
    "save_config",
]
