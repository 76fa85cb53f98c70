"""Setup commands for the calmirror CLI.

Commands:
- init: Write the configuration file and create the local store
- account add: Register an account and its refresh token
- account list: Show registered accounts
"""

from __future__ import annotations

import sys
import time

import click

from calmirror.client.cli.config import (
    get_config_file,
    get_db_path,
    load_client_config,
    open_store,
    save_config,
)
from calmirror.client.cli.output import format_time
from calmirror.client.sync.types import Account
from calmirror.core.config import DEFAULT_API_BASE_URL, ClientConfig


@click.command()
@click.option("--client-id", prompt="OAuth client id", help="OAuth client id.")
@click.option(
    "--client-secret",
    prompt="OAuth client secret",
    hide_input=True,
    help="OAuth client secret.",
)
@click.option("--api-url", default=DEFAULT_API_BASE_URL, show_default=True, help="API base URL.")
@click.option(
    "--interval",
    type=int,
    default=20,
    show_default=True,
    help="Minutes between automatic syncs.",
)
@click.option("--no-auto-sync", is_flag=True, help="Disable periodic syncing in watch mode.")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration.")
def init(
    client_id: str,
    client_secret: str,
    api_url: str,
    interval: int,
    no_auto_sync: bool,
    force: bool,
) -> None:
    """Initialize calmirror.

    Writes the configuration file and creates the local calendar store.
    """
    config_file = get_config_file()
    if config_file.exists() and not force:
        click.echo("Error: calmirror is already initialized. Use --force to overwrite.", err=True)
        sys.exit(1)

    try:
        config = ClientConfig(
            api_base_url=api_url,
            client_id=client_id,
            client_secret=client_secret,
            sync_interval_minutes=interval,
            auto_sync=not no_auto_sync,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    save_config(config.to_dict())
    db_path = get_db_path(config)
    open_store(config).close()

    click.echo(f"Configuration written to {config_file}")
    click.echo(f"Local store: {db_path}")


@click.group()
def account() -> None:
    """Manage remote accounts."""


@account.command("add")
@click.argument("email")
@click.option(
    "--refresh-token",
    prompt="Refresh token",
    hide_input=True,
    help="OAuth refresh token for the account.",
)
@click.option("--access-token", default=None, help="Current access token, if known.")
@click.option(
    "--expires-in",
    type=int,
    default=3600,
    show_default=True,
    help="Seconds until the access token expires.",
)
def add_account(
    email: str,
    refresh_token: str,
    access_token: str | None,
    expires_in: int,
) -> None:
    """Register an account identified by its e-mail address."""
    config = load_client_config()
    expiry = time.time() + expires_in if access_token else 0.0
    with open_store(config) as store:
        store.upsert_account(
            Account(
                id=email,
                email=email,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expiry=expiry,
            )
        )
    click.echo(f"Account {email} added. Run 'calmirror calendars' to fetch its calendars.")


@account.command("list")
def list_accounts() -> None:
    """List registered accounts."""
    config = load_client_config()
    with open_store(config) as store:
        accounts = store.list_accounts()
        if not accounts:
            click.echo("No accounts registered.")
            return
        for item in accounts:
            calendars = store.list_calendars(item.id)
            click.echo(
                f"{item.email}: {len(calendars)} calendars, "
                f"token expires {format_time(item.token_expiry or None)}"
            )
