"""Configuration utilities for the calmirror CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from calmirror.client.keystore import load_or_create_keystore
from calmirror.client.state import LocalStore
from calmirror.core.config import ClientConfig

HOME_ENV = "CALMIRROR_HOME"
API_URL_ENV = "CALMIRROR_API_URL"
DB_ENV = "CALMIRROR_DB"


def get_config_dir() -> Path:
    """Get the configuration directory for calmirror.

    Returns:
        Path to $CALMIRROR_HOME, or ~/.calmirror.
    """
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".calmirror"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_db_path(config: ClientConfig | None = None) -> Path:
    """Get the local store path ($CALMIRROR_DB, configured, or default)."""
    override = os.environ.get(DB_ENV)
    if override:
        return Path(override).expanduser()
    if config is not None and config.db_path is not None:
        return config.db_path
    return get_config_dir() / "calendar.db"


def load_client_config() -> ClientConfig:
    """Build the client configuration from the config file and environment."""
    data = load_config()
    api_url = os.environ.get(API_URL_ENV)
    if api_url:
        data["api_base_url"] = api_url
    config = ClientConfig.from_dict(data)
    config.db_path = get_db_path(config)
    return config


def open_store(config: ClientConfig | None = None) -> LocalStore:
    """Open the local store with account tokens encrypted by the local keyfile."""
    return LocalStore(get_db_path(config), keystore=load_or_create_keystore(get_config_dir()))
