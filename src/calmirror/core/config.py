"""Shared configuration classes for calmirror.

This module defines configuration classes used by the remote client, the
sync core and the CLI.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

DEFAULT_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass
class SyncPolicy:
    """Tunables of the synchronization core.

    Attributes:
        window_months: Whole months on each side of "now" in the sync window.
        window_days: Extra days on each side of "now" in the sync window.
        initial_backoff: First retry delay in seconds.
        backoff_multiplier: Growth factor applied to each retry delay.
        max_backoff: Ceiling for a single retry delay in seconds.
        max_retries: Retries attempted after the first call.
        jitter: Random jitter range as a fraction of the delay (0.2 = ±20%).
        queue_max_retries: Failed drains before a queued change is
            considered terminally failed.
    """

    window_months: int = 1
    window_days: int = 15
    initial_backoff: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff: float = 60.0
    max_retries: int = 5
    jitter: float = 0.2
    queue_max_retries: int = 3


@dataclass
class ClientConfig:
    """Configuration for talking to the remote calendar service.

    Attributes:
        api_base_url: Base URL of the calendar REST API.
        token_url: OAuth token endpoint used for refresh grants.
        client_id: OAuth client id (needed only for token refresh).
        client_secret: OAuth client secret (needed only for token refresh).
        timeout: Request timeout in seconds.
        sync_interval_minutes: Period of the automatic sync.
        auto_sync: Whether the scheduler runs periodic syncs at all.
        db_path: Location of the local SQLite store.
        policy: Sync-core tunables.
    """

    api_base_url: str = DEFAULT_API_BASE_URL
    token_url: str = DEFAULT_TOKEN_URL
    client_id: str | None = None
    client_secret: str | None = None
    timeout: float = 30.0
    sync_interval_minutes: int = 20
    auto_sync: bool = True
    db_path: Path | None = None
    policy: SyncPolicy = field(default_factory=SyncPolicy)

    def __post_init__(self) -> None:
        """Normalize URLs and paths."""
        self.api_base_url = self.api_base_url.rstrip("/")
        if self.db_path is not None:
            self.db_path = Path(self.db_path).expanduser()
        if self.sync_interval_minutes < 1:
            raise ValueError("sync_interval_minutes must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Create a config from a JSON-compatible dictionary.

        Unknown keys are ignored so older config files keep loading.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k != "policy"}
        policy_data = data.get("policy") or {}
        policy_known = {f.name for f in fields(SyncPolicy)}
        policy = SyncPolicy(**{k: v for k, v in policy_data.items() if k in policy_known})
        return cls(policy=policy, **values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data = asdict(self)
        data["db_path"] = str(self.db_path) if self.db_path else None
        return data
