"""Access-token management for remote accounts.

This module provides:
- TokenProvider: Protocol used by the calendar client to obtain bearer tokens
- StoreTokenProvider: Tokens cached in the local store, refreshed with a
  refresh-token grant when they are about to expire
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from calmirror.client.api import TokenRefreshError
from calmirror.client.sync.errorlog import ErrorLog
from calmirror.core.types import ErrorKind

if TYPE_CHECKING:
    from calmirror.client.state import LocalStore
    from calmirror.core.config import ClientConfig

logger = logging.getLogger(__name__)

# Tokens closer than this to their expiry are refreshed before use
EXPIRY_SKEW_SECONDS = 60.0

DEFAULT_EXPIRES_IN = 3600


class TokenProvider(Protocol):
    """Source of bearer tokens for the calendar client."""

    async def get_access_token(self, account_id: str, force_refresh: bool = False) -> str:
        """Return a usable access token for the account."""
        ...


def _expires_in(payload: dict[str, Any]) -> int:
    value = payload.get("expires_in")
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return DEFAULT_EXPIRES_IN
    return int(value)


class StoreTokenProvider:
    """Token provider backed by the accounts table of the local store."""

    def __init__(
        self,
        store: LocalStore,
        config: ClientConfig,
        http_client: httpx.AsyncClient | None = None,
        error_log: ErrorLog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the token provider.

        Args:
            store: Local store holding account credentials.
            config: Client configuration (token URL, OAuth client).
            http_client: Optional shared HTTP client.
            error_log: Sink for refresh failures.
            clock: Time source (epoch seconds).
        """
        self._store = store
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout)
        self._error_log = error_log or ErrorLog(store, clock=clock)
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def _cached_token(self, account_id: str) -> str | None:
        account = self._store.get_account(account_id)
        if account is None:
            raise TokenRefreshError(f"Unknown account: {account_id}")
        if account.access_token and account.token_expiry - EXPIRY_SKEW_SECONDS > self._clock():
            return account.access_token
        return None

    async def get_access_token(self, account_id: str, force_refresh: bool = False) -> str:
        """Return a fresh access token, refreshing it when needed.

        Args:
            account_id: Account whose token is requested.
            force_refresh: Refresh even if the cached token looks valid.

        Returns:
            Bearer token.

        Raises:
            TokenRefreshError: If the account is unknown or the refresh fails.
        """
        if not force_refresh:
            token = self._cached_token(account_id)
            if token is not None:
                return token

        async with self._lock_for(account_id):
            # Another task may have refreshed while we waited
            if not force_refresh:
                token = self._cached_token(account_id)
                if token is not None:
                    return token
            try:
                return await self._refresh(account_id)
            except TokenRefreshError as e:
                self._error_log.record(
                    ErrorKind.TOKEN_REFRESH,
                    account_id,
                    str(e),
                    exc=e,
                )
                raise

    async def _refresh(self, account_id: str) -> str:
        account = self._store.get_account(account_id)
        if account is None:
            raise TokenRefreshError(f"Unknown account: {account_id}")
        if not account.refresh_token:
            raise TokenRefreshError(f"Account {account.email} has no refresh token")
        if not self._config.client_id or not self._config.client_secret:
            raise TokenRefreshError("OAuth client credentials are not configured")

        logger.info(f"Refreshing access token for {account.email}")
        try:
            response = await self._client.post(
                self._config.token_url,
                data={
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                    "refresh_token": account.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Token refresh request failed: {e}") from e

        if response.status_code >= 400:
            raise TokenRefreshError(
                f"Token refresh failed ({response.status_code}): {response.text.strip()[:200]}",
                response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenRefreshError("Token endpoint returned invalid JSON") from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise TokenRefreshError("Token response is missing an access_token")

        expiry = self._clock() + _expires_in(payload)
        self._store.update_account_tokens(
            account_id,
            access_token.strip(),
            expiry,
            refresh_token=payload.get("refresh_token"),
        )
        return access_token.strip()
