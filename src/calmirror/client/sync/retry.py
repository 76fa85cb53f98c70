"""Retry logic with exponential backoff and jitter.

This module provides:
- BackoffExecutor: Runs a remote operation, retrying transient failures
- compute_delay: Exponential delay for a given retry
- apply_jitter: Randomizes a delay within ±jitter
- is_retryable: Classifies errors into transient and terminal
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from calmirror.client.api import (
    RETRYABLE_STATUS_CODES,
    APIError,
    NetworkError,
    RateLimitError,
)
from calmirror.core.config import SyncPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Whether an error is transient (rate limit, server failure, network).

    401 is handled by the calendar client itself; 400/403/404 are terminal.
    """
    if isinstance(error, RateLimitError | NetworkError):
        return True
    if isinstance(error, APIError):
        return error.status_code in RETRYABLE_STATUS_CODES
    return False


def compute_delay(attempt: int, policy: SyncPolicy) -> float:
    """Base delay before retry number ``attempt`` (0-indexed), capped."""
    return min(policy.initial_backoff * policy.backoff_multiplier**attempt, policy.max_backoff)


def apply_jitter(delay: float, jitter: float, rng: random.Random) -> float:
    """Spread ``delay`` uniformly over ±``jitter`` of itself, never negative."""
    offset = delay * jitter * (rng.random() * 2 - 1)
    return max(0.0, delay + offset)


class BackoffExecutor:
    """Runs remote operations with exponential backoff on transient errors."""

    def __init__(
        self,
        policy: SyncPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            policy: Backoff tunables (initial delay, multiplier, cap, retries).
            sleep: Awaitable sleep, replaceable in tests.
            rng: Random source for jitter.
        """
        self._policy = policy or SyncPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> SyncPolicy:
        return self._policy

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation``, retrying transient failures.

        The operation is called once, then retried up to ``max_retries``
        times with growing delays. Terminal errors propagate immediately.

        Args:
            operation: Zero-argument callable returning an awaitable.

        Returns:
            Result of the first successful call.

        Raises:
            The terminal error, or the last transient error once retries
            are exhausted.
        """
        max_retries = self._policy.max_retries
        for attempt in range(max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    raise
                if attempt == max_retries:
                    logger.error(f"All {max_retries} retries failed: {e}")
                    raise
                delay = apply_jitter(
                    compute_delay(attempt, self._policy), self._policy.jitter, self._rng
                )
                logger.warning(
                    f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await self._sleep(delay)

        raise RuntimeError("Unexpected retry loop exit")
