"""Sliding sync window.

Events are fetched and retained only while their start lies within
[now - 1 month - 15 days, now + 1 month + 15 days].
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from dateutil.relativedelta import relativedelta

from calmirror.core.config import SyncPolicy


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive time range of mirrored events."""

    time_min: datetime
    time_max: datetime

    def contains(self, instant: datetime | None) -> bool:
        """Whether ``instant`` falls inside the window (bounds included)."""
        if instant is None:
            return False
        return self.time_min <= instant <= self.time_max

    @property
    def lower_bound(self) -> float:
        """Lower bound as epoch seconds."""
        return self.time_min.timestamp()

    def to_params(self) -> tuple[str, str]:
        """RFC 3339 strings for the ``timeMin``/``timeMax`` query parameters."""
        return (
            self.time_min.isoformat().replace("+00:00", "Z"),
            self.time_max.isoformat().replace("+00:00", "Z"),
        )


def compute_sync_window(now: datetime | float, policy: SyncPolicy | None = None) -> SyncWindow:
    """Compute the window around ``now``.

    Args:
        now: Reference time (aware datetime or epoch seconds).
        policy: Window size; defaults to 1 month + 15 days each way.

    Returns:
        The window in UTC.
    """
    policy = policy or SyncPolicy()
    if isinstance(now, datetime):
        reference = now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)
    else:
        reference = datetime.fromtimestamp(now, tz=UTC)
    span = relativedelta(months=policy.window_months, days=policy.window_days)
    return SyncWindow(time_min=reference - span, time_max=reference + span)
