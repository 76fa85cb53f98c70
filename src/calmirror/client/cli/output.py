"""Formatting helpers shared by CLI commands."""

from __future__ import annotations

from datetime import datetime

from calmirror.client.sync.types import Event


def format_time(timestamp: float | None) -> str:
    """Format epoch seconds in local time ("never" for None)."""
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def describe_event(event: Event | None) -> str:
    """One-line summary of an event: title and start."""
    if event is None:
        return "(deleted)"
    start = event.start.key() or "?"
    return f"{event.summary} @ {start}"
