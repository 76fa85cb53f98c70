"""Logging setup for the calmirror CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.WARNING, log_path: Path | None = None) -> None:
    """Configure logging to stdout and, optionally, a file.

    Args:
        level: Level of the calmirror logger.
        log_path: Optional log file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    # Root logger for calmirror
    root_logger = logging.getLogger("calmirror")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
