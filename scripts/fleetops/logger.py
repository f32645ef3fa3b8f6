"""Coloured logging configuration for the fleet tools.

This module provides a pre-configured logger with coloured console output and
time-zone aware timestamps, plus a helper for mirroring the log into a file
next to a tool's report.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import ClassVar
from zoneinfo import ZoneInfo

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogMessageFilter(logging.Filter):
    """A logging filter to remove problematic control characters from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records, removing only problematic control characters.

        Returns:
            True if the log record should be processed, False otherwise.
        """
        if isinstance(record.msg, str):
            record.msg = CONTROL_CHARS.sub("", record.msg)
        if record.exc_text:
            record.exc_text = CONTROL_CHARS.sub("", record.exc_text)
        return True


class ZonedFormatter(logging.Formatter):
    """Formatter that renders ``asctime`` in a configurable IANA time zone."""

    zone: ClassVar[ZoneInfo] = ZoneInfo("UTC")

    def formatTime(  # noqa: N802
        self, record: logging.LogRecord, datefmt: str | None = None
    ) -> str:
        """Format the record creation time in the configured zone.

        Returns:
            The formatted timestamp.
        """
        stamp = datetime.fromtimestamp(record.created, tz=self.zone)
        return stamp.strftime(datefmt or DATE_FORMAT)


class ColoredFormatter(ZonedFormatter):
    """Custom formatter that adds colour codes to different log levels."""

    # ANSI colour codes
    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[90m",  # Grey
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET: ClassVar[str] = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with appropriate colours.

        Returns:
            The formatted log record with appropriate colours.
        """
        colour = self.COLORS.get(record.levelname, "")
        formatted = super().format(record)
        if colour:
            formatted = f"{colour}{formatted}{self.RESET}"
        return formatted


def set_timezone(name: str) -> None:
    """Switch log timestamps to the given IANA zone (e.g. ``Asia/Taipei``).

    Raises:
        ValueError: If the zone name is unknown.
    """
    try:
        ZonedFormatter.zone = ZoneInfo(name)
    except (KeyError, ValueError) as e:
        msg = f"Unknown time zone: {name}"
        raise ValueError(msg) from e


def add_file_handler(path: Path) -> logging.FileHandler:
    """Mirror the shared logger into a plain-text file.

    Returns:
        The attached handler, so callers can detach it when done.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(ZonedFormatter(LOG_FORMAT))
    file_handler.addFilter(LogMessageFilter())
    logger.addHandler(file_handler)
    return file_handler


# Create and configure logger with colour formatting
logger = logging.getLogger("fleetops")
logger.setLevel(logging.DEBUG)

console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
console_handler.addFilter(LogMessageFilter())

logger.addHandler(console_handler)

# Prevent duplicate logs from root logger
logger.propagate = False


def set_verbose(verbose: bool) -> None:
    """Show debug output on the console when ``verbose`` is set."""
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
