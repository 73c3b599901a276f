"""Content KPI Engine — Logging Setup.

Every module gets its logger from get_logger(__name__). The first call
configures the root logger once:

  - console: INFO and above, level name and timestamp colored
  - file:    DEBUG and above, logs/content_kpi.log, rotated at 10 MB

Set CONTENT_KPI_LOG_DIR to write the log file somewhere else.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# ── Constants ─────────────────────────────────────────────
DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"
LOG_FILENAME = "content_kpi.log"
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ── ANSI Color Codes ─────────────────────────────────────
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",     # Cyan
    logging.INFO: "\033[32m",      # Green
    logging.WARNING: "\033[33m",   # Yellow
    logging.ERROR: "\033[31m",     # Red
    logging.CRITICAL: "\033[41m",  # Red background
}
RESET = "\033[0m"

_console_handler: logging.Handler | None = None


class ColoredFormatter(logging.Formatter):
    """Console formatter with colored level names and timestamps."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        return f"{color}{super().formatTime(record, datefmt or DATE_FORMAT)}{RESET}"

    def format(self, record: logging.LogRecord) -> str:
        # Format a copy; the file handler must keep the plain level name.
        colored = logging.makeLogRecord(record.__dict__)
        color = LEVEL_COLORS.get(record.levelno, "")
        colored.levelname = f"{color}{record.levelname:<8}{RESET}"
        return super().format(colored)


def log_file_path() -> Path:
    """Where the rotating log file is written."""
    override = os.environ.get("CONTENT_KPI_LOG_DIR")
    return (Path(override) if override else DEFAULT_LOG_DIR) / LOG_FILENAME


def _setup_logging() -> None:
    """Attach the console and file handlers to the root logger (once)."""
    global _console_handler
    if _console_handler is not None:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(ColoredFormatter("%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s"))
    root_logger.addHandler(console)

    path = log_file_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s", datefmt=DATE_FORMAT,
    ))
    root_logger.addHandler(file_handler)

    _console_handler = console


def set_console_level(level: str) -> None:
    """Apply the configured level (logging.level in settings.yaml) to the console.

    Raises:
        ValueError: If level is not a logging level name.
    """
    _setup_logging()
    _console_handler.setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Named logger with the engine's handlers in place.

    Args:
        name: Usually the calling module's __name__.
    """
    _setup_logging()
    return logging.getLogger(name)
