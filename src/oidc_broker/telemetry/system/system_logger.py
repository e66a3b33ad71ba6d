"""System logger for operational events.

This module provides the singleton application logger. Every module logs
through a child of it (``logging.getLogger(f"{APP_NAME}.broker.session")``),
so handlers are configured in one place.

Logging strategy:
- Console (stderr): INFO and above, human-readable
- File (JSONL): WARNING and above, added via configure_system_logger_file()
  once the host knows where logs go

Messages are dicts with an "event" key:
    logger.info({"event": "session_created", "username": "alice"})
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
    "set_system_log_level",
]

import logging
import sys
from pathlib import Path

from oidc_broker.constants import APP_NAME
from oidc_broker.utils.logging.iso_formatter import ISO8601Formatter
from oidc_broker.utils.logging.logger_setup import ensure_secure_log_directory


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output.

    Extracts 'message' or 'event' field from dict messages for cleaner stderr output.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human-readable console output.

        Args:
            record: The log record to format.

        Returns:
            str: Formatted log message with level prefix.
        """
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"


# Module-level singleton logger - initialized on first use
_system_logger: logging.Logger | None = None
_file_handler_configured: bool = False


def get_system_logger() -> logging.Logger:
    """Get the singleton application logger.

    Creates the logger on first call with a stderr handler only.

    Returns:
        logging.Logger: The "oidc-broker" logger all module loggers propagate to.

    Example:
        >>> logger = get_system_logger()
        >>> logger.warning({"event": "provider_unreachable", "issuer": "..."})
    """
    global _system_logger

    if _system_logger is not None:
        return _system_logger

    _system_logger = logging.getLogger(APP_NAME)
    _system_logger.setLevel(logging.INFO)
    _system_logger.propagate = False

    # Close and remove any existing handlers to avoid duplicates and resource leaks
    for handler in _system_logger.handlers:
        handler.close()
    _system_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.DEBUG)
    stderr_handler.setFormatter(ConsoleFormatter())
    _system_logger.addHandler(stderr_handler)

    return _system_logger


def set_system_log_level(level: int) -> None:
    """Change the level of the application logger (e.g. DEBUG for --debug)."""
    get_system_logger().setLevel(level)


def configure_system_logger_file(log_path: Path) -> None:
    """Add a JSONL file handler to the application logger.

    Should be called once after configuration is loaded. The file handler
    records WARNING, ERROR and CRITICAL only (persistent issues).

    Args:
        log_path: Path to the JSONL log file.
    """
    global _file_handler_configured

    if _file_handler_configured:
        return

    logger = get_system_logger()

    try:
        ensure_secure_log_directory(log_path)
    except OSError:
        # stderr still works
        logger.warning({"event": "log_dir_unavailable", "path": str(log_path.parent)})
        return

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ISO8601Formatter())
    logger.addHandler(file_handler)

    _file_handler_configured = True
