"""System logger for operational events.

This module provides a singleton system logger for everything the proxy
reports about itself: backend connections, configuration fetches, reloads,
OAuth sessions, cache misses.

Logging strategy:
- Console (stderr): ALL operational messages (INFO and above)
- File (system.jsonl): Only issues (WARNING and above), added on demand

stdout is reserved for the stdio MCP protocol and is never written to.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
]

import logging
import sys
from pathlib import Path

from mcp_powertool.constants import APP_NAME
from mcp_powertool.telemetry.iso_formatter import ISO8601Formatter
from mcp_powertool.utils.file_helpers import set_secure_permissions


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output.

    Extracts 'message' or 'event' field from dict messages for cleaner stderr output.
    """

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"


# Module-level singleton logger
_system_logger: logging.Logger | None = None
_file_handler_configured: bool = False


def get_system_logger() -> logging.Logger:
    """Get the singleton system logger instance.

    Creates the logger on first call with a stderr handler only. A file
    handler is added later via configure_system_logger_file().

    Returns:
        logging.Logger: Configured system logger instance.

    Example:
        >>> logger = get_system_logger()
        >>> logger.warning({"event": "backend_connect_failed", "backend": "github"})
    """
    global _system_logger

    if _system_logger is not None:
        return _system_logger

    _system_logger = logging.getLogger(f"{APP_NAME}.system")
    _system_logger.setLevel(logging.INFO)
    _system_logger.propagate = False

    for handler in _system_logger.handlers:
        handler.close()
    _system_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.INFO)
    stderr_handler.setFormatter(ConsoleFormatter())
    _system_logger.addHandler(stderr_handler)

    return _system_logger


def configure_system_logger_file(log_path: Path) -> None:
    """Add a JSONL file handler (WARNING and above) to the system logger.

    Only the first call has an effect.

    Args:
        log_path: Path to the system log file.
    """
    global _file_handler_configured

    if _file_handler_configured:
        return

    logger = get_system_logger()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        set_secure_permissions(log_path.parent, is_directory=True)
    except OSError:
        pass  # stderr still works

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ISO8601Formatter())
    logger.addHandler(file_handler)

    _file_handler_configured = True
