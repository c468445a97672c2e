"""Operational logging for mcp-powertool.

- system_logger: stderr + optional JSONL file logger for operational events
- error_log: human-readable diagnostic reports for startup failures
"""

from mcp_powertool.telemetry.error_log import save_error_log
from mcp_powertool.telemetry.system_logger import (
    configure_system_logger_file,
    get_system_logger,
)

__all__ = [
    "configure_system_logger_file",
    "get_system_logger",
    "save_error_log",
]
