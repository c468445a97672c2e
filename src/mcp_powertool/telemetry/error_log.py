"""Diagnostic error reports for failures the proxy survives.

When the initial configuration fetch fails the proxy still starts with zero
backends, so the failure would otherwise only be visible on stderr of a
process the agent spawned. A report file gives the operator something to
find afterwards.

Location: <tempdir>/mcp-powertool-logs/error-<context>-<timestamp>.log
Format:
    timestamp: <iso>
    context: <context>
    error_type: <type>
    error: <message>
    platform: <platform> / python <version>
    environment: <json>
    traceback:
    <formatted traceback>
"""

from __future__ import annotations

__all__ = ["get_error_log_dir", "save_error_log"]

import json
import os
import platform
import re
import tempfile
import traceback
from datetime import datetime, timezone
from pathlib import Path

from mcp_powertool.constants import (
    ENV_API_KEY,
    ENV_CONFIG_URL,
    ENV_PROXY_ENDPOINT,
    ERROR_LOG_DIR_NAME,
)
from mcp_powertool.exceptions import FileIOError
from mcp_powertool.utils.file_helpers import set_secure_permissions

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def get_error_log_dir() -> Path:
    """Directory holding diagnostic error reports."""
    return Path(tempfile.gettempdir()) / ERROR_LOG_DIR_NAME


def _mask(value: str) -> str:
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


def _environment_summary() -> dict[str, str | None]:
    api_key = os.environ.get(ENV_API_KEY)
    return {
        ENV_CONFIG_URL: os.environ.get(ENV_CONFIG_URL),
        ENV_PROXY_ENDPOINT: os.environ.get(ENV_PROXY_ENDPOINT),
        ENV_API_KEY: _mask(api_key) if api_key else None,
    }


def save_error_log(error: BaseException, context: str, log_dir: Path | None = None) -> Path:
    """Write a diagnostic report for a survived failure.

    Args:
        error: The exception that was caught.
        context: Short label for where it happened (e.g. "config-fetch").
        log_dir: Override for the report directory (tests).

    Returns:
        Path of the written report.

    Raises:
        FileIOError: If the report cannot be written.
    """
    target_dir = log_dir or get_error_log_dir()
    now = datetime.now(timezone.utc)
    safe_context = _UNSAFE_CHARS.sub("-", context).strip("-") or "error"
    report_path = target_dir / f"error-{safe_context}-{now.strftime('%Y%m%dT%H%M%S%fZ')}.log"

    tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        set_secure_permissions(target_dir, is_directory=True)
        report_path.write_text(
            f"timestamp: {now.isoformat()}\n"
            f"context: {context}\n"
            f"error_type: {type(error).__name__}\n"
            f"error: {error}\n"
            f"platform: {platform.platform()} / python {platform.python_version()}\n"
            f"environment: {json.dumps(_environment_summary())}\n"
            f"traceback:\n{tb}",
            encoding="utf-8",
        )
        set_secure_permissions(report_path)
    except OSError as e:
        raise FileIOError(f"Failed to write error log {report_path}: {e}") from e
    return report_path
