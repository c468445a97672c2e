"""Tests for the system logger, JSONL formatting and error reports.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from mcp_powertool.exceptions import ConfigError
from mcp_powertool.telemetry import system_logger
from mcp_powertool.telemetry.error_log import save_error_log
from mcp_powertool.telemetry.iso_formatter import ISO8601Formatter
from mcp_powertool.telemetry.system_logger import (
    ConsoleFormatter,
    configure_system_logger_file,
    get_system_logger,
)


# ============================================================================
# Fixtures
# ============================================================================


def _record(msg, level: int = logging.WARNING) -> logging.LogRecord:
    return logging.LogRecord("test", level, __file__, 1, msg, None, None)


@pytest.fixture
def fresh_logger(monkeypatch):
    """Reset the singleton and drop any file handler the test added."""
    monkeypatch.setattr(system_logger, "_system_logger", None)
    monkeypatch.setattr(system_logger, "_file_handler_configured", False)
    yield
    logger = logging.getLogger("mcp-powertool.system")
    for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(handler)
        handler.close()


# ============================================================================
# Tests: Formatters
# ============================================================================


class TestConsoleFormatter:
    """Tests for stderr formatting of dict messages."""

    def test_prefers_message_field(self):
        # Act
        text = ConsoleFormatter().format(_record({"event": "backend_connected", "message": "Connected"}))

        # Assert
        assert text == "WARNING: Connected"

    def test_falls_back_to_event(self):
        assert ConsoleFormatter().format(_record({"event": "cache_hit"})) == "WARNING: cache_hit"

    def test_plain_string(self):
        assert ConsoleFormatter().format(_record("plain")) == "WARNING: plain"


class TestISO8601Formatter:
    """Tests for JSONL output."""

    def test_dict_message_merged_after_time_and_level(self):
        # Act
        line = ISO8601Formatter().format(_record({"event": "reload_failed", "error": "boom"}))

        # Assert
        entry = json.loads(line)
        assert list(entry)[:2] == ["time", "level"]
        assert entry["time"].endswith("Z")
        assert entry["event"] == "reload_failed"
        assert entry["level"] == "WARNING"

    def test_string_message(self):
        # Act
        entry = json.loads(ISO8601Formatter().format(_record("hello")))

        # Assert
        assert entry["message"] == "hello"


# ============================================================================
# Tests: System logger
# ============================================================================


class TestSystemLogger:
    """Tests for the singleton and its optional file handler."""

    def test_singleton(self, fresh_logger):
        # Act
        first = get_system_logger()
        second = get_system_logger()

        # Assert
        assert first is second
        assert first.propagate is False
        assert len(first.handlers) == 1

    def test_file_receives_warnings_only(self, fresh_logger, tmp_path: Path):
        # Arrange
        log_path = tmp_path / "logs" / "system.jsonl"
        configure_system_logger_file(log_path)
        logger = get_system_logger()

        # Act
        logger.info({"event": "backend_connected"})
        logger.warning({"event": "backend_connect_failed", "backend": "api"})
        for handler in logger.handlers:
            handler.flush()

        # Assert
        lines = log_path.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "backend_connect_failed"

    def test_file_handler_added_once(self, fresh_logger, tmp_path: Path):
        # Act
        configure_system_logger_file(tmp_path / "a.jsonl")
        configure_system_logger_file(tmp_path / "b.jsonl")

        # Assert
        file_handlers = [h for h in get_system_logger().handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1


# ============================================================================
# Tests: Error reports
# ============================================================================


class TestErrorLog:
    """Tests for diagnostic reports of survived failures."""

    def test_report_contents(self, tmp_path: Path, monkeypatch):
        # Arrange
        monkeypatch.setenv("AGIFLOW_MCP_API_KEY", "supersecretkey")
        try:
            raise ConfigError("Failed to fetch MCP configuration: 503")
        except ConfigError as e:
            error = e

        # Act
        path = save_error_log(error, "config fetch", log_dir=tmp_path)

        # Assert
        assert path.name.startswith("error-config-fetch-")
        text = path.read_text()
        assert "error_type: ConfigError" in text
        assert "503" in text
        assert "supersecretkey" not in text
        assert "supe...tkey" in text
        assert "Traceback" in text
