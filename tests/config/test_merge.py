"""Tests for merge strategies.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import pytest

from mcp_powertool.config.merge import MergeStrategy, merge_configurations
from mcp_powertool.config.models import HttpParams, StdioParams, parse_raw_config


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def local():
    return parse_raw_config(
        {
            "mcpServers": {
                "a": {"command": "cmd1", "env": {"SHARED": "local", "LOCAL_ONLY": "1"}},
                "api": {"url": "https://local.example/mcp", "headers": {"X-Local": "1", "X-Both": "local"}},
            }
        },
        {},
    )


@pytest.fixture
def remote():
    return parse_raw_config(
        {
            "mcpServers": {
                "a": {"command": "cmd2", "args": ["--remote"], "env": {"SHARED": "remote", "REMOTE_ONLY": "1"}},
                "b": {"url": "https://url2.example/mcp"},
                "api": {"url": "https://remote.example/mcp", "headers": {"X-Remote": "1", "X-Both": "remote"}},
            }
        },
        {},
    )


# ============================================================================
# Tests: Strategies
# ============================================================================


class TestPriorityStrategies:
    """Tests for local-priority and remote-priority."""

    def test_local_priority_end_to_end(self, local, remote):
        """Local a replaces remote a; remote-only b is kept."""
        # Act
        merged = merge_configurations(local, remote, MergeStrategy.LOCAL_PRIORITY)

        # Assert
        assert merged.names == {"a", "b", "api"}
        params = merged.backends["a"].connection_params
        assert isinstance(params, StdioParams)
        assert params.command == "cmd1"
        assert params.args == []

    def test_remote_priority_prefers_remote(self, local, remote):
        # Act
        merged = merge_configurations(local, remote, MergeStrategy.REMOTE_PRIORITY)

        # Assert
        params = merged.backends["a"].connection_params
        assert isinstance(params, StdioParams)
        assert params.command == "cmd2"

    def test_local_priority_mirrors_remote_priority(self, local, remote):
        """merge(A, B, local-priority) == merge(B, A, remote-priority)."""
        assert merge_configurations(local, remote, MergeStrategy.LOCAL_PRIORITY) == merge_configurations(
            remote, local, MergeStrategy.REMOTE_PRIORITY
        )

    @pytest.mark.parametrize("strategy", list(MergeStrategy))
    def test_disjoint_configs_union_under_any_strategy(self, strategy):
        # Arrange
        left = parse_raw_config({"mcpServers": {"x": {"command": "x"}}}, {})
        right = parse_raw_config({"mcpServers": {"y": {"command": "y"}}}, {})

        # Act
        merged = merge_configurations(left, right, strategy)

        # Assert
        assert merged.backends == {**left.backends, **right.backends}

    @pytest.mark.parametrize("strategy", list(MergeStrategy))
    def test_disabled_entries_absent_under_any_strategy(self, strategy):
        # Arrange
        left = parse_raw_config({"mcpServers": {"x": {"command": "x", "disabled": True}}}, {})
        right = parse_raw_config({"mcpServers": {"x": {"command": "x2", "disabled": True}}}, {})

        # Act
        merged = merge_configurations(left, right, strategy)

        # Assert
        assert "x" not in merged.names


class TestMergeDeep:
    """Tests for key-by-key merging."""

    def test_env_merged_per_key_local_wins(self, local, remote):
        # Act
        merged = merge_configurations(local, remote, MergeStrategy.MERGE_DEEP)

        # Assert
        params = merged.backends["a"].connection_params
        assert isinstance(params, StdioParams)
        assert params.command == "cmd1"
        assert params.env == {"SHARED": "local", "LOCAL_ONLY": "1", "REMOTE_ONLY": "1"}

    def test_empty_local_args_fall_back_to_remote(self, local, remote):
        # Act
        merged = merge_configurations(local, remote, MergeStrategy.MERGE_DEEP)

        # Assert
        params = merged.backends["a"].connection_params
        assert isinstance(params, StdioParams)
        assert params.args == ["--remote"]

    def test_headers_merged_per_key(self, local, remote):
        # Act
        merged = merge_configurations(local, remote, MergeStrategy.MERGE_DEEP)

        # Assert
        params = merged.backends["api"].connection_params
        assert isinstance(params, HttpParams)
        assert params.url == "https://local.example/mcp"
        assert params.headers == {"X-Local": "1", "X-Remote": "1", "X-Both": "local"}

    def test_mismatched_transports_take_local(self):
        # Arrange
        left = parse_raw_config({"mcpServers": {"x": {"command": "local-cmd"}}}, {})
        right = parse_raw_config({"mcpServers": {"x": {"url": "https://remote.example"}}}, {})

        # Act
        merged = merge_configurations(left, right, MergeStrategy.MERGE_DEEP)

        # Assert
        assert merged.backends["x"] == left.backends["x"]
