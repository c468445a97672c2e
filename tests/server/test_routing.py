"""Tests for name prefixing and capability snapshots.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import pytest

from mcp_powertool.server.routing import (
    CapabilitySnapshot,
    capture_snapshot,
    prefix_name,
    prefix_uri,
    split_prefixed_name,
    split_prefixed_uri,
)


# ============================================================================
# Tests: Prefixing
# ============================================================================


class TestPrefixing:
    """Tests for backend prefixes on names and URIs."""

    def test_name_round_trip(self):
        assert split_prefixed_name(prefix_name("files", "read_file")) == ("files", "read_file")

    def test_name_splits_on_first_separator(self):
        assert split_prefixed_name("files/nested/tool") == ("files", "nested/tool")

    @pytest.mark.parametrize("value", ["read_file", "/read_file", "files/"])
    def test_unprefixed_names(self, value):
        assert split_prefixed_name(value) is None

    def test_uri_round_trip(self):
        # Act
        prefixed = prefix_uri("files", "memo://notes")

        # Assert
        assert prefixed == "files://memo://notes"
        assert split_prefixed_uri(prefixed) == ("files", "memo://notes")

    def test_uri_without_scheme(self):
        assert split_prefixed_uri("notes") is None


# ============================================================================
# Tests: Snapshots
# ============================================================================


class TestSnapshots:
    """Tests for snapshot comparison."""

    def test_equal_snapshots_report_no_change(self):
        # Arrange
        entries = [("files", "read_file", {"name": "read_file"})]
        before = CapabilitySnapshot(frozenset({"files"}), tools=list(entries))
        after = CapabilitySnapshot(frozenset({"files"}), tools=list(entries))

        # Act & Assert
        assert before.changed_kinds(after) == {"tools": False, "resources": False, "prompts": False}

    def test_changed_description_counts_as_change(self):
        # Arrange
        before = CapabilitySnapshot(tools=[("files", "read_file", {"description": "old"})])
        after = CapabilitySnapshot(tools=[("files", "read_file", {"description": "new"})])

        # Act & Assert
        assert before.changed_kinds(after)["tools"]

    @pytest.mark.asyncio
    async def test_capture_is_sorted_and_stable(self, proxy):
        # Act
        first = await capture_snapshot(proxy.catalog)
        second = await capture_snapshot(proxy.catalog)

        # Assert
        assert first.backends == frozenset({"files", "search"})
        assert [(b, k) for b, k, _ in first.tools] == [
            ("files", "read_file"),
            ("files", "write_file"),
            ("search", "read_file"),
            ("search", "search"),
        ]
        assert len(first.resources) == 1
        assert len(first.prompts) == 1
        assert not any(first.changed_kinds(second).values())
