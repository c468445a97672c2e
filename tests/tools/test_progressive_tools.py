"""Tests for the progressive-mode meta-tools describe-tools and use-tool.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def progressive(make_proxy):
    return await make_proxy(progressive=True)


def _payload(result) -> dict:
    return json.loads(result.content[0].text)


# ============================================================================
# Tests: describe-tools
# ============================================================================


class TestDescribeTools:
    """Tests for batch schema lookup."""

    @pytest.mark.asyncio
    async def test_definition_lists_servers_and_tools(self, progressive):
        # Act
        tools = {tool.name: tool for tool in await progressive.list_tools()}

        # Assert
        description = tools["describe-tools"].description
        assert "### Server: files" in description
        assert "- Description: Local file access" in description
        assert "read_file,write_file" in description
        assert "### Server: search" in description

    @pytest.mark.asyncio
    async def test_unique_tool_found(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {"toolNames": ["write_file"]})

        # Assert
        assert not result.isError
        payload = _payload(result)
        assert payload["tools"][0]["server"] == "files"
        assert payload["tools"][0]["tool"]["name"] == "write_file"
        assert "path" in payload["tools"][0]["tool"]["inputSchema"]["properties"]
        assert "warnings" not in payload

    @pytest.mark.asyncio
    async def test_shared_name_reported_ambiguous(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {"toolNames": ["read_file", "search"]})

        # Assert
        assert not result.isError
        payload = _payload(result)
        assert [item["tool"]["name"] for item in payload["tools"]] == ["search"]
        assert payload["ambiguous"][0]["toolName"] == "read_file"
        assert sorted(payload["ambiguous"][0]["servers"]) == ["files", "search"]
        assert payload["warnings"] == ["Ambiguous tools (specify serverName): read_file"]

    @pytest.mark.asyncio
    async def test_server_name_disambiguates(self, progressive):
        # Act
        result = await progressive.call_tool(
            "describe-tools", {"toolNames": ["read_file"], "serverName": "search"}
        )

        # Assert
        payload = _payload(result)
        assert payload["tools"][0]["server"] == "search"
        assert "ambiguous" not in payload

    @pytest.mark.asyncio
    async def test_partial_result_lists_not_found(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {"toolNames": ["search", "missing"]})

        # Assert
        assert not result.isError
        payload = _payload(result)
        assert payload["notFound"] == ["missing"]
        assert payload["warnings"] == ["Tools not found: missing"]

    @pytest.mark.asyncio
    async def test_nothing_found_is_error(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {"toolNames": ["missing"]})

        # Assert
        assert result.isError
        assert result.content[0].text == (
            "None of the requested tools found on any connected server.\nRequested: missing"
        )

    @pytest.mark.asyncio
    async def test_unknown_server_is_error(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {"toolNames": ["x"], "serverName": "ghost"})

        # Assert
        assert result.isError
        assert result.content[0].text.startswith('Server "ghost" not found. Available servers: ')

    @pytest.mark.asyncio
    async def test_empty_names_is_error(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {"toolNames": []})

        # Assert
        assert result.isError
        assert result.content[0].text.startswith("No tool names provided")

    @pytest.mark.asyncio
    async def test_missing_names_is_invalid(self, progressive):
        # Act
        result = await progressive.call_tool("describe-tools", {})

        # Assert
        assert result.isError
        assert result.content[0].text.startswith("Invalid arguments")


# ============================================================================
# Tests: use-tool
# ============================================================================


class TestUseTool:
    """Tests for indirect tool invocation."""

    @pytest.mark.asyncio
    async def test_matches_direct_call(self, progressive):
        # Act
        via_meta = await progressive.call_tool(
            "use-tool", {"toolName": "write_file", "toolArgs": {"path": "a", "content": "xyz"}}
        )
        via_direct = await progressive.call_tool("files/write_file", {"path": "a", "content": "xyz"})

        # Assert
        assert via_meta.content == via_direct.content
        assert via_meta.content[0].text == "wrote 3 bytes to a"

    @pytest.mark.asyncio
    async def test_ambiguous_without_server_name(self, progressive):
        # Act
        result = await progressive.call_tool("use-tool", {"toolName": "read_file", "toolArgs": {"path": "a"}})

        # Assert
        assert result.isError
        assert result.content[0].text.startswith(
            'Multiple servers provide tool "read_file". Please specify serverName.'
        )

    @pytest.mark.asyncio
    async def test_server_name_selects_backend(self, progressive):
        # Act
        result = await progressive.call_tool(
            "use-tool", {"toolName": "read_file", "toolArgs": {"path": "a"}, "serverName": "search"}
        )

        # Assert
        assert not result.isError
        assert result.content[0].text == "indexed a"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, progressive):
        # Act
        result = await progressive.call_tool("use-tool", {"toolName": "missing"})

        # Assert
        assert result.isError
        assert result.content[0].text == (
            'Tool "missing" not found on any connected server. Use describe-tools to see available tools.'
        )

    @pytest.mark.asyncio
    async def test_unknown_server(self, progressive):
        # Act
        result = await progressive.call_tool("use-tool", {"toolName": "search", "serverName": "ghost"})

        # Assert
        assert result.isError
        assert 'Server "ghost" not found' in result.content[0].text

    @pytest.mark.asyncio
    async def test_backend_exception_is_error_result(self, progressive):
        # Arrange
        conn = progressive.manager.get_client("search")

        # Act
        with patch.object(conn, "call_tool", side_effect=RuntimeError("boom")):
            result = await progressive.call_tool("use-tool", {"toolName": "search", "toolArgs": {"query": "q"}})

        # Assert
        assert result.isError
        assert result.content[0].text == 'Failed to call tool "search" on server "search": boom'
