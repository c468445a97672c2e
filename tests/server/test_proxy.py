"""Tests for the aggregating proxy: tools, resources and prompts.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from mcp import McpError
from mcp.shared.memory import create_connected_server_and_client_session

from mcp_powertool.config.resolver import ConfigResolver, ResolverOptions
from mcp_powertool.exceptions import PromptNotFoundError, ResourceNotFoundError, UnknownBackendError
from mcp_powertool.server.proxy import ProxyOptions, ProxyServer

BACKEND_TOOLS = {"files/read_file", "files/write_file", "search/search", "search/read_file"}


# ============================================================================
# Tests: Startup
# ============================================================================


class TestStartup:
    """Tests for the initial connection pass."""

    @pytest.mark.asyncio
    async def test_connects_every_backend(self, proxy):
        assert sorted(proxy.manager.names) == ["files", "search"]

    @pytest.mark.asyncio
    async def test_config_failure_serves_zero_backends(self, manager, tmp_path: Path):
        # Arrange
        path = tmp_path / "broken.json"
        path.write_text("{broken")
        resolver = ConfigResolver(ResolverOptions(config_file=path), environ={})
        proxy = ProxyServer(resolver, manager)

        # Act
        with patch(
            "mcp_powertool.server.proxy.save_error_log", return_value=tmp_path / "error.log"
        ) as save:
            result = await proxy.start()

        # Assert
        assert result == ([], [])
        assert manager.names == []
        save.assert_called_once()
        assert await proxy.list_tools() == [proxy._reload_tool.definition()]


# ============================================================================
# Tests: Tools
# ============================================================================


class TestTools:
    """Tests for tool aggregation and routing."""

    @pytest.mark.asyncio
    async def test_list_prefixed(self, proxy):
        # Act
        names = [tool.name for tool in await proxy.list_tools()]

        # Assert
        assert names[0] == "reload_config"
        assert set(names[1:]) == BACKEND_TOOLS

    @pytest.mark.asyncio
    async def test_list_unprefixed(self, make_proxy):
        # Arrange
        proxy = await make_proxy(use_server_prefix=False)

        # Act
        names = [tool.name for tool in await proxy.list_tools()]

        # Assert
        assert sorted(names) == ["read_file", "read_file", "reload_config", "search", "write_file"]

    @pytest.mark.asyncio
    async def test_call_prefixed(self, proxy):
        # Act
        result = await proxy.call_tool("search/read_file", {"path": "a.txt"})

        # Assert
        assert not result.isError
        assert result.content[0].text == "indexed a.txt"

    @pytest.mark.asyncio
    async def test_call_unprefixed(self, make_proxy):
        # Arrange
        proxy = await make_proxy(use_server_prefix=False)

        # Act
        result = await proxy.call_tool("search", {"query": "milk"})

        # Assert
        assert result.content[0].text == "results for milk"

    @pytest.mark.asyncio
    async def test_unknown_backend_is_error_result(self, proxy):
        # Act
        result = await proxy.call_tool("ghost/read_file", {"path": "a"})

        # Assert
        assert result.isError
        assert "Server ghost not found" in result.content[0].text

    @pytest.mark.asyncio
    async def test_unprefixed_name_in_prefix_mode_is_error_result(self, proxy):
        # Act
        result = await proxy.call_tool("read_file", {"path": "a"})

        # Assert
        assert result.isError

    @pytest.mark.asyncio
    async def test_backend_exception_is_error_result(self, proxy):
        # Arrange
        conn = proxy.manager.get_client("files")

        # Act
        with patch.object(conn, "call_tool", side_effect=RuntimeError("boom")):
            result = await proxy.call_tool("files/read_file", {"path": "a"})

        # Assert
        assert result.isError
        assert result.content[0].text == "Error calling tool read_file on server files: boom"

    @pytest.mark.asyncio
    async def test_progressive_lists_only_meta_tools(self, make_proxy):
        # Arrange
        proxy = await make_proxy(progressive=True)

        # Act
        names = [tool.name for tool in await proxy.list_tools()]

        # Assert
        assert names == ["reload_config", "describe-tools", "use-tool"]

    @pytest.mark.asyncio
    async def test_meta_tools_not_intercepted_outside_progressive(self, proxy):
        # Act
        result = await proxy.call_tool("use-tool", {"toolName": "search"})

        # Assert
        assert result.isError


# ============================================================================
# Tests: Resources and prompts
# ============================================================================


class TestResources:
    """Tests for resource aggregation and routing."""

    @pytest.mark.asyncio
    async def test_list_and_read_prefixed(self, proxy):
        # Arrange
        resources = await proxy.list_resources()

        # Act
        result = await proxy.read_resource(str(resources[0].uri))

        # Assert
        assert len(resources) == 1
        assert str(resources[0].uri).startswith("files://")
        assert result.contents[0].text == "remember the milk"

    @pytest.mark.asyncio
    async def test_read_prefixed_without_listing(self, proxy):
        # Act
        result = await proxy.read_resource("files://memo://notes")

        # Assert
        assert result.contents[0].text == "remember the milk"

    @pytest.mark.asyncio
    async def test_read_unprefixed(self, make_proxy):
        # Arrange
        proxy = await make_proxy(use_server_prefix=False)

        # Act
        result = await proxy.read_resource("memo://notes")

        # Assert
        assert result.contents[0].text == "remember the milk"

    @pytest.mark.asyncio
    async def test_unknown_resource_raises_routing_error(self, make_proxy):
        # Arrange
        proxy = await make_proxy(use_server_prefix=False)

        # Act & Assert
        with pytest.raises(ResourceNotFoundError):
            await proxy.read_resource("memo://missing")

    @pytest.mark.asyncio
    async def test_unknown_backend_raises_routing_error(self, proxy):
        # Act & Assert
        with pytest.raises(UnknownBackendError):
            await proxy.read_resource("ghost://memo://notes")


class TestPrompts:
    """Tests for prompt aggregation and routing."""

    @pytest.mark.asyncio
    async def test_list_prefixed(self, proxy):
        # Act
        names = [prompt.name for prompt in await proxy.list_prompts()]

        # Assert
        assert names == ["files/summarize"]

    @pytest.mark.asyncio
    async def test_get_prefixed(self, proxy):
        # Act
        result = await proxy.get_prompt("files/summarize", {"text": "a long story"})

        # Assert
        assert result.messages[0].content.text == "Summarize: a long story"

    @pytest.mark.asyncio
    async def test_get_unprefixed(self, make_proxy):
        # Arrange
        proxy = await make_proxy(use_server_prefix=False)

        # Act
        result = await proxy.get_prompt("summarize", {"text": "x"})

        # Assert
        assert result.messages[0].content.text == "Summarize: x"

    @pytest.mark.asyncio
    async def test_unknown_prompt_raises(self, make_proxy):
        # Arrange
        proxy = await make_proxy(use_server_prefix=False)

        # Act & Assert
        with pytest.raises(PromptNotFoundError):
            await proxy.get_prompt("missing", None)

    @pytest.mark.asyncio
    async def test_backend_failure_raises_internal_error(self, proxy):
        # Arrange
        conn = proxy.manager.get_client("files")

        # Act & Assert
        with patch.object(conn, "get_prompt", side_effect=RuntimeError("boom")):
            with pytest.raises(McpError) as exc_info:
                await proxy.get_prompt("files/summarize", {"text": "x"})
        assert exc_info.value.error.code == -32603
        assert exc_info.value.error.data == {"backend": "files"}


# ============================================================================
# Tests: Protocol
# ============================================================================


class TestProtocol:
    """End-to-end requests through an in-memory MCP client session."""

    @pytest.mark.asyncio
    async def test_client_lists_and_calls(self, proxy):
        # Act
        async with create_connected_server_and_client_session(proxy.server) as client:
            listed = await client.list_tools()
            result = await client.call_tool("files/read_file", {"path": "notes.md"})

        # Assert
        assert {tool.name for tool in listed.tools} == BACKEND_TOOLS | {"reload_config"}
        assert result.content[0].text == "contents of notes.md"

    @pytest.mark.asyncio
    async def test_client_sees_routing_error_code(self, proxy):
        # Act & Assert
        async with create_connected_server_and_client_session(proxy.server) as client:
            with pytest.raises(McpError) as exc_info:
                await client.get_prompt("ghost/summarize")
        assert exc_info.value.error.code == -32602

    def test_initialization_advertises_list_changed(self, manager, config_path):
        # Arrange
        proxy = ProxyServer(ConfigResolver(ResolverOptions(config_file=config_path), environ={}), manager)

        # Act
        capabilities = proxy.initialization_options().capabilities

        # Assert
        assert capabilities.tools.listChanged
        assert capabilities.resources.listChanged
        assert capabilities.prompts.listChanged
