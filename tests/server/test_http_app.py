"""Tests for serving the proxy over streamable HTTP and SSE.

Route tests call the FastAPI app in-process through httpx.ASGITransport.
Serving tests run the app on uvicorn with an ephemeral port and connect a
fastmcp Client to it.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import uvicorn
from fastapi import FastAPI
from fastmcp import Client
from fastmcp.client.transports import SSETransport, StreamableHttpTransport

from mcp_powertool.config.resolver import ConfigResolver, FetchContext, ResolverOptions
from mcp_powertool.server.http_app import ServeTransport, build_http_app
from mcp_powertool.server.proxy import ProxyServer, ReloadResult

PROXY_TOOLS = {"files/read_file", "files/write_file", "search/search", "search/read_file", "reload_config"}


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def no_proxy_env(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)


@asynccontextmanager
async def app_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@asynccontextmanager
async def running(app: FastAPI) -> AsyncIterator[str]:
    """Serve app on 127.0.0.1 with an ephemeral port; yields the base URL."""
    config = uvicorn.Config(
        app, host="127.0.0.1", port=0, log_config=None, lifespan="on", ws="none", timeout_graceful_shutdown=2
    )
    server = uvicorn.Server(config)
    task = asyncio.create_task(server._serve())
    try:
        while not server.started:
            assert not task.done(), "uvicorn exited during startup"
            await asyncio.sleep(0.01)
        port = server.servers[0].sockets[0].getsockname()[1]
        yield f"http://127.0.0.1:{port}"
    finally:
        server.should_exit = True
        await asyncio.wait_for(task, timeout=10)


# ============================================================================
# Tests: Routes
# ============================================================================


class TestReloadRoute:
    """Tests for POST /reload."""

    @pytest.mark.asyncio
    async def test_reload_without_body(self, proxy):
        # Arrange
        app = build_http_app(proxy, ServeTransport.HTTP)

        # Act
        async with app_client(app) as client:
            response = await client.post("/reload")

        # Assert
        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert sorted(payload["connected"]) == ["files", "search"]
        assert payload["failed"] == []

    @pytest.mark.asyncio
    async def test_context_ids_passed_to_reload(self, proxy):
        # Arrange
        app = build_http_app(proxy, ServeTransport.SSE)
        result = ReloadResult(success=True, message="ok", connected=["files"])

        # Act
        with patch.object(proxy, "reload", AsyncMock(return_value=result)) as reload:
            async with app_client(app) as client:
                response = await client.post("/reload", json={"taskId": "123", "projectId": "p1"})

        # Assert
        assert response.json() == {"success": True, "message": "ok", "connected": ["files"], "failed": []}
        reload.assert_awaited_once_with(FetchContext(task_id="123", project_id="p1"))

    @pytest.mark.asyncio
    async def test_empty_object_reloads_current_scope(self, proxy):
        # Arrange
        app = build_http_app(proxy, ServeTransport.HTTP)

        # Act
        with patch.object(proxy, "reload", AsyncMock(return_value=ReloadResult(success=True, message="ok"))) as reload:
            async with app_client(app) as client:
                await client.post("/reload", json={})

        # Assert
        reload.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_failed_reload_reported_in_body(self, proxy, config_path):
        # Arrange
        app = build_http_app(proxy, ServeTransport.HTTP)
        config_path.write_text("{broken")

        # Act
        async with app_client(app) as client:
            response = await client.post("/reload")

        # Assert
        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["message"].startswith("Failed to reload configuration:")
        assert sorted(proxy.manager.names) == ["files", "search"]

    @pytest.mark.asyncio
    async def test_wrongly_typed_id_rejected(self, proxy):
        # Arrange
        app = build_http_app(proxy, ServeTransport.HTTP)

        # Act
        async with app_client(app) as client:
            response = await client.post("/reload", json={"taskId": ["123"]})

        # Assert
        assert response.status_code == 422


class TestHealthRoute:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transport", [ServeTransport.HTTP, ServeTransport.SSE])
    async def test_health_names_transport(self, proxy, transport):
        # Arrange
        app = build_http_app(proxy, transport)

        # Act
        async with app_client(app) as client:
            response = await client.get("/health")

        # Assert
        assert response.json() == {"status": "ok", "transport": transport.value}

    def test_stdio_is_not_served_over_http(self, manager, config_path):
        # Arrange
        proxy = ProxyServer(ConfigResolver(ResolverOptions(config_file=config_path), environ={}), manager)

        # Act & Assert
        with pytest.raises(ValueError, match="stdio"):
            build_http_app(proxy, ServeTransport.STDIO)


# ============================================================================
# Tests: Serving
# ============================================================================


class TestServing:
    """End-to-end MCP sessions over a real socket."""

    @pytest.mark.asyncio
    async def test_streamable_http_client_lists_and_calls(self, proxy, no_proxy_env):
        # Arrange
        app = build_http_app(proxy, ServeTransport.HTTP)

        # Act
        async with running(app) as base_url:
            async with Client(StreamableHttpTransport(f"{base_url}/mcp")) as client:
                tools = await client.list_tools()
                result = await client.call_tool("files/read_file", {"path": "notes.md"})

        # Assert
        assert {tool.name for tool in tools} == PROXY_TOOLS
        assert result.content[0].text == "contents of notes.md"

    @pytest.mark.asyncio
    async def test_sse_client_lists_tools(self, proxy, no_proxy_env):
        # Arrange
        app = build_http_app(proxy, ServeTransport.SSE)

        # Act
        async with running(app) as base_url:
            async with Client(SSETransport(f"{base_url}/sse")) as client:
                tools = await client.list_tools()

        # Assert
        assert {tool.name for tool in tools} == PROXY_TOOLS
