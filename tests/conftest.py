"""Shared fixtures: in-memory FastMCP backends and proxy wiring.

Backends are FastMCP servers reached through FastMCPTransport, injected via
the manager's transport_factory, so no process is spawned and no socket is
opened. Configuration comes from a JSON file in tmp_path whose stdio
entries only serve as names; the factory maps each name to its server.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
from fastmcp import FastMCP
from fastmcp.client.transports import ClientTransport, FastMCPTransport

from mcp_powertool.backends.manager import BackendConnectionManager
from mcp_powertool.config.models import BackendConfig, StdioParams, TransportKind
from mcp_powertool.config.resolver import ConfigResolver, ResolverOptions
from mcp_powertool.server.proxy import ProxyOptions, ProxyServer


# ---------------------------------------------------------------------------
# Test backends
# ---------------------------------------------------------------------------


def create_files_backend() -> FastMCP:
    """Backend with file tools, a resource and a prompt."""
    backend = FastMCP("files", instructions="Local file access")

    @backend.tool()
    def read_file(path: str) -> str:
        """Read a file."""
        return f"contents of {path}"

    @backend.tool()
    def write_file(path: str, content: str) -> str:
        """Write a file."""
        return f"wrote {len(content)} bytes to {path}"

    @backend.resource("memo://notes")
    def notes() -> str:
        return "remember the milk"

    @backend.prompt()
    def summarize(text: str) -> str:
        """Summarize text."""
        return f"Summarize: {text}"

    return backend


def create_search_backend() -> FastMCP:
    """Backend whose read_file collides with the files backend."""
    backend = FastMCP("search")

    @backend.tool()
    def search(query: str) -> str:
        """Search documents."""
        return f"results for {query}"

    @backend.tool()
    def read_file(path: str) -> str:
        """Read an indexed file."""
        return f"indexed {path}"

    return backend


def stdio_config(name: str, command: str = "noop") -> BackendConfig:
    return BackendConfig(
        name=name,
        transport=TransportKind.STDIO,
        connection_params=StdioParams(command=command),
    )


class BackendRegistry:
    """Maps backend names to in-memory servers for the transport factory.

    Tests replace entries to simulate a backend changing between reloads.
    """

    def __init__(self, servers: dict[str, FastMCP] | None = None) -> None:
        self.servers: dict[str, FastMCP] = dict(servers or {})
        self.opened: list[str] = []

    def factory(self, config: BackendConfig, auth: Any) -> ClientTransport:
        self.opened.append(config.name)
        if config.name not in self.servers:
            raise ConnectionError(f"no backend named {config.name}")
        return FastMCPTransport(self.servers[config.name])


def write_config(path: Path, names: list[str], **extra: dict[str, Any]) -> Path:
    """Write an mcpServers document with one stdio entry per name."""
    servers: dict[str, Any] = {name: {"command": f"run-{name}"} for name in names}
    servers.update(extra)
    path.write_text(json.dumps({"mcpServers": servers}), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def registry() -> BackendRegistry:
    return BackendRegistry({"files": create_files_backend(), "search": create_search_backend()})


@pytest.fixture()
def manager(registry: BackendRegistry) -> BackendConnectionManager:
    return BackendConnectionManager(enable_oauth=False, transport_factory=registry.factory)


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return write_config(tmp_path / "mcp-config.json", ["files", "search"])


@pytest.fixture()
async def make_proxy(
    config_path: Path, manager: BackendConnectionManager
) -> AsyncIterator[Callable[..., Awaitable[ProxyServer]]]:
    """Factory for started proxies; all backends are disconnected afterwards."""

    async def _make(**options: Any) -> ProxyServer:
        resolver = ConfigResolver(ResolverOptions(config_file=config_path), environ={})
        return await ProxyServer.create(resolver, manager, ProxyOptions(**options))

    yield _make
    await manager.disconnect_all()


@pytest.fixture()
async def proxy(make_proxy: Callable[..., Awaitable[ProxyServer]]) -> ProxyServer:
    """Started proxy with prefixing enabled over files + search."""
    return await make_proxy()


@pytest.fixture()
def make_stdio_config() -> Callable[..., BackendConfig]:
    return stdio_config


@pytest.fixture()
def make_config_file() -> Callable[..., Path]:
    return write_config
