"""Capability listings across connected backends.

Listings optionally go through the CacheService: a fresh cache entry is
served instead of asking the backend, and a live listing is written back only
when every part of it succeeded.
"""

from __future__ import annotations

__all__ = ["BackendCatalog"]

import asyncio
from typing import Any

from mcp import types

from mcp_powertool.backends.connection import BackendConnection
from mcp_powertool.backends.manager import BackendConnectionManager
from mcp_powertool.cache import BackendMetadata, CacheService
from mcp_powertool.config.models import BackendConfig
from mcp_powertool.exceptions import AmbiguousToolError, ToolNotFoundError, UnknownBackendError
from mcp_powertool.telemetry.system_logger import get_system_logger


class BackendCatalog:
    """Reads tools/resources/prompts of live backends."""

    def __init__(self, manager: BackendConnectionManager, cache: CacheService | None = None) -> None:
        self.manager = manager
        self.cache = cache

    def _log_listing_failure(self, conn: BackendConnection, kind: str, error: Exception) -> None:
        get_system_logger().warning(
            {
                "event": "backend_listing_failed",
                "backend": conn.name,
                "kind": kind,
                "error": str(error),
                "message": f"Failed to list {kind} from {conn.name}: {error}",
            }
        )

    async def _list_optional(self, conn: BackendConnection, kind: str) -> list[Any] | None:
        """Resources/prompts: [] without the capability, None when listing failed."""
        if not conn.supports(kind):
            return []
        try:
            if kind == "resources":
                return await conn.list_resources()
            return await conn.list_prompts()
        except Exception as e:
            self._log_listing_failure(conn, kind, e)
            return None

    async def metadata(self, conn: BackendConnection, *, tolerate_errors: bool = False) -> BackendMetadata:
        """Full listing of one backend (cache first when enabled).

        Args:
            conn: Live connection.
            tolerate_errors: Return empty lists instead of raising when the
                tool listing fails.
        """
        if self.cache is not None:
            cached = self.cache.get(conn.config)
            if cached is not None:
                return cached

        try:
            tools = await conn.list_tools()
        except Exception as e:
            if not tolerate_errors:
                raise
            self._log_listing_failure(conn, "tools", e)
            return BackendMetadata(instruction=conn.instruction)

        resources, prompts = await asyncio.gather(
            self._list_optional(conn, "resources"), self._list_optional(conn, "prompts")
        )
        metadata = BackendMetadata(
            instruction=conn.instruction, tools=tools, resources=resources or [], prompts=prompts or []
        )
        if self.cache is not None and resources is not None and prompts is not None:
            self.cache.set(conn.config, metadata)
        return metadata

    async def tools(self, conn: BackendConnection) -> list[types.Tool]:
        if self.cache is not None:
            return (await self.metadata(conn)).tools
        return await conn.list_tools()

    async def resources(self, conn: BackendConnection) -> list[types.Resource]:
        if self.cache is not None:
            return (await self.metadata(conn)).resources
        return await conn.list_resources()

    async def prompts(self, conn: BackendConnection) -> list[types.Prompt]:
        if self.cache is not None:
            return (await self.metadata(conn)).prompts
        return await conn.list_prompts()

    def invalidate(self, config: BackendConfig) -> None:
        """Drop the cached listing of one backend configuration."""
        if self.cache is not None:
            self.cache.clear(config)

    # -------------------------------------------------------------------------
    # Tool lookup
    # -------------------------------------------------------------------------

    def require_backend(self, server_name: str) -> BackendConnection:
        conn = self.manager.get_client(server_name)
        if conn is None:
            raise UnknownBackendError(server_name)
        return conn

    async def tools_or_empty(self, conn: BackendConnection) -> list[types.Tool]:
        """Tool listing that logs and swallows backend failures."""
        try:
            return await self.tools(conn)
        except Exception as e:
            self._log_listing_failure(conn, "tools", e)
            return []

    async def tool_matches(
        self, tool_names: list[str], server_name: str | None = None
    ) -> dict[str, list[tuple[str, types.Tool]]]:
        """Map each requested name to every (backend, tool) that provides it.

        Args:
            tool_names: Unprefixed tool names.
            server_name: Restrict the search to one backend.

        Raises:
            UnknownBackendError: If server_name is not connected.
        """
        if server_name is not None:
            connections = [self.require_backend(server_name)]
        else:
            connections = self.manager.get_all_clients()

        listings = await asyncio.gather(*(self.tools_or_empty(conn) for conn in connections))
        matches: dict[str, list[tuple[str, types.Tool]]] = {name: [] for name in tool_names}
        for conn, tools in zip(connections, listings):
            by_name = {tool.name: tool for tool in tools}
            for name in tool_names:
                if name in by_name:
                    matches[name].append((conn.name, by_name[name]))
        return matches

    async def locate_tool(self, tool_name: str, server_name: str | None = None) -> BackendConnection:
        """Backend that uniquely provides tool_name.

        With server_name the backend is used as given (the backend itself
        reports an unknown tool).

        Raises:
            UnknownBackendError: server_name not connected.
            ToolNotFoundError: No backend provides the tool.
            AmbiguousToolError: More than one backend provides it.
        """
        if server_name is not None:
            return self.require_backend(server_name)

        servers = [server for server, _ in (await self.tool_matches([tool_name]))[tool_name]]
        if not servers:
            raise ToolNotFoundError(tool_name)
        if len(servers) > 1:
            raise AmbiguousToolError(tool_name, servers)
        return self.require_backend(servers[0])
