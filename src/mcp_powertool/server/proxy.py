"""Aggregating MCP proxy server.

This module implements the client-facing protocol surface on top of the
low-level mcp Server. Every request handler fans out to, or routes into,
the BackendConnectionManager:

- tools/list, tools/call: full aggregate (plus reload_config), or the three
  meta-tools in progressive mode
- resources/list, resources/read: "<backend>://<uri>" when prefixing
- prompts/list, prompts/get: "<backend>/<name>" when prefixing

Reload:
    reload() re-resolves configuration, disconnects removed backends,
    reconnects retained ones, connects added ones and then compares
    capability snapshots taken before and after. A list-changed notification
    is sent for each kind whose snapshot differs. reload() never raises;
    it always returns a ReloadResult.

Error mapping:
    tools/call answers routing and backend failures with an error result
    (isError=True). resources/read and prompts/get raise RoutingError
    (JSON-RPC -32602) or an McpError with -32603 for backend failures.
"""

from __future__ import annotations

__all__ = [
    "ProxyOptions",
    "ProxyServer",
    "ReloadResult",
]

import asyncio
import weakref
from typing import Any

from mcp import McpError, types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server
from pydantic import BaseModel, Field, ValidationError

from mcp_powertool import __version__
from mcp_powertool.backends.catalog import BackendCatalog
from mcp_powertool.backends.connection import BackendConnection
from mcp_powertool.backends.manager import BackendConnectionManager
from mcp_powertool.cache import CacheService
from mcp_powertool.config.resolver import ConfigResolver, FetchContext
from mcp_powertool.constants import APP_NAME, DESCRIBE_TOOLS_NAME, RELOAD_TOOL_NAME, USE_TOOL_NAME
from mcp_powertool.exceptions import (
    FileIOError,
    PromptNotFoundError,
    ResourceNotFoundError,
    RoutingError,
    ToolNotFoundError,
)
from mcp_powertool.server.routing import (
    CapabilitySnapshot,
    capture_snapshot,
    prefix_name,
    prefix_uri,
    split_prefixed_name,
    split_prefixed_uri,
)
from mcp_powertool.telemetry.error_log import save_error_log
from mcp_powertool.telemetry.system_logger import get_system_logger
from mcp_powertool.tools.base import error_result
from mcp_powertool.tools.describe_tools import DescribeToolsTool
from mcp_powertool.tools.reload_config import ReloadConfigTool
from mcp_powertool.tools.use_tool import UseToolTool


class ProxyOptions(BaseModel):
    """Behaviour switches of the proxy core."""

    use_server_prefix: bool = True
    progressive: bool = False


class ReloadResult(BaseModel):
    """Outcome of one reload (also the reload_config tool output)."""

    success: bool
    message: str
    connected: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


# Route map value: (backend name, backend's own URI)
_ResourceRoute = tuple[str, str]


def _backend_failure(backend: str, error: Exception) -> McpError:
    return McpError(
        types.ErrorData(
            code=types.INTERNAL_ERROR,
            message=f"Backend {backend} failed: {error}",
            data={"backend": backend},
        )
    )


class ProxyServer:
    """Aggregates every connected backend behind one MCP server.

    Attributes:
        server: Low-level mcp Server the handlers are registered on.
        catalog: Backend listings (optionally cached).
        current_scope: Remote configuration scope in effect; reloads with a
            task or project id replace it.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        manager: BackendConnectionManager,
        options: ProxyOptions | None = None,
        *,
        cache: CacheService | None = None,
    ) -> None:
        options = options or ProxyOptions()
        self.resolver = resolver
        self.manager = manager
        self.use_server_prefix = options.use_server_prefix
        self.progressive = options.progressive
        self.catalog = BackendCatalog(manager, cache)
        self.current_scope = resolver.initial_scope()

        self._reload_tool = ReloadConfigTool(self.reload)
        self._describe_tool = DescribeToolsTool(self.catalog)
        self._use_tool = UseToolTool(self.catalog)

        self._reload_lock = asyncio.Lock()
        self._sessions: weakref.WeakSet[ServerSession] = weakref.WeakSet()
        self._resource_routes: dict[str, _ResourceRoute] = {}

        self.server: Server[Any, Any] = Server(APP_NAME, version=__version__)
        self._register_handlers()

    @classmethod
    async def create(
        cls,
        resolver: ConfigResolver,
        manager: BackendConnectionManager,
        options: ProxyOptions | None = None,
        *,
        cache: CacheService | None = None,
    ) -> ProxyServer:
        """Build a proxy and connect its initial backend set."""
        proxy = cls(resolver, manager, options, cache=cache)
        await proxy.start()
        return proxy

    async def start(self) -> tuple[list[str], list[str]]:
        """Resolve configuration and connect every backend.

        A configuration failure is logged and written to a diagnostic file;
        the proxy then serves with zero backends.

        Returns:
            (connected names, failed names).
        """
        try:
            config = await self.resolver.fetch(scope=self.current_scope)
        except Exception as e:
            get_system_logger().error(
                {
                    "event": "config_fetch_failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "message": f"Failed to fetch MCP configuration: {e}",
                }
            )
            try:
                log_path = save_error_log(e, "config-fetch")
                get_system_logger().error(
                    {"event": "error_log_written", "path": str(log_path), "message": f"Error details saved to {log_path}"}
                )
            except FileIOError as log_error:
                get_system_logger().warning({"event": "error_log_failed", "error": str(log_error)})
            return [], []

        connected, failed = await self.manager.connect_all(config.backends.values())
        get_system_logger().info(
            {
                "event": "proxy_started",
                "connected": connected,
                "failed": failed,
                "message": f"Connected to {len(connected)} of {len(config.backends)} MCP server(s)",
            }
        )
        return connected, failed

    # =========================================================================
    # Protocol wiring
    # =========================================================================

    def _register_handlers(self) -> None:
        handlers = self.server.request_handlers

        async def handle_list_tools(req: types.ListToolsRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(types.ListToolsResult(tools=await self.list_tools()))

        async def handle_call_tool(req: types.CallToolRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(await self.call_tool(req.params.name, req.params.arguments))

        async def handle_list_resources(req: types.ListResourcesRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(types.ListResourcesResult(resources=await self.list_resources()))

        async def handle_read_resource(req: types.ReadResourceRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(await self.read_resource(str(req.params.uri)))

        async def handle_list_prompts(req: types.ListPromptsRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(types.ListPromptsResult(prompts=await self.list_prompts()))

        async def handle_get_prompt(req: types.GetPromptRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(await self.get_prompt(req.params.name, req.params.arguments))

        async def handle_set_level(req: types.SetLevelRequest) -> types.ServerResult:
            self._capture_session()
            return types.ServerResult(types.EmptyResult())

        handlers[types.ListToolsRequest] = handle_list_tools
        handlers[types.CallToolRequest] = handle_call_tool
        handlers[types.ListResourcesRequest] = handle_list_resources
        handlers[types.ReadResourceRequest] = handle_read_resource
        handlers[types.ListPromptsRequest] = handle_list_prompts
        handlers[types.GetPromptRequest] = handle_get_prompt
        handlers[types.SetLevelRequest] = handle_set_level

    def _capture_session(self) -> None:
        try:
            self._sessions.add(self.server.request_context.session)
        except LookupError:
            pass

    def initialization_options(self) -> Any:
        return self.server.create_initialization_options(
            notification_options=NotificationOptions(
                tools_changed=True, resources_changed=True, prompts_changed=True
            )
        )

    async def run_stdio(self) -> None:
        """Serve over stdin/stdout until the client disconnects."""
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(read_stream, write_stream, self.initialization_options())
        finally:
            await self.manager.disconnect_all()

    # =========================================================================
    # Tools
    # =========================================================================

    async def list_tools(self) -> list[types.Tool]:
        if self.progressive:
            return [
                self._reload_tool.definition(),
                await self._describe_tool.definition(),
                self._use_tool.definition(),
            ]

        connections = self.manager.get_all_clients()
        listings = await asyncio.gather(*(self.catalog.tools_or_empty(conn) for conn in connections))
        tools = [self._reload_tool.definition()]
        for conn, backend_tools in zip(connections, listings):
            for tool in backend_tools:
                if self.use_server_prefix:
                    tool = tool.model_copy(update={"name": prefix_name(conn.name, tool.name)})
                tools.append(tool)
        return tools

    async def _route_tool(self, name: str) -> tuple[BackendConnection, str]:
        if self.use_server_prefix:
            split = split_prefixed_name(name)
            if split is None:
                raise ToolNotFoundError(name)
            backend, tool_name = split
            return self.catalog.require_backend(backend), tool_name

        for conn in self.manager.get_all_clients():
            tools = await self.catalog.tools_or_empty(conn)
            if any(tool.name == name for tool in tools):
                return conn, name
        raise ToolNotFoundError(name)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        """Run a local tool or forward the call to its backend."""
        if name == RELOAD_TOOL_NAME:
            return await self._reload_tool.execute(arguments)
        if self.progressive and name == DESCRIBE_TOOLS_NAME:
            return await self._describe_tool.execute(arguments)
        if self.progressive and name == USE_TOOL_NAME:
            return await self._use_tool.execute(arguments)

        try:
            conn, tool_name = await self._route_tool(name)
        except RoutingError as e:
            return error_result(e.message)

        try:
            return await conn.call_tool(tool_name, arguments)
        except Exception as e:
            get_system_logger().warning(
                {
                    "event": "tool_call_failed",
                    "backend": conn.name,
                    "tool": tool_name,
                    "error": str(e),
                    "message": f"Tool {tool_name} failed on {conn.name}: {e}",
                }
            )
            return error_result(f"Error calling tool {tool_name} on server {conn.name}: {e}")

    # =========================================================================
    # Resources
    # =========================================================================

    def _external_resource(self, backend: str, resource: types.Resource) -> types.Resource:
        original = str(resource.uri)
        if not self.use_server_prefix:
            self._resource_routes[original] = (backend, original)
            return resource

        prefixed = prefix_uri(backend, original)
        try:
            external = types.Resource.model_validate(
                {**resource.model_dump(by_alias=True, exclude_none=True), "uri": prefixed}
            )
        except ValidationError:
            get_system_logger().warning(
                {
                    "event": "resource_prefix_invalid",
                    "backend": backend,
                    "uri": original,
                    "message": f"Cannot prefix resource URI {original}; exposing it unprefixed",
                }
            )
            self._resource_routes[original] = (backend, original)
            return resource

        # Keyed by both spellings: AnyUrl may normalize the prefixed form
        self._resource_routes[prefixed] = (backend, original)
        self._resource_routes[str(external.uri)] = (backend, original)
        return external

    async def list_resources(self) -> list[types.Resource]:
        connections = self.manager.get_all_clients()
        listings = await asyncio.gather(
            *(self._resources_or_empty(conn) for conn in connections)
        )
        self._resource_routes = {}
        resources: list[types.Resource] = []
        for conn, backend_resources in zip(connections, listings):
            resources.extend(self._external_resource(conn.name, r) for r in backend_resources)
        return resources

    async def _resources_or_empty(self, conn: BackendConnection) -> list[types.Resource]:
        try:
            return await self.catalog.resources(conn)
        except Exception as e:
            get_system_logger().warning(
                {"event": "backend_listing_failed", "backend": conn.name, "kind": "resources", "error": str(e)}
            )
            return []

    async def _route_resource(self, uri: str) -> tuple[BackendConnection, str]:
        route = self._resource_routes.get(uri)
        if route is None:
            await self.list_resources()
            route = self._resource_routes.get(uri)

        if route is None and self.use_server_prefix:
            route = split_prefixed_uri(uri)
        if route is None:
            raise ResourceNotFoundError(uri)

        backend, original = route
        return self.catalog.require_backend(backend), original

    async def read_resource(self, uri: str) -> types.ReadResourceResult:
        """Read a resource from the backend serving it.

        Raises:
            RoutingError: Unknown backend or resource (-32602).
            McpError: Backend failure (-32603).
        """
        conn, original = await self._route_resource(uri)
        try:
            return await conn.read_resource(original)
        except Exception as e:
            raise _backend_failure(conn.name, e) from e

    # =========================================================================
    # Prompts
    # =========================================================================

    async def _prompts_or_empty(self, conn: BackendConnection) -> list[types.Prompt]:
        try:
            return await self.catalog.prompts(conn)
        except Exception as e:
            get_system_logger().warning(
                {"event": "backend_listing_failed", "backend": conn.name, "kind": "prompts", "error": str(e)}
            )
            return []

    async def list_prompts(self) -> list[types.Prompt]:
        connections = self.manager.get_all_clients()
        listings = await asyncio.gather(*(self._prompts_or_empty(conn) for conn in connections))
        prompts: list[types.Prompt] = []
        for conn, backend_prompts in zip(connections, listings):
            for prompt in backend_prompts:
                if self.use_server_prefix:
                    prompt = prompt.model_copy(update={"name": prefix_name(conn.name, prompt.name)})
                prompts.append(prompt)
        return prompts

    async def _route_prompt(self, name: str) -> tuple[BackendConnection, str]:
        if self.use_server_prefix:
            split = split_prefixed_name(name)
            if split is None:
                raise PromptNotFoundError(name)
            backend, prompt_name = split
            return self.catalog.require_backend(backend), prompt_name

        for conn in self.manager.get_all_clients():
            if any(prompt.name == name for prompt in await self._prompts_or_empty(conn)):
                return conn, name
        raise PromptNotFoundError(name)

    async def get_prompt(self, name: str, arguments: dict[str, str] | None) -> types.GetPromptResult:
        """Render a prompt on the backend providing it.

        Raises:
            RoutingError: Unknown backend or prompt (-32602).
            McpError: Backend failure (-32603).
        """
        conn, prompt_name = await self._route_prompt(name)
        try:
            return await conn.get_prompt(prompt_name, arguments)
        except Exception as e:
            raise _backend_failure(conn.name, e) from e

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _notify_log(self, level: types.LoggingLevel, message: str) -> None:
        for session in list(self._sessions):
            try:
                await session.send_log_message(level=level, data=message, logger=APP_NAME)
            except Exception as e:
                self._drop_session(session, "log", e)

    async def _notify_list_changed(self, kind: str) -> None:
        for session in list(self._sessions):
            try:
                if kind == "tools":
                    await session.send_tool_list_changed()
                elif kind == "resources":
                    await session.send_resource_list_changed()
                elif kind == "prompts":
                    await session.send_prompt_list_changed()
            except Exception as e:
                self._drop_session(session, kind, e)

    def _drop_session(self, session: ServerSession, kind: str, error: Exception) -> None:
        # A client that went away (closed HTTP/SSE stream) stops receiving notifications
        self._sessions.discard(session)
        get_system_logger().warning({"event": "notification_failed", "kind": kind, "error": str(error)})

    # =========================================================================
    # Reload
    # =========================================================================

    async def reload(self, context: FetchContext | None = None) -> ReloadResult:
        """Re-resolve configuration and swap the backend set.

        Reloads are serialized. Any failure is reported in the result.

        Args:
            context: Optional task/project/work-unit context; a task or
                project id narrows the scope for this and later reloads.
        """
        async with self._reload_lock:
            try:
                return await self._reload(context)
            except Exception as e:
                message = f"Failed to reload configuration: {e}"
                get_system_logger().error(
                    {"event": "reload_failed", "error": str(e), "error_type": type(e).__name__, "message": message}
                )
                await self._notify_log("error", message)
                return ReloadResult(success=False, message=message)

    async def _reload(self, context: FetchContext | None) -> ReloadResult:
        label = context.describe() if context is not None else "default"
        await self._notify_log("info", f"Reloading MCP server configuration (context: {label})...")
        get_system_logger().info(
            {"event": "reload_started", "context": label, "message": f"Reloading configuration ({label})"}
        )

        before = await capture_snapshot(self.catalog)

        self.current_scope = self.resolver.scope_for(self.current_scope, context)
        self.resolver.clear_cache()
        config = await self.resolver.fetch(context, scope=self.current_scope)

        old_names = self.manager.names
        added = [name for name in config.backends if name not in old_names]
        removed = [name for name in old_names if name not in config.backends]
        retained = [name for name in old_names if name in config.backends]

        async def drop(name: str) -> None:
            conn = self.manager.get_client(name)
            if conn is not None:
                self.catalog.invalidate(conn.config)
            await self.manager.disconnect(name)

        await asyncio.gather(*(drop(name) for name in removed + retained))
        to_connect = [config.backends[name] for name in retained + added]
        for backend in to_connect:
            self.catalog.invalidate(backend)
        connected, failed = await self.manager.connect_all(to_connect)

        after = await capture_snapshot(self.catalog)
        for kind, changed in before.changed_kinds(after).items():
            if changed:
                await self._notify_list_changed(kind)

        message = f"Reload complete. Connected: {len(connected)}, Failed: {len(failed)}"
        changes = _describe_changes(added, removed, retained, before, after)
        if changes:
            message += f". Changes: {changes}"

        get_system_logger().info(
            {
                "event": "reload_completed",
                "context": label,
                "added": added,
                "removed": removed,
                "connected": connected,
                "failed": failed,
                "message": message,
            }
        )
        await self._notify_log("warning" if failed else "info", message)
        return ReloadResult(success=not failed, message=message, connected=connected, failed=failed)


def _describe_changes(
    added: list[str],
    removed: list[str],
    retained: list[str],
    before: CapabilitySnapshot,
    after: CapabilitySnapshot,
) -> str:
    parts: list[str] = []
    if added:
        parts.append(f"Added servers: {', '.join(added)}")
    if removed:
        parts.append(f"Removed servers: {', '.join(removed)}")
    if retained:
        parts.append(f"Retained servers: {len(retained)}")
    for kind in ("tools", "resources", "prompts"):
        old_count = len(getattr(before, kind))
        new_count = len(getattr(after, kind))
        if old_count != new_count:
            parts.append(f"{kind.capitalize()}: {old_count} -> {new_count}")
    return "; ".join(parts)
