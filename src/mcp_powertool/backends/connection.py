"""One live client connection to a backend."""

from __future__ import annotations

__all__ = ["BackendConnection"]

from contextlib import AsyncExitStack
from typing import Any

from fastmcp import Client
from fastmcp.client.transports import ClientTransport
from mcp import types

from mcp_powertool.config.models import BackendConfig, TransportKind
from mcp_powertool.exceptions import BackendConnectionError


class BackendConnection:
    """Uniform capability interface over a fastmcp Client.

    Owned by the BackendConnectionManager. Closing the connection closes the
    client session and, for stdio backends, terminates the child process.
    Resources registered on the exit stack passed to open() (the OAuth
    callback server of an HTTP backend) are released after the client.
    """

    def __init__(self, config: BackendConfig, client: Client[Any], stack: AsyncExitStack) -> None:
        self.config = config
        self._client = client
        self._stack = stack
        self._connected = True

    @classmethod
    async def open(
        cls,
        config: BackendConfig,
        transport: ClientTransport,
        stack: AsyncExitStack | None = None,
    ) -> BackendConnection:
        """Connect a client over transport and complete the MCP handshake.

        Args:
            config: Backend configuration.
            transport: Client transport to connect over.
            stack: Exit stack that already owns resources tied to this
                connection; it is closed on failure or on close().
        """
        client: Client[Any] = Client(transport)
        stack = stack if stack is not None else AsyncExitStack()
        try:
            await stack.enter_async_context(client)
        except BaseException:
            await stack.aclose()
            raise
        return cls(config, client, stack)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def transport(self) -> TransportKind:
        return self.config.transport

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def instruction(self) -> str | None:
        """Configured instruction, else the backend's own initialize instructions."""
        if self.config.instruction:
            return self.config.instruction
        init = getattr(self._client, "initialize_result", None)
        return init.instructions if init is not None else None

    def supports(self, kind: str) -> bool:
        """Whether the backend advertised a capability ("tools", "resources", "prompts")."""
        init = getattr(self._client, "initialize_result", None)
        if init is None:
            return True
        return getattr(init.capabilities, kind, None) is not None

    def _require_connected(self) -> Client[Any]:
        if not self._connected:
            raise BackendConnectionError(self.name, f"Server '{self.name}' is not connected")
        return self._client

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    async def list_tools(self) -> list[types.Tool]:
        return await self._require_connected().list_tools()

    async def list_resources(self) -> list[types.Resource]:
        return await self._require_connected().list_resources()

    async def list_prompts(self) -> list[types.Prompt]:
        return await self._require_connected().list_prompts()

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> types.CallToolResult:
        return await self._require_connected().call_tool_mcp(name, arguments or {})

    async def read_resource(self, uri: str) -> types.ReadResourceResult:
        return await self._require_connected().read_resource_mcp(uri)

    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None
    ) -> types.GetPromptResult:
        return await self._require_connected().get_prompt_mcp(name, arguments)

    async def close(self) -> None:
        """Close the session (idempotent)."""
        if not self._connected:
            return
        self._connected = False
        await self._stack.aclose()
