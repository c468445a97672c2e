"""reload_config: re-resolve configuration and swap the backend set."""

from __future__ import annotations

__all__ = ["ReloadConfigTool"]

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from mcp import types
from pydantic import ValidationError

from mcp_powertool.config.resolver import FetchContext
from mcp_powertool.constants import RELOAD_TOOL_NAME
from mcp_powertool.tools.base import error_result, json_result, validation_message

if TYPE_CHECKING:
    from mcp_powertool.server.proxy import ReloadResult


class ReloadConfigTool:
    """Always-available tool that triggers ProxyServer.reload()."""

    name = RELOAD_TOOL_NAME

    def __init__(self, reload: Callable[[FetchContext | None], Awaitable["ReloadResult"]]) -> None:
        self._reload = reload

    def definition(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=(
                "Reload the MCP server configuration and reconnect all backend servers. "
                "Pass taskId or projectId to switch to the configuration of that task or "
                "project; the new scope stays in effect for later reloads. Clients are "
                "notified when the available tools, resources or prompts change."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "taskId": {"type": "string", "description": "Task whose configuration to load"},
                    "workUnitId": {"type": "string", "description": "Work unit the reload is for"},
                    "projectId": {"type": "string", "description": "Project whose configuration to load"},
                },
                "additionalProperties": False,
            },
        )

    async def execute(self, arguments: dict[str, Any] | None) -> types.CallToolResult:
        try:
            context = FetchContext.model_validate(arguments or {})
        except ValidationError as e:
            return error_result(f"Invalid arguments: {validation_message(e)}")

        result = await self._reload(None if context.is_empty else context)
        return json_result(result.model_dump(), is_error=not result.success)
