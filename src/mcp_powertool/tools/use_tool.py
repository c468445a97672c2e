"""use-tool: invoke one tool on the backend that provides it."""

from __future__ import annotations

__all__ = ["UseToolInput", "UseToolTool"]

from typing import Any

from mcp import types
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from mcp_powertool.constants import DESCRIBE_TOOLS_NAME, USE_TOOL_NAME
from mcp_powertool.exceptions import (
    AmbiguousToolError,
    ToolNotFoundError,
    UnknownBackendError,
)
from mcp_powertool.backends.catalog import BackendCatalog
from mcp_powertool.tools.base import error_result, validation_message


class UseToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_name: str = Field(alias="toolName")
    tool_args: dict[str, Any] = Field(default_factory=dict, alias="toolArgs")
    server_name: str | None = Field(
        default=None, validation_alias=AliasChoices("serverName", "backendName", "server_name")
    )


class UseToolTool:
    name = USE_TOOL_NAME

    def __init__(self, catalog: BackendCatalog) -> None:
        self._catalog = catalog

    def definition(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=(
                f"Execute an MCP tool with provided arguments. You MUST call {DESCRIBE_TOOLS_NAME} "
                "first to discover the tool's correct arguments. Then to use tool:\n"
                "- Provide toolName and toolArgs based on the schema\n"
                "- If multiple servers provide the same tool, specify serverName\n"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "toolName": {"type": "string", "description": "Name of the tool to execute"},
                    "toolArgs": {
                        "type": "object",
                        "description": f"Arguments to pass to the tool, as discovered from {DESCRIBE_TOOLS_NAME}",
                    },
                    "serverName": {
                        "type": "string",
                        "description": "Optional server name to disambiguate when multiple servers have the same tool",
                    },
                },
                "required": ["toolName"],
                "additionalProperties": False,
            },
        )

    async def execute(self, arguments: dict[str, Any] | None) -> types.CallToolResult:
        try:
            request = UseToolInput.model_validate(arguments or {})
        except ValidationError as e:
            return error_result(f"Invalid arguments: {validation_message(e)}")

        try:
            conn = await self._catalog.locate_tool(request.tool_name, request.server_name)
        except UnknownBackendError as e:
            available = ", ".join(self._catalog.manager.names)
            return error_result(f'Server "{e.backend}" not found. Available servers: {available}')
        except ToolNotFoundError:
            return error_result(
                f'Tool "{request.tool_name}" not found on any connected server. '
                f"Use {DESCRIBE_TOOLS_NAME} to see available tools."
            )
        except AmbiguousToolError as e:
            return error_result(
                f'Multiple servers provide tool "{request.tool_name}". Please specify serverName. '
                f"Available servers: {', '.join(e.servers)}"
            )

        try:
            return await conn.call_tool(request.tool_name, request.tool_args)
        except Exception as e:
            return error_result(f'Failed to call tool "{request.tool_name}" on server "{conn.name}": {e}')
