"""describe-tools: batch schema lookup across backends.

Each requested name resolves to one of:
- found: provided by exactly one searched backend
- ambiguous: provided by several (caller re-asks with serverName)
- not found: provided by none

Partial results are returned as long as something resolved; only a
request where nothing was found or ambiguous is an error.
"""

from __future__ import annotations

__all__ = ["DescribeToolsInput", "DescribeToolsTool"]

import asyncio
from typing import Any

from mcp import types
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from mcp_powertool.constants import DESCRIBE_TOOLS_NAME
from mcp_powertool.exceptions import UnknownBackendError
from mcp_powertool.backends.catalog import BackendCatalog
from mcp_powertool.backends.connection import BackendConnection
from mcp_powertool.tools.base import error_result, json_result, validation_message


class DescribeToolsInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_names: list[str] = Field(alias="toolNames")
    server_name: str | None = Field(
        default=None, validation_alias=AliasChoices("serverName", "backendName", "server_name")
    )


class DescribeToolsTool:
    name = DESCRIBE_TOOLS_NAME

    def __init__(self, catalog: BackendCatalog) -> None:
        self._catalog = catalog

    async def _server_section(self, conn: BackendConnection) -> str:
        instruction = f"\n- Description: {conn.instruction}" if conn.instruction else ""
        tools = await self._catalog.tools_or_empty(conn)
        names = ",".join(tool.name for tool in tools)
        listing = f"\n{names}" if names else ""
        return f"\n\n### Server: {conn.name}{instruction}\n- Available tools:{listing}"

    async def definition(self) -> types.Tool:
        """Definition whose description lists every connected backend and its tools."""
        sections = await asyncio.gather(
            *(self._server_section(conn) for conn in self._catalog.manager.get_all_clients())
        )
        return types.Tool(
            name=self.name,
            description=(
                "Learn how to use multiple MCP tools before using them. "
                "Below are supported tools and capabilities.\n\n"
                f"## Available MCP Servers:{''.join(sections)}\n\n"
                "## Usage:\n"
                "You MUST call this tool with a list of tool names to learn how to use them "
                "properly before use-tool; this includes:\n"
                "- Arguments schema needed to pass to the tool use\n"
                "- Description about each tool\n\n"
                "This tool is optimized for batch queries - you can request multiple tools at once."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "toolNames": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "List of tool names to get detailed information about",
                        "minItems": 1,
                    },
                    "serverName": {
                        "type": "string",
                        "description": "Optional server name to search within. If not specified, searches all servers.",
                    },
                },
                "required": ["toolNames"],
                "additionalProperties": False,
            },
        )

    async def execute(self, arguments: dict[str, Any] | None) -> types.CallToolResult:
        try:
            request = DescribeToolsInput.model_validate(arguments or {})
        except ValidationError as e:
            return error_result(f"Invalid arguments: {validation_message(e)}")

        if not request.tool_names:
            return error_result("No tool names provided. Please specify at least one tool name.")

        try:
            matches = await self._catalog.tool_matches(request.tool_names, request.server_name)
        except UnknownBackendError as e:
            available = ", ".join(self._catalog.manager.names)
            return error_result(f'Server "{e.backend}" not found. Available servers: {available}')

        found: list[dict[str, Any]] = []
        not_found: list[str] = []
        ambiguous: list[dict[str, Any]] = []
        for tool_name in dict.fromkeys(request.tool_names):
            candidates = matches[tool_name]
            if not candidates:
                not_found.append(tool_name)
            elif len(candidates) == 1:
                server, tool = candidates[0]
                found.append(
                    {
                        "server": server,
                        "tool": {
                            "name": tool.name,
                            "description": tool.description,
                            "inputSchema": tool.inputSchema,
                        },
                    }
                )
            else:
                servers = [server for server, _ in candidates]
                ambiguous.append(
                    {
                        "toolName": tool_name,
                        "servers": servers,
                        "message": (
                            f'Tool "{tool_name}" found on multiple servers: {", ".join(servers)}. '
                            "Please specify serverName to disambiguate."
                        ),
                    }
                )

        if not found and not ambiguous:
            scope = (
                f'on server "{request.server_name}"' if request.server_name else "on any connected server"
            )
            return error_result(
                f"None of the requested tools found {scope}.\n"
                f"Requested: {', '.join(request.tool_names)}"
            )

        result: dict[str, Any] = {"tools": found}
        warnings: list[str] = []
        if not_found:
            result["notFound"] = not_found
            warnings.append(f"Tools not found: {', '.join(not_found)}")
        if ambiguous:
            result["ambiguous"] = ambiguous
            warnings.append(
                "Ambiguous tools (specify serverName): "
                + ", ".join(item["toolName"] for item in ambiguous)
            )
        if warnings:
            result["warnings"] = warnings
        return json_result(result)
