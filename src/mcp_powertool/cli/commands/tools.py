"""One-shot tool commands.

list-tools, describe-tools and use-tool resolve the configuration, connect
every backend, act, print their result to stdout and disconnect again.
reload-config instead asks a running HTTP or SSE server to reload.
"""

from __future__ import annotations

__all__ = ["describe_tools", "list_tools", "reload_config", "use_tool"]

import asyncio
import json
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
import httpx
from mcp import types

from mcp_powertool.config.resolver import FetchContext
from mcp_powertool.constants import (
    DEFAULT_SERVE_HOST,
    DEFAULT_SERVE_PORT,
    RELOAD_PATH,
    RELOAD_REQUEST_TIMEOUT_SECONDS,
)
from mcp_powertool.exceptions import ConfigError
from mcp_powertool.server.proxy import ProxyServer, ReloadResult
from mcp_powertool.tools.describe_tools import DescribeToolsTool
from mcp_powertool.tools.use_tool import UseToolTool

from ..runtime import build_proxy, connected_proxy, source_options
from ..styling import style_dim, style_error, style_label, style_success, style_warning

T = TypeVar("T")


def _fail(message: str) -> NoReturn:
    click.echo(style_error(message), err=True)
    sys.exit(1)


def _proxy(config_file: Path | None, merge_strategy: str) -> ProxyServer:
    try:
        return build_proxy(config_file=config_file, merge_strategy=merge_strategy)
    except ConfigError as e:
        _fail(f"Error: {e}")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        sys.exit(130)


def _result_text(result: types.CallToolResult) -> str:
    return "\n".join(item.text for item in result.content if isinstance(item, types.TextContent))


def _split_names(values: tuple[str, ...]) -> list[str]:
    """Accept both "a b" and "a,b" forms."""
    return [name.strip() for value in values for name in value.split(",") if name.strip()]


# =============================================================================
# list-tools
# =============================================================================


async def _list_tools(proxy: ProxyServer, server: str | None) -> list[dict[str, Any]]:
    async with connected_proxy(proxy):
        rows: list[dict[str, Any]] = []
        for conn in proxy.manager.get_all_clients():
            if server is not None and conn.name != server:
                continue
            for tool in await proxy.catalog.tools_or_empty(conn):
                rows.append({"server": conn.name, "name": tool.name, "description": tool.description})
        return rows


@click.command("list-tools")
@source_options
@click.option("--server", "-s", default=None, help="Only list tools of this server")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_tools(config_file: Path | None, merge_strategy: str, server: str | None, as_json: bool) -> None:
    """List the tools of every configured MCP server."""
    rows = _run(_list_tools(_proxy(config_file, merge_strategy), server))

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo(style_dim("No tools found."))
        return

    click.echo(f"\nFound {len(rows)} tools:")
    current = None
    for row in rows:
        if row["server"] != current:
            current = row["server"]
            click.echo("\n" + style_label(current))
        click.echo(f"  {click.style(row['name'], fg='green', bold=True)}")
        if row["description"]:
            click.echo(f"    {style_dim(row['description'])}")
    click.echo()


# =============================================================================
# describe-tools / use-tool
# =============================================================================


async def _describe(proxy: ProxyServer, names: list[str], server: str | None) -> types.CallToolResult:
    async with connected_proxy(proxy):
        arguments: dict[str, Any] = {"toolNames": names}
        if server is not None:
            arguments["serverName"] = server
        return await DescribeToolsTool(proxy.catalog).execute(arguments)


@click.command("describe-tools")
@source_options
@click.argument("tool_names", nargs=-1, required=True)
@click.option("--server", "-s", default=None, help="Only search this server")
def describe_tools(
    config_file: Path | None, merge_strategy: str, tool_names: tuple[str, ...], server: str | None
) -> None:
    """Show the description and input schema of one or more tools.

    Examples:
        mcp-powertool describe-tools read_file write_file
        mcp-powertool describe-tools search --server docs
    """
    names = _split_names(tool_names)
    if not names:
        _fail("No tool names provided.")

    result = _run(_describe(_proxy(config_file, merge_strategy), names, server))
    if result.isError:
        _fail(_result_text(result))
    click.echo(_result_text(result))


async def _use(
    proxy: ProxyServer, tool_name: str, tool_args: dict[str, Any], server: str | None
) -> types.CallToolResult:
    async with connected_proxy(proxy):
        arguments: dict[str, Any] = {"toolName": tool_name, "toolArgs": tool_args}
        if server is not None:
            arguments["serverName"] = server
        return await UseToolTool(proxy.catalog).execute(arguments)


@click.command("use-tool")
@source_options
@click.argument("tool_name")
@click.option("--args", "-a", "args_json", default="{}", show_default=True, help="Tool arguments as JSON")
@click.option("--server", "-s", default=None, help="Server to call (required when several provide the tool)")
def use_tool(
    config_file: Path | None, merge_strategy: str, tool_name: str, args_json: str, server: str | None
) -> None:
    """Call one tool and print its result as JSON.

    Example:
        mcp-powertool use-tool read_file --args '{"path": "README.md"}'
    """
    try:
        tool_args = json.loads(args_json)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in --args: {e}")
    if not isinstance(tool_args, dict):
        _fail("--args must be a JSON object")

    result = _run(_use(_proxy(config_file, merge_strategy), tool_name, tool_args, server))
    click.echo(json.dumps(result.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))
    if result.isError:
        sys.exit(1)


# =============================================================================
# reload-config
# =============================================================================


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=RELOAD_REQUEST_TIMEOUT_SECONDS, trust_env=False)


async def _request_reload(url: str, context: FetchContext) -> ReloadResult:
    body = context.model_dump(by_alias=True, exclude_none=True)
    async with _http_client() as client:
        response = await client.post(url, json=body)
    if response.status_code != 200:
        raise click.ClickException(
            f"Reload request failed: {response.status_code} {response.reason_phrase}\n{response.text}"
        )
    return ReloadResult.model_validate(response.json())


@click.command("reload-config")
@click.option("--host", envvar="MCP_HOST", default=DEFAULT_SERVE_HOST, show_default=True, help="Host of the running server")
@click.option(
    "--port",
    envvar="MCP_PORT",
    type=click.IntRange(1, 65535),
    default=DEFAULT_SERVE_PORT,
    show_default=True,
    help="Port of the running server",
)
@click.option("--task-id", default=None, help="Load the configuration of this task")
@click.option("--work-unit-id", default=None, help="Work unit the reload is for")
@click.option("--project-id", default=None, help="Load the configuration of this project")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show the request and every server")
def reload_config(
    host: str,
    port: int,
    task_id: str | None,
    work_unit_id: str | None,
    project_id: str | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Ask a running mcp-serve --type http|sse to reload its configuration.

    Sends POST /reload with the optional task, work unit and project ids.
    The server reconnects its backends and notifies connected clients.

    Examples:
        mcp-powertool reload-config --port 3000 --task-id 123
    """
    context = FetchContext(task_id=task_id, work_unit_id=work_unit_id, project_id=project_id)
    url = f"http://{host}:{port}{RELOAD_PATH}"
    if verbose:
        click.echo(style_dim(f"Sending reload request to {url}"), err=True)

    try:
        result = _run(_request_reload(url, context))
    except httpx.HTTPError as e:
        _fail(f"Error: could not reach {url}: {e}")
    except ValueError as e:
        _fail(f"Error: unexpected reload response: {e}")

    if as_json:
        click.echo(json.dumps(result.model_dump(), indent=2))
    elif result.success and not verbose and not result.failed:
        click.echo(style_success(f"Configuration reloaded ({len(result.connected)} server(s) connected)"))
    else:
        click.echo(style_success("Reload succeeded") if result.success else style_warning("Reload completed with errors"))
        click.echo(style_label("Message") + f" {result.message}")
        for name in result.connected:
            click.echo(f"  ✓ {name}")
        for name in result.failed:
            click.echo(f"  ✗ {name}")

    if not result.success:
        sys.exit(1)
