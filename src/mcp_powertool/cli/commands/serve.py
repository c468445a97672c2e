"""mcp-serve command: run the aggregating proxy over stdio, HTTP or SSE."""

from __future__ import annotations

__all__ = ["mcp_serve"]

import asyncio
import sys
from pathlib import Path

import click

from mcp_powertool.constants import DEFAULT_SERVE_HOST, DEFAULT_SERVE_PORT, RELOAD_PATH
from mcp_powertool.exceptions import ConfigError
from mcp_powertool.server.http_app import ServeTransport, serve_http
from mcp_powertool.server.proxy import ProxyServer
from mcp_powertool.telemetry.system_logger import configure_system_logger_file

from ..runtime import build_proxy, source_options
from ..styling import style_dim, style_error


async def _serve(proxy: ProxyServer, transport: ServeTransport, host: str, port: int) -> None:
    await proxy.start()
    if transport is ServeTransport.STDIO:
        await proxy.run_stdio()
    else:
        await serve_http(proxy, transport, host, port)


@click.command("mcp-serve")
@source_options
@click.option(
    "--type",
    "-t",
    "transport",
    type=click.Choice([t.value for t in ServeTransport], case_sensitive=False),
    default=ServeTransport.STDIO.value,
    show_default=True,
    help="Client-facing transport",
)
@click.option(
    "--host",
    envvar="MCP_HOST",
    default=DEFAULT_SERVE_HOST,
    show_default=True,
    help="Host to bind to (http/sse only)",
)
@click.option(
    "--port",
    "-p",
    envvar="MCP_PORT",
    type=click.IntRange(1, 65535),
    default=DEFAULT_SERVE_PORT,
    show_default=True,
    help="Port to listen on (http/sse only)",
)
@click.option(
    "--use-server-prefix/--no-server-prefix",
    default=True,
    show_default=True,
    help="Expose tools and prompts as server/name and resources as server://uri",
)
@click.option("--progressive", is_flag=True, help="Expose describe-tools/use-tool instead of every tool")
@click.option("--cache/--no-cache", "use_cache", default=False, help="Cache backend listings on disk")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write warnings and errors to this JSONL file",
)
def mcp_serve(
    config_file: Path | None,
    merge_strategy: str,
    transport: str,
    host: str,
    port: int,
    use_server_prefix: bool,
    progressive: bool,
    use_cache: bool,
    log_file: Path | None,
) -> None:
    """Start the MCP proxy server.

    With the default stdio transport the server is normally started by an
    MCP client. With http or sse it listens on HOST:PORT and also accepts
    POST /reload (see reload-config). Backends that fail to connect are
    logged and left out; the server still starts.

    Examples:
        mcp-powertool mcp-serve --config-file mcp-config.json
        mcp-powertool mcp-serve --progressive
        mcp-powertool mcp-serve --type http --port 3000
    """
    if log_file is not None:
        configure_system_logger_file(log_file)

    serve_transport = ServeTransport(transport.lower())

    try:
        proxy = build_proxy(
            config_file=config_file,
            merge_strategy=merge_strategy,
            use_server_prefix=use_server_prefix,
            progressive=progressive,
            use_cache=use_cache,
        )
    except ConfigError as e:
        click.echo(style_error(f"Error: {e}"), err=True)
        sys.exit(1)

    if serve_transport is not ServeTransport.STDIO:
        click.echo(style_dim(f"Reload endpoint: http://{host}:{port}{RELOAD_PATH}"), err=True)

    try:
        asyncio.run(_serve(proxy, serve_transport, host, port))
    except KeyboardInterrupt:
        sys.exit(0)
