"""Main CLI entry point for mcp-powertool.

Defines the CLI group and registers all subcommands.

Commands:
    mcp-serve      - Serve the aggregating proxy over stdio, HTTP or SSE
    list-tools     - List tools of every configured backend
    describe-tools - Show schemas of selected tools
    use-tool       - Call one tool
    reload-config  - Ask a running HTTP/SSE server to reload its configuration
    cache          - Backend metadata cache (clear, stats)

Subcommand help:
    mcp-powertool COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli"]

import sys

import click

from mcp_powertool import __version__

from .commands.cache import cache
from .commands.serve import mcp_serve
from .commands.tools import describe_tools, list_tools, reload_config, use_tool


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        formatter.write(
            """
Configuration sources (first match wins):
  AGIFLOW_MCP_PROXY_ENDPOINT + AGIFLOW_MCP_API_KEY   Remote configuration
  --config-file PATH                                 Local configuration file
  Saved credentials for the current directory
  Interactive prompt (answers are saved)

MCP client configuration:
  {"command": "mcp-powertool", "args": ["mcp-serve", "--progressive"]}
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """mcp-powertool: aggregating proxy for MCP servers."""
    if version:
        click.echo(f"mcp-powertool {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(cache)
cli.add_command(describe_tools)
cli.add_command(list_tools)
cli.add_command(mcp_serve)
cli.add_command(reload_config)
cli.add_command(use_tool)


def main() -> None:
    """CLI entry point."""
    cli()
