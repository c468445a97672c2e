"""Command-line interface for mcp-powertool.

Provides the proxy server command (stdio, HTTP or SSE), one-shot commands
that connect to the configured backends, act and disconnect, and
reload-config for a running HTTP or SSE server.
"""

from .main import cli, main

__all__ = ["cli", "main"]
