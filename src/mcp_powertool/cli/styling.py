"""CLI output styling utilities.

Every styled line goes to stderr unless it is the command's result;
stdout of mcp-serve carries the MCP protocol.
- Cyan bold for labels
- Green for success messages (with checkmark)
- Red for error messages (with cross)
- Dim for neutral/empty state messages
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_error",
    "style_label",
    "style_success",
    "style_warning",
]

import click


def style_label(label: str) -> str:
    """Style a label for list/summary headers.

    Example:
        >>> click.echo(style_label("Connected servers") + " 3")
        Connected servers: 3
    """
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    return click.style(f"✗ {message}", fg="red")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)


def style_warning(message: str) -> str:
    return click.style(f"Warning: {message}", fg="yellow", bold=True)
