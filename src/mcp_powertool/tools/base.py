"""Shared helpers for locally implemented tools."""

from __future__ import annotations

__all__ = ["error_result", "json_result", "text_result", "validation_message"]

import json
from typing import Any

from mcp import types
from pydantic import ValidationError


def text_result(text: str, *, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


def error_result(text: str) -> types.CallToolResult:
    return text_result(text, is_error=True)


def json_result(payload: Any, *, is_error: bool = False) -> types.CallToolResult:
    return text_result(json.dumps(payload, indent=2), is_error=is_error)


def validation_message(error: ValidationError) -> str:
    """One-line summary of invalid tool arguments."""
    return "; ".join(
        f"{'.'.join(str(x) for x in err['loc']) or 'arguments'}: {err['msg']}" for err in error.errors()
    )
