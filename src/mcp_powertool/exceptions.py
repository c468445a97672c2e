"""Custom exceptions for mcp-powertool.

This module contains all custom exceptions used throughout the package.
Exceptions are organized by how far they are allowed to propagate:

Startup Errors (may abort startup when no source is usable):
    - ConfigError: Missing/invalid configuration source or schema violation

Per-Backend Errors (contained, backend excluded from the live set):
    - BackendConnectionError: Transport-level failure to a single backend
    - AlreadyConnectedError: Second connect for a live backend name
    - AuthorizationError: OAuth flow failed, timed out, or was denied
    - UnauthorizedError: Backend demanded authorization

Per-Request Errors (client receives an error result, proxy continues):
    - SecurityError: Missing/malformed/mismatched CSRF state (HTTP 4xx)
    - RoutingError: Unknown backend, item not found, ambiguous match

Best-Effort Errors (logged as warnings, never block the critical path):
    - LockfileError
    - FileIOError

Usage:
    from mcp_powertool.exceptions import ConfigError, RoutingError
"""

from __future__ import annotations

__all__ = [
    "AlreadyConnectedError",
    "AmbiguousToolError",
    "AuthorizationError",
    "BackendConnectionError",
    "ConfigError",
    "FileIOError",
    "LockfileError",
    "PowertoolError",
    "PromptNotFoundError",
    "ResourceNotFoundError",
    "RoutingError",
    "SecurityError",
    "ToolNotFoundError",
    "UnauthorizedError",
    "UnknownBackendError",
]

from mcp import McpError
from mcp.types import INVALID_PARAMS, ErrorData


class PowertoolError(Exception):
    """Base class for all mcp-powertool errors."""


# =============================================================================
# Startup Errors
# =============================================================================


class ConfigError(PowertoolError):
    """Raised when no configuration source is resolvable or a payload is invalid."""


# =============================================================================
# Per-Backend Errors
# =============================================================================


class BackendConnectionError(PowertoolError):
    """Raised when a single backend cannot be reached or used.

    Attributes:
        backend: Name of the backend that failed.
    """

    def __init__(self, backend: str, message: str) -> None:
        super().__init__(message)
        self.backend = backend


class AlreadyConnectedError(BackendConnectionError):
    """Raised when connect() is called for a backend name that is already live."""

    def __init__(self, backend: str) -> None:
        super().__init__(backend, f"Server '{backend}' is already connected")


class AuthorizationError(PowertoolError):
    """Raised when an OAuth flow fails, times out, or is denied by the user."""


class UnauthorizedError(AuthorizationError):
    """Raised when a backend rejects a request for lack of authorization."""


# =============================================================================
# Per-Request Errors
# =============================================================================


class SecurityError(PowertoolError):
    """Raised when an OAuth callback fails CSRF state validation.

    Attributes:
        status_code: HTTP status the callback server answers with (400 or 403).
    """

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class RoutingError(PowertoolError, McpError):
    """Raised when a request cannot be routed to exactly one backend.

    Inherits from McpError so that resource/prompt handlers can raise it
    directly and the client receives a JSON-RPC error with code -32602.
    Tool calls convert it to a CallToolResult with isError=True instead.
    """

    def __init__(self, message: str) -> None:
        super().__init__(ErrorData(code=INVALID_PARAMS, message=message))
        self.message = message


class UnknownBackendError(RoutingError):
    """Raised when a request names a backend that is not connected."""

    def __init__(self, backend: str) -> None:
        super().__init__(f"Server {backend} not found")
        self.backend = backend


class ToolNotFoundError(RoutingError):
    """Raised when no connected backend provides the requested tool."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool {tool_name} not found on any connected server")
        self.tool_name = tool_name


class ResourceNotFoundError(RoutingError):
    """Raised when no connected backend serves the requested resource URI."""

    def __init__(self, uri: str) -> None:
        super().__init__(f"Resource {uri} not found on any connected server")
        self.uri = uri


class PromptNotFoundError(RoutingError):
    """Raised when no connected backend provides the requested prompt."""

    def __init__(self, prompt_name: str) -> None:
        super().__init__(f"Prompt {prompt_name} not found on any connected server")
        self.prompt_name = prompt_name


class AmbiguousToolError(RoutingError):
    """Raised when a tool name exists on more than one backend.

    Attributes:
        tool_name: The ambiguous tool name.
        servers: Candidate backend names, in connection order.
    """

    def __init__(self, tool_name: str, servers: list[str]) -> None:
        super().__init__(
            f"Multiple servers provide tool '{tool_name}': {', '.join(servers)}. "
            "Please specify serverName to disambiguate."
        )
        self.tool_name = tool_name
        self.servers = servers


# =============================================================================
# Best-Effort Errors
# =============================================================================


class LockfileError(PowertoolError):
    """Raised when a lockfile cannot be written, read, or removed."""


class FileIOError(PowertoolError):
    """Raised when a best-effort file operation (cache, error log) fails."""
