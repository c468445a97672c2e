"""Transport creation for backend connections.

Maps a BackendConfig onto a fastmcp client transport:
- stdio -> StdioTransport (child process, killed when the client closes)
- http  -> StreamableHttpTransport
- sse   -> SSETransport

HTTP clients always carry the mcp-powertool User-Agent plus the backend's
static headers; OAuth is layered on via an httpx.Auth.
"""

from __future__ import annotations

__all__ = [
    "create_backend_transport",
    "create_httpx_client_factory",
    "has_static_authorization",
]

from typing import TYPE_CHECKING, Any

import httpx
from fastmcp.client.transports import (
    ClientTransport,
    SSETransport,
    StdioTransport,
    StreamableHttpTransport,
)

from mcp_powertool.config.models import BackendConfig, HttpParams, StdioParams, TransportKind
from mcp_powertool.constants import USER_AGENT

if TYPE_CHECKING:
    from mcp.shared._httpx_utils import McpHttpClientFactory


def create_httpx_client_factory(static_headers: dict[str, str] | None = None) -> "McpHttpClientFactory":
    """Create an httpx client factory with User-Agent and static headers.

    Args:
        static_headers: Headers from the backend configuration.

    Returns:
        Factory callable that creates configured httpx.AsyncClient instances.
    """

    def factory(
        headers: dict[str, str] | None = None,
        timeout: httpx.Timeout | None = None,
        auth: httpx.Auth | None = None,
        **kwargs: Any,
    ) -> httpx.AsyncClient:
        merged_headers = {"User-Agent": USER_AGENT}
        if static_headers:
            merged_headers.update(static_headers)
        if headers:
            merged_headers.update(headers)
        return httpx.AsyncClient(headers=merged_headers, timeout=timeout, auth=auth, **kwargs)

    return factory


def has_static_authorization(params: HttpParams) -> bool:
    """Whether the configured headers already authorize requests."""
    return any(name.lower() == "authorization" for name in params.headers)


def create_backend_transport(
    config: BackendConfig,
    auth: httpx.Auth | None = None,
) -> ClientTransport:
    """Create the client transport for one backend.

    Args:
        config: Resolved backend configuration.
        auth: Optional httpx auth (OAuth provider) for HTTP/SSE backends.

    Returns:
        A fastmcp ClientTransport.
    """
    params = config.connection_params
    if isinstance(params, StdioParams):
        return StdioTransport(
            command=params.command,
            args=list(params.args),
            env=dict(params.env) or None,
            keep_alive=False,
        )

    factory = create_httpx_client_factory(dict(params.headers))
    if config.transport is TransportKind.SSE:
        return SSETransport(
            url=params.url,
            headers=dict(params.headers),
            auth=auth,
            httpx_client_factory=factory,
        )
    return StreamableHttpTransport(
        url=params.url,
        headers=dict(params.headers),
        auth=auth,
        httpx_client_factory=factory,
    )
