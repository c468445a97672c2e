"""HTTP serving of the proxy (mcp-serve --type http|sse).

build_http_app() puts the proxy's low-level Server behind a FastAPI app:

- http: streamable HTTP on /mcp, one MCP session per client
- sse: GET /sse opens the event stream, POST /messages/ carries client
  messages

Both transports add:

- GET /health: {"status": "ok", "transport": "<http|sse>"}
- POST /reload: optional JSON body {"taskId", "workUnitId", "projectId"};
  answers with the ReloadResult of ProxyServer.reload(). A reload that
  failed still answers 200 with success=false.

All sessions share one backend set, so a reload (from /reload or the
reload_config tool) notifies every connected client.
"""

from __future__ import annotations

__all__ = [
    "ServeTransport",
    "build_http_app",
    "serve_http",
]

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI
from mcp.server.sse import SseServerTransport
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.types import Receive, Scope, Send

from mcp_powertool.config.resolver import FetchContext
from mcp_powertool.constants import RELOAD_PATH, SSE_MESSAGES_PATH, SSE_PATH, STREAMABLE_HTTP_PATH
from mcp_powertool.telemetry.system_logger import get_system_logger

if TYPE_CHECKING:
    from mcp_powertool.server.proxy import ProxyServer


class ServeTransport(str, Enum):
    """Client-facing transport of mcp-serve."""

    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"


# =============================================================================
# ASGI endpoints
# =============================================================================


class _StreamableHTTPEndpoint:
    def __init__(self, session_manager: StreamableHTTPSessionManager) -> None:
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.session_manager.handle_request(scope, receive, send)


class _SseEndpoint:
    def __init__(self, proxy: ProxyServer, transport: SseServerTransport) -> None:
        self.proxy = proxy
        self.transport = transport

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        async with self.transport.connect_sse(scope, receive, send) as (read_stream, write_stream):
            await self.proxy.server.run(read_stream, write_stream, self.proxy.initialization_options())


# =============================================================================
# App
# =============================================================================


def build_http_app(proxy: ProxyServer, transport: ServeTransport) -> FastAPI:
    """Build the FastAPI app serving the proxy over HTTP or SSE.

    Args:
        proxy: Started proxy; its backends are shared by every session.
        transport: ServeTransport.HTTP or ServeTransport.SSE.

    Returns:
        The FastAPI application.

    Raises:
        ValueError: If transport is stdio.
    """
    if transport is ServeTransport.HTTP:
        session_manager = StreamableHTTPSessionManager(app=proxy.server)

        @asynccontextmanager
        async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
            async with session_manager.run():
                yield

        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None, lifespan=lifespan)
        app.add_route(STREAMABLE_HTTP_PATH, _StreamableHTTPEndpoint(session_manager))
    elif transport is ServeTransport.SSE:
        sse = SseServerTransport(SSE_MESSAGES_PATH)
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
        app.add_route(SSE_PATH, _SseEndpoint(proxy, sse), methods=["GET"])
        app.mount(SSE_MESSAGES_PATH, app=sse.handle_post_message)
    else:
        raise ValueError(f"Not an HTTP transport: {transport.value}")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "transport": transport.value}

    @app.post(RELOAD_PATH)
    async def reload(context: FetchContext | None = None) -> dict[str, Any]:
        if context is not None and context.is_empty:
            context = None
        result = await proxy.reload(context)
        return result.model_dump()

    return app


async def serve_http(proxy: ProxyServer, transport: ServeTransport, host: str, port: int) -> None:
    """Serve the proxy over HTTP or SSE until interrupted.

    Backends are disconnected when the server stops.
    """
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    app = build_http_app(proxy, transport)
    endpoint = STREAMABLE_HTTP_PATH if transport is ServeTransport.HTTP else SSE_PATH
    get_system_logger().info(
        {
            "event": "http_server_starting",
            "transport": transport.value,
            "url": f"http://{host}:{port}{endpoint}",
            "reload_url": f"http://{host}:{port}{RELOAD_PATH}",
            "message": f"Serving MCP over {transport.value} on http://{host}:{port}{endpoint}",
        }
    )

    config = uvicorn.Config(app, host=host, port=port, log_config=None, lifespan="on", ws="none")
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        await proxy.manager.disconnect_all()
