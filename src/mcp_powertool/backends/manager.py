"""Backend connection manager.

Sole owner of the name -> BackendConnection map. At most one connection
(or in-flight connection attempt) exists per backend name.

HTTP/SSE backends are wrapped with an OAuth provider unless their static
headers already carry an Authorization header. For those, each connection
attempt:

1. checks the lockfile for another live process authorizing the same URL
   (logged only; this process still runs its own flow)
2. starts an OAuth callback server, creates a session, writes a lockfile
3. connects; on a 401 the OAuth provider opens the browser, waits for the
   callback of this session, exchanges the code and retries the request
4. removes the lockfile; the callback server lives until the connection
   closes and receives any later re-authorization (revoked token, failed
   refresh)
"""

from __future__ import annotations

__all__ = ["BackendConnectionManager", "TransportFactory"]

import asyncio
import os
from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from pathlib import Path

import httpx
from fastmcp.client.transports import ClientTransport

from mcp_powertool.backends.connection import BackendConnection
from mcp_powertool.backends.transport import create_backend_transport, has_static_authorization
from mcp_powertool.config.models import BackendConfig, HttpParams
from mcp_powertool.constants import OAUTH_SESSION_TIMEOUT_SECONDS
from mcp_powertool.exceptions import (
    AlreadyConnectedError,
    BackendConnectionError,
    LockfileError,
    UnauthorizedError,
)
from mcp_powertool.security.auth.callback_server import OAuthCallbackServer
from mcp_powertool.security.auth.provider import create_oauth_provider
from mcp_powertool.security.credentials import CredentialStore
from mcp_powertool.security.lockfile import LockfileCoordinator
from mcp_powertool.telemetry.system_logger import get_system_logger

TransportFactory = Callable[[BackendConfig, "httpx.Auth | None"], ClientTransport]


def _is_unauthorized(error: BaseException) -> bool:
    """Whether an HTTP 401 is anywhere in the exception chain or group."""
    seen: set[int] = set()
    pending: list[BaseException] = [error]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, httpx.HTTPStatusError) and current.response.status_code == 401:
            return True
        if isinstance(current, BaseExceptionGroup):
            pending.extend(current.exceptions)
        for linked in (current.__cause__, current.__context__):
            if linked is not None:
                pending.append(linked)
    return False


class BackendConnectionManager:
    """Connects, tracks and disconnects backends by name."""

    def __init__(
        self,
        *,
        credential_store: CredentialStore | None = None,
        lockfile: LockfileCoordinator | None = None,
        project_path: str | Path | None = None,
        enable_oauth: bool = True,
        open_browser: bool = True,
        callback_port: int = 0,
        oauth_timeout: float = OAUTH_SESSION_TIMEOUT_SECONDS,
        transport_factory: TransportFactory = create_backend_transport,
    ) -> None:
        """Initialize the manager.

        Args:
            credential_store: Store for OAuth client info and tokens.
            lockfile: Cross-process OAuth lock coordinator.
            project_path: Credential key (default: current directory).
            enable_oauth: Wrap HTTP/SSE backends with the OAuth provider.
            open_browser: Launch the system browser for authorization.
            callback_port: Preferred callback port (0 = auto-assign).
            oauth_timeout: Seconds to wait for the user to authorize.
            transport_factory: Builds a client transport from a config.
        """
        self._connections: dict[str, BackendConnection] = {}
        self._pending: set[str] = set()
        self._credential_store = credential_store
        self._lockfile = lockfile
        self._project_path = project_path if project_path is not None else os.getcwd()
        self._enable_oauth = enable_oauth
        self._open_browser = open_browser
        self._callback_port = callback_port
        self._oauth_timeout = oauth_timeout
        self._transport_factory = transport_factory

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_client(self, name: str) -> BackendConnection | None:
        return self._connections.get(name)

    def get_all_clients(self) -> list[BackendConnection]:
        """Live connections in connection order."""
        return list(self._connections.values())

    def is_connected(self, name: str) -> bool:
        return name in self._connections

    @property
    def names(self) -> list[str]:
        return list(self._connections)

    # -------------------------------------------------------------------------
    # Connect
    # -------------------------------------------------------------------------

    async def connect(self, config: BackendConfig) -> BackendConnection:
        """Connect one backend.

        Args:
            config: Resolved backend configuration.

        Returns:
            The live connection.

        Raises:
            AlreadyConnectedError: If the name is live or already connecting.
            BackendConnectionError: If the connection cannot be established.
            UnauthorizedError: If the backend answered 401 and no OAuth flow
                could authorize it.
        """
        name = config.name
        if name in self._connections or name in self._pending:
            raise AlreadyConnectedError(name)

        self._pending.add(name)
        try:
            params = config.connection_params
            if (
                isinstance(params, HttpParams)
                and self._enable_oauth
                and self._credential_store is not None
                and not has_static_authorization(params)
            ):
                connection = await self._connect_with_oauth(config, params)
            else:
                connection = await self._open(config, None)
        finally:
            self._pending.discard(name)

        self._connections[name] = connection
        get_system_logger().info(
            {
                "event": "backend_connected",
                "backend": name,
                "transport": config.transport.value,
                "message": f"Connected to MCP server: {name} ({config.transport.value})",
            }
        )
        return connection

    async def _open(
        self,
        config: BackendConfig,
        auth: httpx.Auth | None,
        stack: AsyncExitStack | None = None,
    ) -> BackendConnection:
        try:
            transport = self._transport_factory(config, auth)
            return await BackendConnection.open(config, transport, stack)
        except BackendConnectionError:
            raise
        except Exception as e:
            if _is_unauthorized(e):
                raise UnauthorizedError(
                    f"MCP server {config.name} requires authorization: {e}"
                ) from e
            raise BackendConnectionError(
                config.name, f"Failed to connect to MCP server {config.name}: {e}"
            ) from e

    async def _connect_with_oauth(self, config: BackendConfig, params: HttpParams) -> BackendConnection:
        assert self._credential_store is not None
        url = params.url

        if self._lockfile is not None:
            existing = await self._lockfile.check(url)
            if existing is not None:
                get_system_logger().info(
                    {
                        "event": "oauth_lock_held",
                        "backend": config.name,
                        "pid": existing.pid,
                        "port": existing.port,
                        "message": (
                            f"Process {existing.pid} is already authorizing {url}; "
                            "starting an independent OAuth session"
                        ),
                    }
                )

        callback_server = OAuthCallbackServer(self._callback_port, auth_timeout=self._oauth_timeout)
        port = await callback_server.start()
        stack = AsyncExitStack()
        stack.push_async_callback(callback_server.stop)
        session = callback_server.generate_session()

        lock_hash: str | None = None
        if self._lockfile is not None:
            try:
                lock_hash = self._lockfile.create(url, port)
            except LockfileError as e:
                get_system_logger().warning({"event": "lockfile_create_failed", "error": str(e)})

        try:
            auth = create_oauth_provider(
                config.name,
                url,
                store=self._credential_store,
                project_path=self._project_path,
                callback_server=callback_server,
                session=session,
                open_browser=self._open_browser,
                timeout=self._oauth_timeout,
            )
            return await self._open(config, auth, stack)
        except BaseException:
            await stack.aclose()
            raise
        finally:
            if self._lockfile is not None and lock_hash is not None:
                try:
                    self._lockfile.delete(lock_hash)
                except LockfileError as e:
                    get_system_logger().warning({"event": "lockfile_delete_failed", "error": str(e)})

    async def connect_all(self, configs: Iterable[BackendConfig]) -> tuple[list[str], list[str]]:
        """Connect several backends concurrently.

        A failing backend is logged and reported, never raised.

        Returns:
            (connected names, failed names), each in input order.
        """
        config_list = list(configs)
        results = await asyncio.gather(
            *(self.connect(config) for config in config_list), return_exceptions=True
        )

        connected: list[str] = []
        failed: list[str] = []
        for config, result in zip(config_list, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed.append(config.name)
                get_system_logger().error(
                    {
                        "event": "backend_connect_failed",
                        "backend": config.name,
                        "error": str(result),
                        "error_type": type(result).__name__,
                        "message": f"Failed to connect to {config.name}: {result}",
                    }
                )
            else:
                connected.append(config.name)
        return connected, failed

    # -------------------------------------------------------------------------
    # Disconnect
    # -------------------------------------------------------------------------

    async def disconnect(self, name: str) -> None:
        """Close and forget one backend (no-op when unknown)."""
        connection = self._connections.pop(name, None)
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            get_system_logger().warning(
                {
                    "event": "backend_close_failed",
                    "backend": name,
                    "error": str(e),
                    "message": f"Error while closing {name}: {e}",
                }
            )
        get_system_logger().info(
            {"event": "backend_disconnected", "backend": name, "message": f"Disconnected from {name}"}
        )

    async def disconnect_all(self) -> None:
        await asyncio.gather(*(self.disconnect(name) for name in list(self._connections)))
