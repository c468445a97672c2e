"""Local OAuth callback server.

A short-lived HTTP server on 127.0.0.1 that receives the authorization
server's redirect and lets waiters (in this process or another one) learn
when a flow finished.

Routes:
    GET /oauth/callback?code|error&state=<sessionId>:<stateValue>
        Validates the CSRF state against the session, records the result,
        and releases long-poll waiters of that session only.
    GET /wait-for-auth?sessionId=...&poll=true|false
        200 completed / 400 error / 202 pending (long-poll parks up to 30s).
    GET /health
        Liveness check.

Sessions older than the auth timeout are swept every minute; parked
waiters of a swept session receive 408.
"""

from __future__ import annotations

__all__ = [
    "CallbackSessionRegistry",
    "OAuthCallbackServer",
    "OAuthSession",
    "create_callback_app",
]

import asyncio
import errno
import html
import logging
import secrets
import socket
import time
from dataclasses import dataclass, field
from typing import Any

import uvicorn
from fastapi import FastAPI
from starlette.responses import HTMLResponse, JSONResponse

from mcp_powertool.constants import (
    OAUTH_CALLBACK_PATH,
    OAUTH_LONG_POLL_SECONDS,
    OAUTH_SESSION_TIMEOUT_SECONDS,
    OAUTH_SWEEP_INTERVAL_SECONDS,
    OAUTH_WAIT_POLL_INTERVAL_SECONDS,
)
from mcp_powertool.exceptions import AuthorizationError, SecurityError
from mcp_powertool.telemetry.system_logger import get_system_logger

# Pending connections queued before uvicorn accepts them
_LISTEN_BACKLOG = 16
_STARTUP_TIMEOUT_SECONDS = 5.0
_SHUTDOWN_TIMEOUT_SECONDS = 5.0


# =============================================================================
# Sessions
# =============================================================================


@dataclass(frozen=True)
class OAuthSession:
    """Identifiers for one authorization attempt.

    The composite "session_id:state" travels in the OAuth state parameter
    and must come back unchanged.
    """

    session_id: str
    state: str
    created_at: float

    @property
    def state_param(self) -> str:
        return f"{self.session_id}:{self.state}"


@dataclass
class _SessionData:
    state: str
    created_at: float
    auth_code: str | None = None
    auth_error: str | None = None
    waiters: list[asyncio.Future[tuple[int, dict[str, Any]]]] = field(default_factory=list)


def _resolve_waiter(
    future: asyncio.Future[tuple[int, dict[str, Any]]], result: tuple[int, dict[str, Any]]
) -> None:
    if not future.done():
        future.set_result(result)


class CallbackSessionRegistry:
    """Session table shared by the HTTP routes and in-process waiters."""

    def __init__(self, auth_timeout: float = OAUTH_SESSION_TIMEOUT_SECONDS) -> None:
        self.auth_timeout = auth_timeout
        self._sessions: dict[str, _SessionData] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def generate_session(self) -> OAuthSession:
        """Create a session with unguessable id and state."""
        session = OAuthSession(
            session_id=secrets.token_urlsafe(32),
            state=secrets.token_urlsafe(32),
            created_at=time.time(),
        )
        self._sessions[session.session_id] = _SessionData(
            state=session.state, created_at=session.created_at
        )
        return session

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    # -------------------------------------------------------------------------
    # Waiters
    # -------------------------------------------------------------------------

    def register_waiter(self, session_id: str) -> asyncio.Future[tuple[int, dict[str, Any]]]:
        """Park a waiter on a session; resolved with (status, body)."""
        future: asyncio.Future[tuple[int, dict[str, Any]]] = (
            asyncio.get_running_loop().create_future()
        )
        self._sessions[session_id].waiters.append(future)
        return future

    def remove_waiter(
        self, session_id: str, future: asyncio.Future[tuple[int, dict[str, Any]]]
    ) -> None:
        session = self._sessions.get(session_id)
        if session is not None and future in session.waiters:
            session.waiters.remove(future)

    def _notify(self, session_id: str, status: int, body: dict[str, Any]) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        while session.waiters:
            future = session.waiters.pop(0)
            if not future.done():
                # Waiters may live on another loop (TestClient portal thread)
                future.get_loop().call_soon_threadsafe(_resolve_waiter, future, (status, body))

    # -------------------------------------------------------------------------
    # Callback handling
    # -------------------------------------------------------------------------

    def handle_callback(self, code: str | None, error: str | None, state: str | None) -> str:
        """Validate a redirect and record its outcome.

        Returns:
            "completed" or "error".

        Raises:
            SecurityError: Missing/malformed state (400), unknown session
                (400), state mismatch (403), or neither code nor error (400).
        """
        if not state:
            raise SecurityError("Missing state parameter. This may indicate a CSRF attack.")

        session_id, _, state_value = state.partition(":")
        if not session_id or not state_value:
            raise SecurityError("Invalid state format.")

        session = self._sessions.get(session_id)
        if session is None:
            raise SecurityError("Invalid or expired session.")

        if not secrets.compare_digest(session.state, state_value):
            get_system_logger().warning(
                {
                    "event": "oauth_state_mismatch",
                    "message": "OAuth callback state mismatch, possible CSRF attempt",
                }
            )
            raise SecurityError(
                "State parameter mismatch. Possible CSRF attack detected.", status_code=403
            )

        if code:
            session.auth_code = code
            self._notify(session_id, 200, {"status": "completed"})
            return "completed"
        if error:
            session.auth_error = error
            self._notify(session_id, 400, {"status": "error", "error": error})
            return "error"
        raise SecurityError("Missing code or error parameter")

    def poll_status(self, session_id: str) -> tuple[int, dict[str, Any]] | None:
        """Immediate /wait-for-auth answer, or None when still pending.

        Raises:
            KeyError: Unknown session.
        """
        session = self._sessions[session_id]
        if session.auth_code:
            return 200, {"status": "completed"}
        if session.auth_error:
            return 400, {"status": "error", "error": session.auth_error}
        return None

    def sweep(self, now: float | None = None) -> list[str]:
        """Drop sessions older than auth_timeout, answering their waiters with 408.

        Returns:
            The removed session ids.
        """
        current = time.time() if now is None else now
        expired = [
            session_id
            for session_id, data in self._sessions.items()
            if current - data.created_at > self.auth_timeout
        ]
        for session_id in expired:
            self._notify(session_id, 408, {"status": "timeout", "error": "Session expired"})
            del self._sessions[session_id]
        if expired:
            get_system_logger().info(
                {"event": "oauth_session_expired", "count": len(expired)}
            )
        return expired

    # -------------------------------------------------------------------------
    # In-process waiting
    # -------------------------------------------------------------------------

    async def _poll_until_done(self, session_id: str, timeout: float | None) -> str:
        if session_id not in self._sessions:
            raise AuthorizationError("Invalid session ID")

        deadline = time.monotonic() + (self.auth_timeout if timeout is None else timeout)
        while True:
            session = self._sessions.get(session_id)
            if session is None:
                raise AuthorizationError("Session expired")
            if session.auth_code:
                return session.auth_code
            if session.auth_error:
                raise AuthorizationError(f"OAuth error: {session.auth_error}")
            if time.monotonic() >= deadline:
                raise AuthorizationError("OAuth authentication timeout")
            await asyncio.sleep(OAUTH_WAIT_POLL_INTERVAL_SECONDS)

    async def wait_for_auth_code(self, session_id: str, timeout: float | None = None) -> str:
        """Wait for the authorization code of a session.

        Args:
            session_id: Session to wait on.
            timeout: Seconds to wait; defaults to auth_timeout.

        Returns:
            The authorization code.

        Raises:
            AuthorizationError: Unknown/expired session, OAuth error, or timeout.
        """
        return await self._poll_until_done(session_id, timeout)

    async def auth_completed(self, session_id: str, timeout: float | None = None) -> None:
        """Wait until a session completed successfully (see wait_for_auth_code)."""
        await self._poll_until_done(session_id, timeout)


# =============================================================================
# HTTP app
# =============================================================================


def _page(title: str, body: str, *, close: bool = False) -> str:
    script = "<script>setTimeout(() => window.close(), 2000);</script>" if close else ""
    return (
        f"<html><body><h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(body)}</p>{script}</body></html>"
    )


def create_callback_app(
    registry: CallbackSessionRegistry,
    callback_path: str = OAUTH_CALLBACK_PATH,
    long_poll_seconds: float = OAUTH_LONG_POLL_SECONDS,
) -> FastAPI:
    """Build the FastAPI app serving the callback and coordination routes.

    Args:
        registry: Session table.
        callback_path: Path registered as OAuth redirect URI.
        long_poll_seconds: Maximum time a single /wait-for-auth request is parked.

    Returns:
        The FastAPI application.
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(callback_path, response_class=HTMLResponse)
    async def oauth_callback(
        code: str | None = None,
        error: str | None = None,
        state: str | None = None,
    ) -> HTMLResponse:
        try:
            outcome = registry.handle_callback(code, error, state)
        except SecurityError as e:
            title = "Session Error" if "session" in str(e) else "Security Error"
            return HTMLResponse(_page(title, str(e)), status_code=e.status_code)

        if outcome == "completed":
            return HTMLResponse(
                _page(
                    "Authorization Successful!",
                    "You can close this window and return to the terminal.",
                    close=True,
                )
            )
        return HTMLResponse(_page("Authorization Failed", f"Error: {error}"), status_code=400)

    @app.get("/wait-for-auth")
    async def wait_for_auth(sessionId: str | None = None, poll: str | None = None) -> JSONResponse:
        if not sessionId:
            return JSONResponse(
                {"status": "error", "error": "Missing sessionId parameter"}, status_code=400
            )
        if sessionId not in registry:
            return JSONResponse(
                {"status": "error", "error": "Invalid or expired session"}, status_code=404
            )

        immediate = registry.poll_status(sessionId)
        if immediate is not None:
            status, body = immediate
            return JSONResponse(body, status_code=status)

        if poll == "false":
            return JSONResponse({"status": "pending"}, status_code=202)

        waiter = registry.register_waiter(sessionId)
        try:
            status, body = await asyncio.wait_for(asyncio.shield(waiter), long_poll_seconds)
        except asyncio.TimeoutError:
            return JSONResponse({"status": "pending"}, status_code=202)
        finally:
            registry.remove_waiter(sessionId, waiter)
        return JSONResponse(body, status_code=status)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


# =============================================================================
# Server lifecycle
# =============================================================================


def _bind_socket(port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("127.0.0.1", port))
        sock.listen(_LISTEN_BACKLOG)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class OAuthCallbackServer:
    """Runs the callback app under uvicorn plus the session sweep task.

    Usage:
        server = OAuthCallbackServer()
        await server.start()
        session = server.generate_session()
        ...
        code = await server.wait_for_auth_code(session.session_id)
        await server.stop()
    """

    def __init__(
        self,
        port: int = 0,
        *,
        callback_path: str = OAUTH_CALLBACK_PATH,
        auth_timeout: float = OAUTH_SESSION_TIMEOUT_SECONDS,
        sweep_interval: float = OAUTH_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.requested_port = port
        self.callback_path = callback_path
        self.registry = CallbackSessionRegistry(auth_timeout)
        self.app = create_callback_app(self.registry, callback_path)
        self._sweep_interval = sweep_interval
        self._port: int | None = None
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def port(self) -> int:
        if self._port is None:
            raise RuntimeError("OAuth callback server is not started")
        return self._port

    @property
    def redirect_url(self) -> str:
        return f"http://localhost:{self.port}{self.callback_path}"

    def generate_session(self) -> OAuthSession:
        return self.registry.generate_session()

    async def wait_for_auth_code(self, session_id: str, timeout: float | None = None) -> str:
        return await self.registry.wait_for_auth_code(session_id, timeout)

    async def auth_completed(self, session_id: str, timeout: float | None = None) -> None:
        await self.registry.auth_completed(session_id, timeout)

    async def start(self) -> int:
        """Bind and start serving.

        A fixed port that is already in use is retried once with an
        auto-assigned port.

        Returns:
            The bound port.

        Raises:
            AuthorizationError: If no port could be bound.
        """
        for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            logging.getLogger(logger_name).setLevel(logging.CRITICAL)

        try:
            sock = _bind_socket(self.requested_port)
        except OSError as e:
            if e.errno != errno.EADDRINUSE or self.requested_port == 0:
                raise AuthorizationError(
                    f"Failed to start OAuth callback server on port {self.requested_port}: {e}"
                ) from e
            get_system_logger().warning(
                {
                    "event": "oauth_port_in_use",
                    "port": self.requested_port,
                    "message": f"Port {self.requested_port} is already in use, trying auto-assigned port",
                }
            )
            try:
                sock = _bind_socket(0)
            except OSError as retry_error:
                raise AuthorizationError(
                    f"Failed to start OAuth callback server: {retry_error}"
                ) from retry_error

        self._socket = sock
        self._port = sock.getsockname()[1]

        config = uvicorn.Config(self.app, log_config=None, lifespan="off", ws="none")
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server._serve(sockets=[sock]))
        self._sweep_task = asyncio.create_task(self._sweep_loop())

        deadline = time.monotonic() + _STARTUP_TIMEOUT_SECONDS
        while not self._server.started and not self._serve_task.done():
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(0.01)

        get_system_logger().info(
            {
                "event": "oauth_callback_server_started",
                "port": self._port,
                "message": f"OAuth callback server listening on 127.0.0.1:{self._port}",
            }
        )
        return self._port

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.registry.sweep()

    async def stop(self) -> None:
        """Stop serving and cancel the sweep task."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if self._server is not None and self._serve_task is not None:
            self._server.should_exit = True
            try:
                await asyncio.wait_for(self._serve_task, _SHUTDOWN_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                self._serve_task.cancel()
            self._server = None
            self._serve_task = None

        if self._socket is not None:
            self._socket.close()
            self._socket = None
