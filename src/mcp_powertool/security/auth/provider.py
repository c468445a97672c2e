"""OAuth client provider for HTTP/SSE backends.

Builds an mcp OAuthClientProvider (an httpx.Auth) for one backend:

- TokenStorage is backed by the CredentialStore, keyed by project path and
  backend name, so client registrations and tokens survive restarts.
- The redirect handler is bound to an OAuthSession at construction. It
  rewrites the authorization URL's state parameter to
  "<sessionId>:<stateValue>" so our callback server can validate it, and
  remembers the provider's own state. A later authorization (token revoked,
  refresh failed) finds that session consumed or swept and opens a fresh one
  on the same callback server, which lives as long as the connection.
- The callback handler waits on the callback server for that session's
  code and hands the provider its own state back, so the library's state
  check keeps working unchanged.
"""

from __future__ import annotations

__all__ = [
    "CredentialTokenStorage",
    "SessionCallbackHandler",
    "SessionRedirectHandler",
    "build_client_metadata",
    "create_oauth_provider",
]

import sys
import webbrowser
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mcp.client.auth import OAuthClientProvider
from mcp.shared.auth import OAuthClientInformationFull, OAuthClientMetadata, OAuthToken
from pydantic import ValidationError

from mcp_powertool.constants import APP_NAME, OAUTH_SCOPE, OAUTH_SESSION_TIMEOUT_SECONDS
from mcp_powertool.security.auth.callback_server import (
    CallbackSessionRegistry,
    OAuthCallbackServer,
    OAuthSession,
)
from mcp_powertool.security.credentials import CredentialStore
from mcp_powertool.telemetry.system_logger import get_system_logger


class CredentialTokenStorage:
    """mcp TokenStorage over the CredentialStore for one backend."""

    def __init__(self, store: CredentialStore, project_path: str | Path, server_name: str) -> None:
        self._store = store
        self._project_path = project_path
        self._server_name = server_name

    async def get_tokens(self) -> OAuthToken | None:
        server = self._store.get_server(self._project_path, self._server_name)
        if server is None or not server.tokens:
            return None
        try:
            return OAuthToken.model_validate(server.tokens)
        except ValidationError:
            return None

    async def set_tokens(self, tokens: OAuthToken) -> None:
        self._store.update_server(
            self._project_path,
            self._server_name,
            tokens=tokens.model_dump(mode="json", exclude_none=True),
        )

    async def get_client_info(self) -> OAuthClientInformationFull | None:
        server = self._store.get_server(self._project_path, self._server_name)
        if server is None or not server.client_info:
            return None
        try:
            return OAuthClientInformationFull.model_validate(server.client_info)
        except ValidationError:
            return None

    async def set_client_info(self, client_info: OAuthClientInformationFull) -> None:
        self._store.update_server(
            self._project_path,
            self._server_name,
            client_info=client_info.model_dump(mode="json", exclude_none=True),
        )


class SessionRedirectHandler:
    """Sends the user to the authorization URL with our session-bound state.

    Attributes:
        provider_state: State the OAuth provider generated for this attempt,
            captured from the authorization URL.
    """

    def __init__(
        self,
        session: OAuthSession,
        server_name: str,
        redirect_url: str,
        *,
        sessions: CallbackSessionRegistry | None = None,
        open_browser: bool = True,
    ) -> None:
        self.session = session
        self.server_name = server_name
        self.redirect_url = redirect_url
        self.open_browser = open_browser
        self.provider_state: str | None = None
        self._sessions = sessions

    def _renew_session(self) -> None:
        if self._sessions is not None and self.session.session_id not in self._sessions:
            self.session = self._sessions.generate_session()

    def bind_state(self, authorization_url: str) -> str:
        """Replace the state query parameter with "<sessionId>:<stateValue>"."""
        parts = urlsplit(authorization_url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        self.provider_state = next((v for k, v in query if k == "state"), None)
        query = [(k, v) for k, v in query if k != "state"]
        query.append(("state", self.session.state_param))
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def __call__(self, authorization_url: str) -> None:
        self._renew_session()
        url = self.bind_state(authorization_url)

        print(f"\n=== OAuth Authorization Required for {self.server_name} ===", file=sys.stderr)
        print(f"Please visit: {url}", file=sys.stderr)
        print(f"After authorizing, you will be redirected to: {self.redirect_url}\n", file=sys.stderr)

        if self.open_browser:
            try:
                webbrowser.open(url)
            except webbrowser.Error as e:
                get_system_logger().warning(
                    {"event": "browser_open_failed", "backend": self.server_name, "error": str(e)}
                )


class SessionCallbackHandler:
    """Waits for the authorization code of the redirect's current session.

    The session is discarded once it produced a code or failed, so the next
    authorization starts from a fresh one.
    """

    def __init__(
        self,
        sessions: CallbackSessionRegistry,
        redirect: SessionRedirectHandler,
        timeout: float = OAUTH_SESSION_TIMEOUT_SECONDS,
    ) -> None:
        self._sessions = sessions
        self._redirect = redirect
        self._timeout = timeout

    async def __call__(self) -> tuple[str, str | None]:
        session_id = self._redirect.session.session_id
        try:
            code = await self._sessions.wait_for_auth_code(session_id, self._timeout)
        finally:
            self._sessions.discard(session_id)
        return code, self._redirect.provider_state


def build_client_metadata(server_name: str, redirect_url: str) -> OAuthClientMetadata:
    """Dynamic client registration metadata for one backend."""
    return OAuthClientMetadata(
        client_name=f"{APP_NAME} proxy for {server_name}",
        redirect_uris=[redirect_url],
        grant_types=["authorization_code", "refresh_token"],
        response_types=["code"],
        token_endpoint_auth_method="client_secret_post",
        scope=OAUTH_SCOPE,
    )


def create_oauth_provider(
    server_name: str,
    server_url: str,
    *,
    store: CredentialStore,
    project_path: str | Path,
    callback_server: OAuthCallbackServer,
    session: OAuthSession,
    open_browser: bool = True,
    timeout: float = OAUTH_SESSION_TIMEOUT_SECONDS,
) -> OAuthClientProvider:
    """Build the httpx auth flow for one backend and one OAuth session.

    Args:
        server_name: Backend name (credential key and client name).
        server_url: Backend MCP URL.
        store: Credential store for tokens and client registration.
        project_path: Credential store key.
        callback_server: Started callback server receiving the redirect.
        session: Session the redirect state is bound to.
        open_browser: Whether to launch the system browser.
        timeout: Seconds to wait for the user to authorize.

    Returns:
        An OAuthClientProvider usable as httpx auth.
    """
    redirect_url = callback_server.redirect_url
    redirect = SessionRedirectHandler(
        session,
        server_name,
        redirect_url,
        sessions=callback_server.registry,
        open_browser=open_browser,
    )
    return OAuthClientProvider(
        server_url=server_url,
        client_metadata=build_client_metadata(server_name, redirect_url),
        storage=CredentialTokenStorage(store, project_path, server_name),
        redirect_handler=redirect,
        callback_handler=SessionCallbackHandler(callback_server.registry, redirect, timeout),
        timeout=timeout,
    )
