"""OAuth for HTTP/SSE backends: local callback server and client provider."""

from mcp_powertool.security.auth.callback_server import (
    CallbackSessionRegistry,
    OAuthCallbackServer,
    OAuthSession,
    create_callback_app,
)
from mcp_powertool.security.auth.provider import create_oauth_provider

__all__ = [
    "CallbackSessionRegistry",
    "OAuthCallbackServer",
    "OAuthSession",
    "create_callback_app",
    "create_oauth_provider",
]
