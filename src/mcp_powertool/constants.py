"""Application-wide constants for mcp-powertool.

Constants that define application behavior. Values a user may change per
invocation (config sources, merge strategy, prefixing) live in the CLI
options and ResolverOptions instead.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    "USER_AGENT",
    # Environment variables
    "ENV_CONFIG_URL",
    "ENV_PROXY_ENDPOINT",
    "ENV_API_KEY",
    "API_KEY_HEADER",
    # Configuration resolver
    "CONFIG_CACHE_TTL_SECONDS",
    "CONFIG_FETCH_TIMEOUT_SECONDS",
    # Credential store / lockfiles
    "CREDENTIALS_FILENAME",
    "LOCK_DIR_NAME",
    "LOCKFILE_MAX_AGE_SECONDS",
    "LOCK_CHECK_TIMEOUT_SECONDS",
    # OAuth callback server
    "OAUTH_CALLBACK_PATH",
    "OAUTH_SESSION_TIMEOUT_SECONDS",
    "OAUTH_SWEEP_INTERVAL_SECONDS",
    "OAUTH_LONG_POLL_SECONDS",
    "OAUTH_WAIT_POLL_INTERVAL_SECONDS",
    "OAUTH_SCOPE",
    # Proxy
    "RELOAD_TOOL_NAME",
    "DESCRIBE_TOOLS_NAME",
    "USE_TOOL_NAME",
    "PREFIX_SEPARATOR",
    "URI_PREFIX_SEPARATOR",
    "DEFAULT_SERVE_HOST",
    "DEFAULT_SERVE_PORT",
    "STREAMABLE_HTTP_PATH",
    "SSE_PATH",
    "SSE_MESSAGES_PATH",
    "RELOAD_PATH",
    "RELOAD_REQUEST_TIMEOUT_SECONDS",
    # Cache / diagnostics
    "CACHE_DIR_NAME",
    "DEFAULT_CACHE_TTL_SECONDS",
    "ERROR_LOG_DIR_NAME",
]

from mcp_powertool import __version__

# =============================================================================
# Application identity
# =============================================================================

APP_NAME = "mcp-powertool"
USER_AGENT = f"{APP_NAME}/{__version__}"

# =============================================================================
# Environment variables
# =============================================================================

# Scope override, set per invocation (takes precedence over the endpoint)
ENV_CONFIG_URL = "AGIFLOW_MCP_CONFIG_URL"
ENV_PROXY_ENDPOINT = "AGIFLOW_MCP_PROXY_ENDPOINT"
ENV_API_KEY = "AGIFLOW_MCP_API_KEY"
API_KEY_HEADER = "x-api-key"

# =============================================================================
# Configuration resolver
# =============================================================================

CONFIG_CACHE_TTL_SECONDS = 60.0
CONFIG_FETCH_TIMEOUT_SECONDS = 30.0

# =============================================================================
# Credential store / lockfiles
# =============================================================================

CREDENTIALS_FILENAME = "mcp.credentials.json"
LOCK_DIR_NAME = "locks"
LOCKFILE_MAX_AGE_SECONDS = 30 * 60
LOCK_CHECK_TIMEOUT_SECONDS = 1.0

# =============================================================================
# OAuth callback server
# =============================================================================

OAUTH_CALLBACK_PATH = "/oauth/callback"
OAUTH_SESSION_TIMEOUT_SECONDS = 5 * 60
OAUTH_SWEEP_INTERVAL_SECONDS = 60.0
# Single /wait-for-auth request is parked at most this long, then answers 202
OAUTH_LONG_POLL_SECONDS = 30.0
OAUTH_WAIT_POLL_INTERVAL_SECONDS = 0.1
OAUTH_SCOPE = "mcp:tools"

# =============================================================================
# Proxy
# =============================================================================

RELOAD_TOOL_NAME = "reload_config"
DESCRIBE_TOOLS_NAME = "describe-tools"
USE_TOOL_NAME = "use-tool"
# backend/tool and backend/prompt
PREFIX_SEPARATOR = "/"
# backend://original-uri
URI_PREFIX_SEPARATOR = "://"

# mcp-serve --type http|sse (MCP_HOST / MCP_PORT override the defaults)
DEFAULT_SERVE_HOST = "localhost"
DEFAULT_SERVE_PORT = 3000
STREAMABLE_HTTP_PATH = "/mcp"
SSE_PATH = "/sse"
SSE_MESSAGES_PATH = "/messages/"
RELOAD_PATH = "/reload"
RELOAD_REQUEST_TIMEOUT_SECONDS = 120.0

# =============================================================================
# Cache / diagnostics (both under tempfile.gettempdir())
# =============================================================================

CACHE_DIR_NAME = f"{APP_NAME}-cache"
DEFAULT_CACHE_TTL_SECONDS = 60 * 60
ERROR_LOG_DIR_NAME = f"{APP_NAME}-logs"
