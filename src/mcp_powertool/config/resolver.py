"""Configuration resolver.

Turns configuration sources (explicit URL, explicit file, environment
fallback) into a ResolvedConfiguration.

Source selection:
- explicit config_url and/or config_file from ResolverOptions
- otherwise AGIFLOW_MCP_CONFIG_URL, then AGIFLOW_MCP_PROXY_ENDPOINT
  (never a local file by default)

When both a file and a URL are present they are fetched concurrently and
combined with the configured MergeStrategy.

Remote endpoints are derived from the source URL:
    {base}/api/v1/organizations/{org}/tasks/{taskId}/mcp-configs
    {base}/api/v1/organizations/{org}/projects/{projectId}/mcp-configs
    {base}/api/v1/organizations/{org}/mcp-configs

Scope is explicit state: callers pass a ConfigScope whose URL replaces the
source URL. Nothing here reads or writes the process environment after
construction.
"""

from __future__ import annotations

__all__ = [
    "ConfigResolver",
    "ConfigScope",
    "FetchContext",
    "ResolverOptions",
    "build_remote_url",
    "parse_organization_url",
]

import asyncio
import json
import os
import re
import time
from collections.abc import Mapping
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict, Field

from mcp_powertool.config.merge import MergeStrategy, merge_configurations
from mcp_powertool.config.models import ResolvedConfiguration, parse_raw_config
from mcp_powertool.constants import (
    API_KEY_HEADER,
    CONFIG_CACHE_TTL_SECONDS,
    CONFIG_FETCH_TIMEOUT_SECONDS,
    ENV_API_KEY,
    ENV_CONFIG_URL,
    ENV_PROXY_ENDPOINT,
    USER_AGENT,
)
from mcp_powertool.exceptions import ConfigError
from mcp_powertool.telemetry.system_logger import get_system_logger

_ORG_PATTERN = re.compile(r"/organizations/([^/]+)")
_ORG_API_SEGMENT = "/api/v1/organizations"
_FLAT_CONFIGS_SUFFIX = re.compile(r"/api/v1/mcp-configs$")


# =============================================================================
# Models
# =============================================================================


class ResolverOptions(BaseModel):
    """Inputs for a ConfigResolver."""

    config_url: str | None = None
    config_file: Path | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    merge_strategy: MergeStrategy = MergeStrategy.LOCAL_PRIORITY
    cache_ttl_seconds: float = CONFIG_CACHE_TTL_SECONDS
    request_timeout_seconds: float = CONFIG_FETCH_TIMEOUT_SECONDS


class FetchContext(BaseModel):
    """Narrower configuration scope requested by a reload."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    task_id: str | None = Field(default=None, alias="taskId")
    work_unit_id: str | None = Field(default=None, alias="workUnitId")
    project_id: str | None = Field(default=None, alias="projectId")

    @property
    def is_empty(self) -> bool:
        return not (self.task_id or self.work_unit_id or self.project_id)

    @property
    def narrows_scope(self) -> bool:
        """True when the remote endpoint changes (task or project id)."""
        return bool(self.task_id or self.project_id)

    def describe(self) -> str:
        """Short label used in reload log lines."""
        if self.task_id:
            return f"taskId={self.task_id}"
        if self.work_unit_id:
            return f"workUnitId={self.work_unit_id}"
        if self.project_id:
            return f"projectId={self.project_id}"
        return "default"


class ConfigScope(BaseModel):
    """Remote configuration URL currently in effect."""

    model_config = ConfigDict(frozen=True)

    url: str


# =============================================================================
# URL construction
# =============================================================================


def parse_organization_url(url: str) -> tuple[str, str | None]:
    """Split a configuration URL into (base_url, organization_id).

    Args:
        url: e.g. https://api.example.com/api/v1/organizations/42/mcp-configs

    Returns:
        (base_url, organization_id). Without an /organizations/ segment the
        organization id is None and a trailing /api/v1/mcp-configs is
        stripped from the base.
    """
    match = _ORG_PATTERN.search(url)
    if match is None:
        return _FLAT_CONFIGS_SUFFIX.sub("", url), None

    api_index = url.find(_ORG_API_SEGMENT)
    base_url = url[:api_index] if api_index != -1 else url[: match.start()]
    return base_url, match.group(1)


def build_remote_url(source_url: str, context: FetchContext | None = None) -> str:
    """Build the remote endpoint for a source URL and optional context.

    Args:
        source_url: Configured (or scoped) remote URL.
        context: Optional task/project context.

    Returns:
        The endpoint to GET.

    Raises:
        ConfigError: If source_url has no organization id.
    """
    base_url, organization_id = parse_organization_url(source_url)
    if organization_id is None:
        raise ConfigError(
            "No organizationId found in config URL. "
            "URL must contain /organizations/:organizationId"
        )

    org_root = f"{base_url}/api/v1/organizations/{organization_id}"
    if context is not None and context.task_id:
        return f"{org_root}/tasks/{context.task_id}/mcp-configs"
    if context is not None and context.project_id:
        return f"{org_root}/projects/{context.project_id}/mcp-configs"
    if source_url.endswith("/mcp-configs"):
        return source_url
    return f"{org_root}/mcp-configs"


# =============================================================================
# Resolver
# =============================================================================


class ConfigResolver:
    """Fetches, validates and merges backend configuration.

    Attributes:
        config_url: Effective remote URL (explicit or from the environment).
        config_file: Local configuration file, if any.
    """

    def __init__(
        self,
        options: ResolverOptions,
        *,
        environ: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            options: Sources, headers, strategy and timings.
            environ: Environment used for fallbacks and interpolation.
            transport: Optional httpx transport (tests use httpx.MockTransport).

        Raises:
            ConfigError: If no source is resolvable.
        """
        self._environ: Mapping[str, str] = os.environ if environ is None else environ
        self._options = options
        self._transport = transport
        self._headers = dict(options.headers)

        self.config_file = options.config_file
        self.config_url = options.config_url
        if not self.config_url and self.config_file is None:
            self.config_url = self._environ.get(ENV_CONFIG_URL) or self._environ.get(
                ENV_PROXY_ENDPOINT
            )

        api_key = self._environ.get(ENV_API_KEY)
        if api_key and API_KEY_HEADER not in self._headers:
            self._headers[API_KEY_HEADER] = api_key

        if not self.config_url and self.config_file is None:
            raise ConfigError(
                "Either a config URL, a config file, "
                f"{ENV_CONFIG_URL}, or {ENV_PROXY_ENDPOINT} must be provided"
            )

        self._cached: ResolvedConfiguration | None = None
        self._cached_at: float = 0.0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def merge_strategy(self) -> MergeStrategy:
        return self._options.merge_strategy

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def initial_scope(self) -> ConfigScope | None:
        """Scope corresponding to the configured URL (None for file-only)."""
        return ConfigScope(url=self.config_url) if self.config_url else None

    def scope_for(self, current: ConfigScope | None, context: FetchContext | None) -> ConfigScope | None:
        """Scope to use after a reload with context.

        A task or project id narrows the scope to that endpoint; anything
        else keeps the current scope.
        """
        if current is None or context is None or not context.narrows_scope:
            return current
        return ConfigScope(url=build_remote_url(current.url, context))

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        context: FetchContext | None = None,
        scope: ConfigScope | None = None,
    ) -> ResolvedConfiguration:
        """Resolve the configuration.

        A successful fetch without context is cached for cache_ttl_seconds;
        fetches with context bypass the cache and do not populate it.

        Args:
            context: Optional task/project/work-unit context.
            scope: Remote scope override; defaults to the configured URL.

        Returns:
            The resolved configuration.

        Raises:
            ConfigError: If any source fails or a payload is invalid.
        """
        if context is not None and context.is_empty:
            context = None

        if context is None and self.is_cache_valid():
            assert self._cached is not None
            return self._cached

        remote_url = scope.url if scope is not None else self.config_url

        if self.config_file is not None and remote_url:
            local, remote = await asyncio.gather(
                asyncio.to_thread(self._load_from_file, self.config_file),
                self._load_from_url(remote_url, context),
            )
            config = merge_configurations(local, remote, self._options.merge_strategy)
        elif self.config_file is not None:
            config = await asyncio.to_thread(self._load_from_file, self.config_file)
        elif remote_url:
            config = await self._load_from_url(remote_url, context)
        else:
            raise ConfigError("No configuration source available")

        if context is None:
            self._cached = config
            self._cached_at = time.monotonic()

        get_system_logger().info(
            {
                "event": "config_fetched",
                "backends": sorted(config.names),
                "context": context.describe() if context else "default",
                "message": f"Resolved configuration with {len(config.backends)} server(s)",
            }
        )
        return config

    def _load_from_file(self, path: Path) -> ResolvedConfiguration:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return parse_raw_config(raw, self._environ)
        except (OSError, json.JSONDecodeError, ConfigError) as e:
            raise ConfigError(f"Failed to load config file: {e}") from e

    async def _load_from_url(
        self, source_url: str, context: FetchContext | None
    ) -> ResolvedConfiguration:
        try:
            url = build_remote_url(source_url, context)
            headers = {"User-Agent": USER_AGENT, **self._headers}
            async with httpx.AsyncClient(
                timeout=self._options.request_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=headers)
            if response.is_error:
                raise ConfigError(
                    f"Failed to fetch MCP configuration: {response.status_code} {response.reason_phrase}"
                )
            return parse_raw_config(response.json(), self._environ)
        except (httpx.HTTPError, json.JSONDecodeError, ConfigError) as e:
            raise ConfigError(f"Failed to fetch MCP configuration from URL: {e}") from e

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    def is_cache_valid(self) -> bool:
        return (
            self._cached is not None
            and time.monotonic() - self._cached_at < self._options.cache_ttl_seconds
        )
