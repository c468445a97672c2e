"""Backend configuration: schema, interpolation, merging and resolution."""

from mcp_powertool.config.merge import MergeStrategy, merge_configurations
from mcp_powertool.config.models import (
    BackendConfig,
    HttpParams,
    ResolvedConfiguration,
    StdioParams,
    TransportKind,
    parse_raw_config,
)
from mcp_powertool.config.resolver import (
    ConfigResolver,
    ConfigScope,
    FetchContext,
    ResolverOptions,
    build_remote_url,
)

__all__ = [
    "BackendConfig",
    "ConfigResolver",
    "ConfigScope",
    "FetchContext",
    "HttpParams",
    "MergeStrategy",
    "ResolvedConfiguration",
    "ResolverOptions",
    "StdioParams",
    "TransportKind",
    "build_remote_url",
    "merge_configurations",
    "parse_raw_config",
]
