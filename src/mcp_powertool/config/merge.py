"""Merge strategies for combining a local and a remote configuration."""

from __future__ import annotations

__all__ = ["MergeStrategy", "merge_configurations"]

from enum import Enum

from mcp_powertool.config.models import (
    BackendConfig,
    HttpParams,
    ResolvedConfiguration,
    StdioParams,
)


class MergeStrategy(str, Enum):
    """How same-named backends from local and remote sources are combined."""

    LOCAL_PRIORITY = "local-priority"
    REMOTE_PRIORITY = "remote-priority"
    MERGE_DEEP = "merge-deep"


def _merge_deep(local: BackendConfig, remote: BackendConfig) -> BackendConfig:
    """Merge one backend present on both sides, local winning on conflicts.

    Connection fields are merged key by key; env and headers are merged per
    key instead of replaced. Entries whose transports use different parameter
    variants cannot be combined, so the local entry is taken as is.
    """
    lp, rp = local.connection_params, remote.connection_params
    instruction = local.instruction if local.instruction is not None else remote.instruction

    if isinstance(lp, StdioParams) and isinstance(rp, StdioParams):
        params: StdioParams | HttpParams = StdioParams(
            command=lp.command,
            args=lp.args if lp.args else rp.args,
            env={**rp.env, **lp.env},
        )
    elif isinstance(lp, HttpParams) and isinstance(rp, HttpParams):
        params = HttpParams(url=lp.url, headers={**rp.headers, **lp.headers})
    else:
        return local

    return BackendConfig(
        name=local.name,
        transport=local.transport,
        instruction=instruction,
        connection_params=params,
    )


def merge_configurations(
    local: ResolvedConfiguration,
    remote: ResolvedConfiguration,
    strategy: MergeStrategy = MergeStrategy.LOCAL_PRIORITY,
) -> ResolvedConfiguration:
    """Combine local and remote configurations.

    Non-conflicting names from both sides are always kept. For a name on
    both sides:
    - local-priority: the local entry replaces the remote one
    - remote-priority: the remote entry replaces the local one
    - merge-deep: see _merge_deep

    Args:
        local: Configuration from the local file.
        remote: Configuration from the remote endpoint.
        strategy: Conflict resolution strategy.

    Returns:
        A new ResolvedConfiguration.
    """
    if strategy is MergeStrategy.REMOTE_PRIORITY:
        return ResolvedConfiguration(backends={**local.backends, **remote.backends})
    if strategy is MergeStrategy.LOCAL_PRIORITY:
        return ResolvedConfiguration(backends={**remote.backends, **local.backends})

    merged = {**remote.backends, **local.backends}
    for name in local.names & remote.names:
        merged[name] = _merge_deep(local.backends[name], remote.backends[name])
    return ResolvedConfiguration(backends=merged)
