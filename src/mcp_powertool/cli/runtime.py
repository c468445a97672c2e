"""Shared wiring for CLI commands.

Builds the resolver, connection manager and proxy core from command-line
options, and provides the common --config-file/--merge-strategy options.
"""

from __future__ import annotations

__all__ = [
    "build_proxy",
    "connected_proxy",
    "source_options",
]

import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

import click

from mcp_powertool.backends.manager import BackendConnectionManager
from mcp_powertool.cache import CacheService
from mcp_powertool.config.merge import MergeStrategy
from mcp_powertool.config.resolver import ConfigResolver
from mcp_powertool.security.credentials import CredentialStore
from mcp_powertool.security.lockfile import LockfileCoordinator
from mcp_powertool.server.proxy import ProxyOptions, ProxyServer

from .sources import resolve_sources

F = TypeVar("F", bound=Callable[..., Any])


def source_options(func: F) -> F:
    """Attach --config-file and --merge-strategy to a command."""
    func = click.option(
        "--merge-strategy",
        type=click.Choice([s.value for s in MergeStrategy]),
        default=MergeStrategy.LOCAL_PRIORITY.value,
        show_default=True,
        help="How to merge a local file with the remote configuration",
    )(func)
    func = click.option(
        "--config-file",
        "-f",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="Path to a local MCP configuration file",
    )(func)
    return func


def build_proxy(
    *,
    config_file: Path | None,
    merge_strategy: str,
    use_server_prefix: bool = True,
    progressive: bool = False,
    use_cache: bool = False,
    interactive: bool = True,
) -> ProxyServer:
    """Create an unstarted ProxyServer for the current directory.

    Raises:
        ConfigError: If no configuration source can be found.
    """
    project_path = os.getcwd()
    store = CredentialStore()
    options = resolve_sources(
        config_file=config_file,
        merge_strategy=MergeStrategy(merge_strategy),
        store=store,
        project_path=project_path,
        interactive=interactive,
    )
    manager = BackendConnectionManager(
        credential_store=store,
        lockfile=LockfileCoordinator(),
        project_path=project_path,
    )
    return ProxyServer(
        ConfigResolver(options),
        manager,
        ProxyOptions(use_server_prefix=use_server_prefix, progressive=progressive),
        cache=CacheService() if use_cache else None,
    )


@asynccontextmanager
async def connected_proxy(proxy: ProxyServer) -> AsyncIterator[ProxyServer]:
    """Connect every backend for the duration of one command."""
    await proxy.start()
    try:
        yield proxy
    finally:
        await proxy.manager.disconnect_all()
