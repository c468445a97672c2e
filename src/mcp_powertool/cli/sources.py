"""Configuration source resolution for CLI commands.

Sources are collected in this order:
1. Environment: AGIFLOW_MCP_CONFIG_URL (or AGIFLOW_MCP_PROXY_ENDPOINT)
   together with AGIFLOW_MCP_API_KEY
2. --config-file (combined with the environment source when both exist;
   the merge strategy decides conflicts)
3. Endpoint and API key saved for the current directory
4. Interactive prompt; the answers are saved for the current directory
"""

from __future__ import annotations

__all__ = ["prompt_credentials", "resolve_sources"]

import os
from collections.abc import Mapping
from pathlib import Path

import click

from mcp_powertool.config.merge import MergeStrategy
from mcp_powertool.config.resolver import ResolverOptions
from mcp_powertool.constants import API_KEY_HEADER, ENV_API_KEY, ENV_CONFIG_URL, ENV_PROXY_ENDPOINT
from mcp_powertool.exceptions import ConfigError
from mcp_powertool.security.credentials import CredentialStore, StoredCredentials

from .styling import style_label, style_success


def _is_valid_http_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def _prompt_required(prompt_text: str, *, url: bool = False) -> str:
    """Prompt until a non-empty (and, for URLs, http/https) value is given."""
    while True:
        value: str = click.prompt(prompt_text, type=str, default="", show_default=False, err=True)
        value = value.strip()
        if not value:
            click.echo("  This field is required.", err=True)
        elif url and not _is_valid_http_url(value):
            click.echo("  Please enter a valid http:// or https:// URL.", err=True)
        else:
            return value


def prompt_credentials(store: CredentialStore, project_path: str | Path) -> StoredCredentials:
    """Ask for the proxy endpoint and API key and save them."""
    click.echo(err=True)
    click.echo(style_label("MCP proxy authentication"), err=True)
    click.echo("  Copy your MCP proxy endpoint and API key from your account settings.", err=True)
    click.echo(err=True)

    credentials = StoredCredentials(
        endpoint=_prompt_required("MCP proxy endpoint URL", url=True),
        api_key=_prompt_required("API key"),
    )
    store.save(project_path, credentials)
    click.echo(style_success(f"Credentials saved to: {store.path}"), err=True)
    return credentials


def resolve_sources(
    *,
    config_file: Path | None,
    merge_strategy: MergeStrategy,
    store: CredentialStore,
    project_path: str | Path,
    environ: Mapping[str, str] | None = None,
    interactive: bool = True,
) -> ResolverOptions:
    """Build resolver options from the environment, flags and saved credentials.

    Args:
        config_file: Local configuration file from --config-file.
        merge_strategy: Strategy used when a file and a URL are both present.
        store: Credential store holding saved endpoints.
        project_path: Key for saved credentials (usually the cwd).
        environ: Environment to read (default: os.environ).
        interactive: Prompt when nothing else is configured.

    Raises:
        ConfigError: If no source exists and prompting is disabled.
    """
    env = os.environ if environ is None else environ
    endpoint = env.get(ENV_CONFIG_URL) or env.get(ENV_PROXY_ENDPOINT)
    api_key = env.get(ENV_API_KEY)

    if (endpoint and api_key) or config_file is not None:
        use_env = bool(endpoint and api_key)
        return ResolverOptions(
            config_url=endpoint if use_env else None,
            config_file=config_file.resolve() if config_file is not None else None,
            headers={API_KEY_HEADER: api_key} if use_env and api_key else {},
            merge_strategy=merge_strategy,
        )

    saved = store.get(project_path)
    if saved is None or not saved.endpoint:
        if not interactive:
            raise ConfigError(
                f"No configuration source. Set {ENV_PROXY_ENDPOINT} and {ENV_API_KEY}, "
                "or pass --config-file"
            )
        saved = prompt_credentials(store, project_path)

    return ResolverOptions(
        config_url=saved.endpoint,
        headers={API_KEY_HEADER: saved.api_key} if saved.api_key else {},
        merge_strategy=merge_strategy,
    )
