"""Cache command group for mcp-powertool CLI.

Manage the on-disk backend metadata cache used by mcp-serve --cache.
"""

from __future__ import annotations

__all__ = ["cache"]

import json

import click

from mcp_powertool.cache import CacheService

from ..styling import style_dim, style_label, style_success


@click.group()
def cache() -> None:
    """Backend metadata cache management."""
    pass


@cache.command("clear")
@click.option("--expired", is_flag=True, help="Only remove expired entries")
def cache_clear(expired: bool) -> None:
    """Remove cached backend listings."""
    service = CacheService()
    removed = service.clean_expired() if expired else service.clear_all()
    if removed == 0:
        click.echo(style_dim("Nothing to remove."))
    else:
        click.echo(style_success(f"Removed {removed} cache entr{'y' if removed == 1 else 'ies'}"))


@cache.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def cache_stats(as_json: bool) -> None:
    """Show the number and total size of cache entries."""
    service = CacheService()
    stats = service.stats()
    if as_json:
        click.echo(json.dumps({"directory": str(service.cache_dir), **stats.model_dump()}, indent=2))
        return
    click.echo(style_label("Directory") + f" {service.cache_dir}")
    click.echo(style_label("Entries") + f" {stats.total_entries}")
    click.echo(style_label("Size") + f" {stats.total_size} bytes")
