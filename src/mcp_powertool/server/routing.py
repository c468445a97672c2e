"""Name prefixing and capability snapshots.

Prefix conventions when prefixing is enabled:
    tools, prompts: <backend>/<name>    (split on the first "/")
    resources:      <backend>://<uri>
"""

from __future__ import annotations

__all__ = [
    "CapabilitySnapshot",
    "capture_snapshot",
    "prefix_name",
    "prefix_uri",
    "split_prefixed_name",
    "split_prefixed_uri",
]

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any

from mcp_powertool.constants import PREFIX_SEPARATOR, URI_PREFIX_SEPARATOR
from mcp_powertool.backends.catalog import BackendCatalog

_PREFIXED_URI = re.compile(r"^([^:]+)://(.+)$")


def prefix_name(backend: str, name: str) -> str:
    return f"{backend}{PREFIX_SEPARATOR}{name}"


def split_prefixed_name(value: str) -> tuple[str, str] | None:
    """Split "<backend>/<name>" on the first separator; None if absent."""
    backend, sep, name = value.partition(PREFIX_SEPARATOR)
    if not sep or not backend or not name:
        return None
    return backend, name


def prefix_uri(backend: str, uri: str) -> str:
    return f"{backend}{URI_PREFIX_SEPARATOR}{uri}"


def split_prefixed_uri(value: str) -> tuple[str, str] | None:
    match = _PREFIXED_URI.match(value)
    if match is None:
        return None
    return match.group(1), match.group(2)


# =============================================================================
# Snapshots
# =============================================================================

# (backend, stable key, JSON-mode dump) sorted by (backend, key)
_Entries = list[tuple[str, str, dict[str, Any]]]


@dataclass
class CapabilitySnapshot:
    """Canonical view of every backend's capabilities at one moment.

    Entries are sorted by (backend, stable key) and compared structurally,
    so ordering differences between listings never count as a change.
    """

    backends: frozenset[str] = frozenset()
    tools: _Entries = field(default_factory=list)
    resources: _Entries = field(default_factory=list)
    prompts: _Entries = field(default_factory=list)

    def changed_kinds(self, other: CapabilitySnapshot) -> dict[str, bool]:
        return {
            "tools": self.tools != other.tools,
            "resources": self.resources != other.resources,
            "prompts": self.prompts != other.prompts,
        }


def _canonical(backend: str, items: list[Any], key_attr: str) -> _Entries:
    return [
        (backend, str(getattr(item, key_attr)), item.model_dump(mode="json", exclude_none=True))
        for item in items
    ]


async def capture_snapshot(catalog: BackendCatalog) -> CapabilitySnapshot:
    """Snapshot every connected backend; a failing listing counts as empty."""
    connections = catalog.manager.get_all_clients()
    metadata = await asyncio.gather(
        *(catalog.metadata(conn, tolerate_errors=True) for conn in connections)
    )

    tools: _Entries = []
    resources: _Entries = []
    prompts: _Entries = []
    for conn, meta in zip(connections, metadata):
        tools.extend(_canonical(conn.name, meta.tools, "name"))
        resources.extend(_canonical(conn.name, meta.resources, "uri"))
        prompts.extend(_canonical(conn.name, meta.prompts, "name"))

    def sort_key(entry: tuple[str, str, dict[str, Any]]) -> tuple[str, str]:
        return entry[0], entry[1]

    return CapabilitySnapshot(
        backends=frozenset(conn.name for conn in connections),
        tools=sorted(tools, key=sort_key),
        resources=sorted(resources, key=sort_key),
        prompts=sorted(prompts, key=sort_key),
    )
