"""Configuration models.

Two shapes are modelled here:

Raw (agent-facing) schema, as written in .mcp.json files and served by the
remote endpoint::

    {"mcpServers": {
        "<name>": {"command": ..., "args": [...], "env": {...}, "disabled": false},
        "<name>": {"url": ..., "headers": {...}, "type": "http" | "sse"}
    }}

Internal schema: a ResolvedConfiguration mapping each backend name to a
BackendConfig whose connection parameters are a tagged union keyed by
transport kind.
"""

from __future__ import annotations

__all__ = [
    "BackendConfig",
    "HttpParams",
    "RawConfigFile",
    "RawHttpServer",
    "RawStdioServer",
    "ResolvedConfiguration",
    "StdioParams",
    "TransportKind",
    "TransportParams",
    "parse_raw_config",
]

import re
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from mcp_powertool.config.interpolation import interpolate, interpolate_mapping
from mcp_powertool.exceptions import ConfigError

_HTTP_URL = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)


# =============================================================================
# Raw (agent-facing) schema
# =============================================================================


class RawStdioServer(BaseModel):
    """Local process backend entry."""

    model_config = ConfigDict(extra="ignore")

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    disabled: bool = False
    instruction: str | None = None


class RawHttpServer(BaseModel):
    """Remote backend entry (streamable HTTP or SSE)."""

    model_config = ConfigDict(extra="ignore")

    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    type: Literal["http", "sse"] | None = None
    disabled: bool = False
    instruction: str | None = None


class RawConfigFile(BaseModel):
    """Top-level raw configuration document."""

    model_config = ConfigDict(extra="ignore")

    mcpServers: dict[str, RawStdioServer | RawHttpServer]


# =============================================================================
# Internal schema
# =============================================================================


class TransportKind(str, Enum):
    """How the proxy talks to a backend."""

    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"


class StdioParams(BaseModel):
    """Connection parameters for a spawned backend process."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["stdio"] = "stdio"
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class HttpParams(BaseModel):
    """Connection parameters for an HTTP or SSE backend."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["http"] = "http"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)


TransportParams = Annotated[StdioParams | HttpParams, Field(discriminator="kind")]


class BackendConfig(BaseModel):
    """One resolved backend.

    The transport decides which connection parameter variant is present:
    stdio -> StdioParams, http/sse -> HttpParams.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    transport: TransportKind
    instruction: str | None = None
    connection_params: TransportParams

    @model_validator(mode="after")
    def _params_match_transport(self) -> BackendConfig:
        expects_stdio = self.transport is TransportKind.STDIO
        if expects_stdio != isinstance(self.connection_params, StdioParams):
            raise ValueError(
                f"transport '{self.transport.value}' does not match "
                f"connection params of kind '{self.connection_params.kind}'"
            )
        return self

    def to_raw(self) -> dict[str, Any]:
        """Render this backend in the agent-facing schema."""
        params = self.connection_params
        raw: dict[str, Any]
        if isinstance(params, StdioParams):
            raw = {"command": params.command, "args": list(params.args), "env": dict(params.env)}
        else:
            raw = {"url": params.url, "headers": dict(params.headers), "type": self.transport.value}
        if self.instruction is not None:
            raw["instruction"] = self.instruction
        return raw


class ResolvedConfiguration(BaseModel):
    """The full set of backends produced by one fetch.

    Created fresh on every fetch and replaced wholesale on reload.
    """

    model_config = ConfigDict(frozen=True)

    backends: dict[str, BackendConfig] = Field(default_factory=dict)

    @property
    def names(self) -> set[str]:
        return set(self.backends)

    def to_raw(self) -> dict[str, Any]:
        """Render in the agent-facing schema; parse_raw_config() accepts the result."""
        return {"mcpServers": {name: backend.to_raw() for name, backend in self.backends.items()}}


# =============================================================================
# Parsing
# =============================================================================


def _to_backend(
    name: str, entry: RawStdioServer | RawHttpServer, environ: Mapping[str, str] | None
) -> BackendConfig:
    if isinstance(entry, RawStdioServer):
        return BackendConfig(
            name=name,
            transport=TransportKind.STDIO,
            instruction=entry.instruction,
            connection_params=StdioParams(
                command=interpolate(entry.command, environ),
                args=[interpolate(arg, environ) for arg in entry.args],
                env=interpolate_mapping(entry.env, environ),
            ),
        )

    url = interpolate(entry.url, environ)
    if not _HTTP_URL.match(url):
        raise ConfigError(f"Invalid URL for server '{name}': {url}")
    return BackendConfig(
        name=name,
        transport=TransportKind.SSE if entry.type == "sse" else TransportKind.HTTP,
        instruction=entry.instruction,
        connection_params=HttpParams(url=url, headers=interpolate_mapping(entry.headers, environ)),
    )


def parse_raw_config(
    raw: Any, environ: Mapping[str, str] | None = None
) -> ResolvedConfiguration:
    """Validate a raw configuration document and transform it to the internal shape.

    Disabled entries are dropped. ${VAR} tokens in command, args, env values,
    url and header values are resolved against environ (default os.environ).

    Args:
        raw: Decoded JSON document.
        environ: Variable source for interpolation.

    Returns:
        The resolved configuration.

    Raises:
        ConfigError: If the document violates the schema.
    """
    try:
        document = RawConfigFile.model_validate(raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid MCP configuration: {errors}") from e

    backends = {
        name: _to_backend(name, entry, environ)
        for name, entry in document.mcpServers.items()
        if not entry.disabled
    }
    return ResolvedConfiguration(backends=backends)
