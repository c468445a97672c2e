"""Per-project credential store.

Stores, per project directory, the remote configuration endpoint and API key
plus per-backend OAuth state (client registration, tokens, PKCE verifier).

Storage: JSON object keyed by absolute project path at
<app dir>/mcp.credentials.json, directory 0o700, file 0o600.

Concurrency: read-modify-write cycles hold an advisory flock on a sibling
.lock file (POSIX only) and the file is replaced atomically, so concurrent
proxy processes for the same user never interleave partial writes.
"""

from __future__ import annotations

__all__ = [
    "CredentialStore",
    "ServerCredentials",
    "StoredCredentials",
]

import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_powertool.constants import CREDENTIALS_FILENAME
from mcp_powertool.telemetry.system_logger import get_system_logger
from mcp_powertool.utils.file_helpers import (
    atomic_write_json,
    get_app_dir,
    set_secure_permissions,
)

if sys.platform != "win32":
    import fcntl


class ServerCredentials(BaseModel):
    """OAuth state for one backend.

    client_info and tokens are kept as the JSON objects the authorization
    server returned so that fields this model does not know survive a
    round trip.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    client_info: dict[str, Any] | None = Field(default=None, alias="clientInfo")
    tokens: dict[str, Any] | None = None
    # Never written here: OAuthClientProvider keeps the PKCE verifier in memory
    # for the duration of one flow. Kept so files other tools wrote round-trip.
    code_verifier: str | None = Field(default=None, alias="codeVerifier")


class StoredCredentials(BaseModel):
    """Everything stored for one project path."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    endpoint: str = ""
    api_key: str = Field(default="", alias="apiKey")
    servers: dict[str, ServerCredentials] | None = None


class CredentialStore:
    """JSON file store of StoredCredentials keyed by project path."""

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: Credentials file; defaults to <app dir>/mcp.credentials.json.
        """
        self._path = path or get_app_dir() / CREDENTIALS_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    @staticmethod
    def _key(project_path: str | Path) -> str:
        return os.path.abspath(os.fspath(project_path))

    # -------------------------------------------------------------------------
    # File access
    # -------------------------------------------------------------------------

    def _ensure_directory(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        set_secure_permissions(self._path.parent, is_directory=True)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold an exclusive advisory lock around a read-modify-write."""
        if sys.platform == "win32":
            yield
            return

        self._ensure_directory()
        lock_path = self._path.with_name(self._path.name + ".lock")
        with open(lock_path, "a") as lock_file:
            set_secure_permissions(lock_path)
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self) -> dict[str, Any]:
        """Load the raw store; missing or unparsable files read as empty."""
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            get_system_logger().warning(
                {
                    "event": "credentials_unreadable",
                    "path": str(self._path),
                    "error": str(e),
                    "message": f"Ignoring unreadable credentials file {self._path}",
                }
            )
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, store: dict[str, Any]) -> None:
        self._ensure_directory()
        atomic_write_json(self._path, store)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get(self, project_path: str | Path) -> StoredCredentials | None:
        """Credentials for a project, or None if absent or malformed."""
        entry = self._load().get(self._key(project_path))
        if entry is None:
            return None
        try:
            return StoredCredentials.model_validate(entry)
        except ValidationError:
            return None

    def has(self, project_path: str | Path) -> bool:
        return self.get(project_path) is not None

    def save(self, project_path: str | Path, credentials: StoredCredentials) -> None:
        """Replace the credentials stored for a project."""
        with self._locked():
            store = self._load()
            store[self._key(project_path)] = credentials.model_dump(by_alias=True, exclude_none=True)
            self._write(store)

    def delete(self, project_path: str | Path) -> None:
        """Remove a project's credentials (no-op when absent)."""
        with self._locked():
            store = self._load()
            if store.pop(self._key(project_path), None) is not None:
                self._write(store)

    def get_server(self, project_path: str | Path, server_name: str) -> ServerCredentials | None:
        """OAuth state stored for one backend of a project."""
        credentials = self.get(project_path)
        if credentials is None or not credentials.servers:
            return None
        return credentials.servers.get(server_name)

    def update_server(self, project_path: str | Path, server_name: str, **fields: Any) -> None:
        """Set fields of one backend's OAuth state, creating entries as needed.

        Args:
            project_path: Project key.
            server_name: Backend name.
            **fields: ServerCredentials fields (client_info, tokens, code_verifier).
        """
        key = self._key(project_path)
        with self._locked():
            store = self._load()
            try:
                credentials = StoredCredentials.model_validate(store.get(key) or {})
            except ValidationError:
                credentials = StoredCredentials()

            servers = dict(credentials.servers or {})
            current = servers.get(server_name) or ServerCredentials()
            servers[server_name] = current.model_copy(update=fields)
            credentials = credentials.model_copy(update={"servers": servers})

            store[key] = credentials.model_dump(by_alias=True, exclude_none=True)
            self._write(store)
