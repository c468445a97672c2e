"""Cross-process OAuth lockfiles.

A proxy process that starts an OAuth flow for a backend URL records
{pid, port, timestamp, serverUrl} in <app dir>/locks/<hash>.lock.json, where
<hash> is the first 16 hex digits of SHA-256(url). Other processes can see
that a flow is already running for that URL.

A lock is live only when all of the following hold:
- it is younger than LOCKFILE_MAX_AGE_SECONDS
- its pid still exists (signal 0 check)
- the recorded callback port answers HTTP

Anything else is stale and removed on check. All lockfile I/O is best
effort: failures are logged and reported as LockfileError to callers that
choose to care.
"""

from __future__ import annotations

__all__ = ["LockfileCoordinator", "LockfileData"]

import atexit
import hashlib
import json
import os
import time
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_powertool.constants import (
    LOCK_DIR_NAME,
    LOCK_CHECK_TIMEOUT_SECONDS,
    LOCKFILE_MAX_AGE_SECONDS,
)
from mcp_powertool.exceptions import LockfileError
from mcp_powertool.telemetry.system_logger import get_system_logger
from mcp_powertool.utils.file_helpers import atomic_write_json, get_app_dir, set_secure_permissions


class LockfileData(BaseModel):
    """Contents of one lockfile (timestamp in epoch milliseconds)."""

    model_config = ConfigDict(populate_by_name=True)

    pid: int
    port: int
    timestamp: int
    server_url: str = Field(alias="serverUrl")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by someone else
    except OSError:
        return False
    return True


class LockfileCoordinator:
    """Creates, inspects and cleans up OAuth lockfiles."""

    def __init__(
        self,
        lock_dir: Path | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            lock_dir: Lock directory; defaults to <app dir>/locks.
            transport: Optional httpx transport for the liveness check (tests).
        """
        self.lock_dir = lock_dir or get_app_dir() / LOCK_DIR_NAME
        self._transport = transport
        self._owned: set[str] = set()
        self._atexit_registered = False

    @staticmethod
    def url_hash(server_url: str) -> str:
        return hashlib.sha256(server_url.encode("utf-8")).hexdigest()[:16]

    def lockfile_path(self, url_hash: str) -> Path:
        return self.lock_dir / f"{url_hash}.lock.json"

    # -------------------------------------------------------------------------
    # File operations
    # -------------------------------------------------------------------------

    def create(self, server_url: str, port: int) -> str:
        """Record that this process is running an OAuth flow for server_url.

        The lockfile is removed again at interpreter exit.

        Returns:
            The URL hash identifying the lockfile.

        Raises:
            LockfileError: If the file cannot be written.
        """
        url_hash = self.url_hash(server_url)
        data = LockfileData(
            pid=os.getpid(),
            port=port,
            timestamp=int(time.time() * 1000),
            server_url=server_url,
        )
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            set_secure_permissions(self.lock_dir, is_directory=True)
            atomic_write_json(self.lockfile_path(url_hash), data.model_dump(by_alias=True))
        except OSError as e:
            raise LockfileError(f"Failed to write lockfile for {server_url}: {e}") from e

        self._owned.add(url_hash)
        if not self._atexit_registered:
            atexit.register(self.release_all)
            self._atexit_registered = True
        return url_hash

    def read(self, url_hash: str) -> LockfileData | None:
        """Read a lockfile; missing or malformed files read as None."""
        path = self.lockfile_path(url_hash)
        try:
            return LockfileData.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError):
            return None

    def delete(self, url_hash: str) -> None:
        """Remove a lockfile (missing files are fine).

        Raises:
            LockfileError: If the file exists but cannot be removed.
        """
        self._owned.discard(url_hash)
        try:
            self.lockfile_path(url_hash).unlink(missing_ok=True)
        except OSError as e:
            raise LockfileError(f"Failed to delete lockfile {url_hash}: {e}") from e

    def release_all(self) -> None:
        """Delete every lockfile this process created (exit hook)."""
        for url_hash in list(self._owned):
            try:
                self.delete(url_hash)
            except LockfileError as e:
                get_system_logger().warning(
                    {"event": "lockfile_cleanup_failed", "lock": url_hash, "error": str(e)}
                )

    # -------------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------------

    def is_valid(self, data: LockfileData) -> bool:
        """Age and pid check (no network)."""
        age_ms = int(time.time() * 1000) - data.timestamp
        if age_ms > LOCKFILE_MAX_AGE_SECONDS * 1000:
            return False
        return _pid_alive(data.pid)

    async def is_endpoint_accessible(self, port: int) -> bool:
        """Whether a callback server answers on 127.0.0.1:port.

        Any answer from the coordination endpoint counts; without a session
        id it replies 400, which still proves the server is up.
        """
        try:
            async with httpx.AsyncClient(
                timeout=LOCK_CHECK_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.get(
                    f"http://127.0.0.1:{port}/wait-for-auth", params={"poll": "false"}
                )
        except httpx.HTTPError:
            return False
        return response.status_code in (200, 202, 400, 404)

    async def check(self, server_url: str) -> LockfileData | None:
        """Return the live lock for server_url, removing it if stale."""
        url_hash = self.url_hash(server_url)
        data = self.read(url_hash)
        if data is None:
            return None

        if self.is_valid(data) and await self.is_endpoint_accessible(data.port):
            return data

        get_system_logger().info(
            {
                "event": "lockfile_stale_removed",
                "server_url": server_url,
                "pid": data.pid,
                "message": f"Removing stale OAuth lockfile for {server_url}",
            }
        )
        try:
            self.delete(url_hash)
        except LockfileError as e:
            get_system_logger().warning({"event": "lockfile_cleanup_failed", "error": str(e)})
        return None
