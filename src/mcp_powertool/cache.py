"""File-based TTL cache for backend metadata.

One file per backend under <tempdir>/mcp-powertool-cache, named by the
SHA-256 of the canonical JSON {name, transport, config}, so any change to a
backend's connection configuration starts from an empty entry.

Entry format (timestamps in epoch milliseconds):
    {"data": {...}, "timestamp": 1700000000000, "expiresAt": 1700003600000}

Every failure is logged and swallowed: a broken cache only costs a live
listing.
"""

from __future__ import annotations

__all__ = ["BackendMetadata", "CacheEntry", "CacheService", "CacheStats"]

import json
import tempfile
import time
from pathlib import Path

from mcp import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_powertool.config.models import BackendConfig
from mcp_powertool.constants import CACHE_DIR_NAME, DEFAULT_CACHE_TTL_SECONDS
from mcp_powertool.telemetry.system_logger import get_system_logger
from mcp_powertool.utils.file_helpers import atomic_write_json, canonical_json_hash


class BackendMetadata(BaseModel):
    """Cached listing of one backend."""

    instruction: str | None = None
    tools: list[types.Tool] = Field(default_factory=list)
    resources: list[types.Resource] = Field(default_factory=list)
    prompts: list[types.Prompt] = Field(default_factory=list)


class CacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: BackendMetadata
    timestamp: int
    expires_at: int = Field(alias="expiresAt")


class CacheStats(BaseModel):
    total_entries: int
    total_size: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class CacheService:
    """Reads and writes BackendMetadata entries with a fixed TTL."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        enabled: bool = True,
        cache_dir: Path | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self.cache_dir = cache_dir or Path(tempfile.gettempdir()) / CACHE_DIR_NAME

    @staticmethod
    def cache_key(config: BackendConfig) -> str:
        return canonical_json_hash(
            {
                "name": config.name,
                "transport": config.transport.value,
                "config": config.connection_params.model_dump(mode="json"),
            }
        )

    def _entry_path(self, config: BackendConfig) -> Path:
        return self.cache_dir / f"{self.cache_key(config)}.json"

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def get(self, config: BackendConfig) -> BackendMetadata | None:
        """Fresh entry for a backend, or None (expired/corrupt entries are deleted)."""
        if not self.enabled:
            return None

        path = self._entry_path(config)
        if not path.exists():
            return None

        try:
            entry = CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            get_system_logger().warning(
                {"event": "cache_read_failed", "backend": config.name, "error": str(e)}
            )
            path.unlink(missing_ok=True)
            return None

        now = _now_ms()
        if now >= entry.expires_at:
            path.unlink(missing_ok=True)
            return None

        get_system_logger().info(
            {
                "event": "cache_hit",
                "backend": config.name,
                "message": f"Cache hit for {config.name} (expires in {(entry.expires_at - now) // 1000}s)",
            }
        )
        return entry.data

    def set(self, config: BackendConfig, data: BackendMetadata) -> None:
        """Write (overwrite) the entry for a backend."""
        if not self.enabled:
            return

        now = _now_ms()
        entry = CacheEntry(
            data=data,
            timestamp=now,
            expires_at=now + int(self.ttl_seconds * 1000),
        )
        try:
            atomic_write_json(
                self._entry_path(config),
                entry.model_dump(mode="json", by_alias=True, exclude_none=True),
                secure=False,
            )
        except OSError as e:
            get_system_logger().warning(
                {"event": "cache_write_failed", "backend": config.name, "error": str(e)}
            )

    def clear(self, config: BackendConfig) -> None:
        try:
            self._entry_path(config).unlink(missing_ok=True)
        except OSError as e:
            get_system_logger().warning(
                {"event": "cache_clear_failed", "backend": config.name, "error": str(e)}
            )

    # -------------------------------------------------------------------------
    # Directory-wide operations
    # -------------------------------------------------------------------------

    def _entry_files(self) -> list[Path]:
        if not self.cache_dir.exists():
            return []
        return [p for p in self.cache_dir.iterdir() if p.is_file() and p.suffix == ".json"]

    def clear_all(self) -> int:
        """Delete every entry.

        Returns:
            Number of files removed.
        """
        removed = 0
        for path in self._entry_files():
            try:
                path.unlink()
                removed += 1
            except OSError:
                continue
        return removed

    def clean_expired(self) -> int:
        """Delete expired or unreadable entries.

        Returns:
            Number of files removed.
        """
        now = _now_ms()
        removed = 0
        for path in self._entry_files():
            try:
                expires_at = json.loads(path.read_text(encoding="utf-8"))["expiresAt"]
                if now < int(expires_at):
                    continue
            except (OSError, ValueError, KeyError, TypeError):
                pass
            try:
                path.unlink()
                removed += 1
            except OSError:
                continue
        return removed

    def stats(self) -> CacheStats:
        files = self._entry_files()
        total_size = 0
        for path in files:
            try:
                total_size += path.stat().st_size
            except OSError:
                continue
        return CacheStats(total_entries=len(files), total_size=total_size)
