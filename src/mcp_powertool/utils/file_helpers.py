"""Shared file utilities for mcp-powertool.

Provides common utilities used by the credential store, lockfiles and cache:
- get_app_dir: OS-appropriate application directory
- set_secure_permissions: Owner-only file/directory permissions
- canonical_json_hash: SHA-256 over a canonical JSON encoding
- atomic_write_json: temp file + os.replace
"""

from __future__ import annotations

__all__ = [
    "atomic_write_json",
    "canonical_json_hash",
    "get_app_dir",
    "set_secure_permissions",
]

import hashlib
import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import click

from mcp_powertool.constants import APP_NAME


def get_app_dir() -> Path:
    """Get the OS-appropriate application directory.

    Uses click.get_app_dir() which returns:
    - macOS: ~/Library/Application Support/mcp-powertool
    - Linux: ~/.config/mcp-powertool (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\mcp-powertool

    Returns:
        Path to the application directory.
    """
    return Path(click.get_app_dir(APP_NAME))


def set_secure_permissions(path: Path, *, is_directory: bool = False) -> None:
    """Set secure permissions on file or directory.

    Sets permissions to restrict access to owner only:
    - Directory: 0o700 (rwx------)
    - File: 0o600 (rw-------)

    Does nothing on Windows. Silently ignores permission errors.

    Args:
        path: Path to file or directory.
        is_directory: If True, use directory permissions (0o700).
    """
    if sys.platform == "win32":
        return

    try:
        mode = 0o700 if is_directory else 0o600
        path.chmod(mode)
    except OSError:
        pass  # Permission changes might fail on some systems


def canonical_json_hash(value: Any, length: int | None = None) -> str:
    """SHA-256 hex digest of value encoded as canonical JSON.

    Keys are sorted and separators fixed, so two structurally equal values
    hash identically regardless of insertion order.

    Args:
        value: JSON-serializable value.
        length: Optional prefix length of the hex digest.

    Returns:
        Hex digest (optionally truncated).
    """
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
    return digest[:length] if length else digest


def atomic_write_json(path: Path, data: Any, *, secure: bool = True) -> None:
    """Write JSON to path via a sibling temp file and os.replace.

    Args:
        path: Destination file.
        data: JSON-serializable value.
        secure: Apply owner-only permissions to the result.

    Raises:
        OSError: If the write or rename fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        if secure:
            set_secure_permissions(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
