"""Shared file utilities for proxypal.

Provides:
- get_app_dir: per-user application directory
- set_secure_permissions: Owner-only file/directory permissions
- atomic_write_json: Write-full-then-replace JSON persistence
"""

from __future__ import annotations

__all__ = [
    "atomic_write_json",
    "get_app_dir",
    "set_secure_permissions",
]

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import click

from proxypal.constants import APP_NAME


def get_app_dir() -> Path:
    """Per-user directory holding config.json and the proxy's runtime config.

    click.get_app_dir() follows platform conventions
    (~/.config/proxypal on Linux, ~/Library/Application Support/proxypal
    on macOS, %APPDATA%\\proxypal on Windows).
    """
    return Path(click.get_app_dir(APP_NAME))


def set_secure_permissions(path: Path, *, is_directory: bool = False) -> None:
    """Restrict path to its owner: 0o700 for directories, 0o600 for files.

    No-op on Windows. Failures (missing path, foreign owner) are ignored.
    """
    if sys.platform == "win32":
        return
    try:
        path.chmod(0o700 if is_directory else 0o600)
    except OSError:
        pass


def atomic_write_json(path: Path, data: Any, *, prefix: str = ".tmp_") -> None:
    """Write JSON to path atomically.

    Writes to a temp file in the same directory, fsyncs, then renames
    over the target so readers never observe a partial document.

    Creates parent directories if they don't exist.

    Args:
        path: Destination file.
        data: JSON-serializable data.
        prefix: Temp file name prefix.

    Raises:
        OSError: If the directory, temp file, or rename fails.
        TypeError: If data is not JSON-serializable.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(path.parent, is_directory=True)

    content = json.dumps(data, indent=2) + "\n"

    # Same directory ensures rename is atomic (same filesystem)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=prefix, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)

    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
