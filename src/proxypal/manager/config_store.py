"""Owner of the persisted configuration document.

ConfigStore holds the one in-memory copy of the document and the file it
is persisted to. Its contract:
- load(): never fails. Missing file -> defaults; malformed content ->
  defaults with a warning. Migration runs before returning and a migrated
  document is written back immediately.
- save(): atomic write; raises PersistenceError. Does not touch the
  in-memory copy.
- commit(): replaces the in-memory copy. Callers commit only after a
  successful save, so a failed save leaves prior state intact.
- get(): deep copy; callers can never mutate shared state through it.

The lock guards only the in-memory reference; no I/O happens under it.

Example usage:
    store = ConfigStore()
    config = store.load()

    updated = config.model_copy(update={"port": 8765})
    store.save(updated)
    store.commit(updated)
"""

from __future__ import annotations

__all__ = ["ConfigStore"]

import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from proxypal.config import AppConfig, get_config_path
from proxypal.constants import APP_NAME, LEGACY_CONFIG_VERSION
from proxypal.exceptions import PersistenceError
from proxypal.manager.migration import migrate_config
from proxypal.utils.file_helpers import atomic_write_json

_logger = logging.getLogger(f"{APP_NAME}.manager.config_store")


class ConfigStore:
    """Loads, migrates, persists, and serves the configuration document."""

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: Document location. Defaults to the per-user config path.
        """
        self._path = path or get_config_path()
        self._config = AppConfig()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """Location of the persisted document."""
        return self._path

    def get(self) -> AppConfig:
        """Return a deep copy of the current document."""
        with self._lock:
            return self._config.model_copy(deep=True)

    def commit(self, config: AppConfig) -> None:
        """Replace the in-memory document (after a successful save)."""
        snapshot = config.model_copy(deep=True)
        with self._lock:
            self._config = snapshot

    def load(self) -> AppConfig:
        """Read, migrate, and commit the document from disk.

        Returns:
            Deep copy of the loaded (or default) document.
        """
        config = self._read()

        result = migrate_config(config)
        if result.changed:
            config = result.config
            _logger.info(
                {
                    "event": "config_migrated",
                    "message": f"Migrated configuration: {', '.join(result.steps)}",
                    "details": {"config_path": str(self._path), "steps": list(result.steps)},
                }
            )
            try:
                self.save(config)
            except PersistenceError as e:
                # Migration is re-applied next load; startup must not fail here
                _logger.warning(
                    {
                        "event": "config_migration_save_failed",
                        "message": f"Failed to persist migrated configuration: {e}",
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                        "details": {"config_path": str(self._path)},
                    }
                )

        self.commit(config)
        return config.model_copy(deep=True)

    def save(self, config: AppConfig) -> None:
        """Persist a document atomically.

        Args:
            config: Document to write.

        Raises:
            PersistenceError: If the document cannot be written.
        """
        try:
            atomic_write_json(self._path, config.to_document(), prefix=".config_")
        except OSError as e:
            raise PersistenceError(f"Failed to save configuration to {self._path}: {e}") from e

        _logger.debug(
            {
                "event": "config_saved",
                "message": f"Configuration saved to {self._path}",
                "details": {"config_path": str(self._path)},
            }
        )

    def _read(self) -> AppConfig:
        """Read and validate the file, degrading to defaults on any problem."""
        if not self._path.exists():
            return AppConfig()

        try:
            with self._path.open(encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            # Documents from before schema versioning carry no version
            data.setdefault("configVersion", LEGACY_CONFIG_VERSION)
            return AppConfig.model_validate(data)
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
            # ValidationError is a ValueError subclass
            event = "config_validation_failed" if isinstance(e, ValidationError) else "config_invalid_json"
            _logger.warning(
                {
                    "event": event,
                    "message": f"Invalid configuration, using defaults: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"config_path": str(self._path)},
                }
            )
        except OSError as e:
            # Covers all file I/O errors including PermissionError (subclass of OSError)
            _logger.warning(
                {
                    "event": "config_read_failed",
                    "message": f"Failed to read configuration file, using defaults: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"config_path": str(self._path)},
                }
            )
        return AppConfig()
