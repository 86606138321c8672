"""Local durable storage for TaskFlow: settings file and offline cache."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from taskflow.utils.logging import DEFAULT_CONFIG_DIR

SNAPSHOT_KEY = "snapshot"
SYNC_ID_KEY = "sync_id"
LAST_SYNC_KEY = "last_sync_date"
HEALTH_KEY = "sync_health"
LAST_ERROR_KEY = "last_sync_error"

logger = logging.getLogger(__name__)


class StorageManager:
    """Manages the settings file and the local key-value cache."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize storage manager.

        Args:
            config_dir: Directory to store configuration. Defaults to ~/.taskflow/
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.config_file = self.config_dir / "config.yaml"
        self.cache_file = self.config_dir / "cache.json"

    def load_config(self) -> dict[str, Any]:
        """Load application settings.

        Returns:
            Settings dictionary, empty if nothing was saved yet.
        """
        if self.config_file.exists():
            with open(self.config_file) as f:
                return yaml.safe_load(f) or {}
        return {}

    def save_config(self, config: dict[str, Any]) -> None:
        """Save application settings.

        Args:
            config: Settings to save.
        """
        with open(self.config_file, "w") as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    def load_cache(self) -> dict[str, Any]:
        """Load the whole local cache.

        Returns:
            Cache dictionary with snapshot, sync identifier and last sync
            marker. An unreadable cache file is treated as empty.
        """
        if not self.cache_file.exists():
            return {}
        try:
            with open(self.cache_file, encoding="utf-8") as f:
                cache = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache file {self.cache_file}: {e}")
            return {}
        if not isinstance(cache, dict):
            logger.warning(f"Ignoring cache file {self.cache_file}: not a JSON object")
            return {}
        return cache

    def save_cache(self, cache: dict[str, Any]) -> None:
        """Write the whole local cache.

        The file is replaced atomically so a crash mid-write never leaves
        a truncated snapshot behind.

        Args:
            cache: Cache dictionary to save.
        """
        tmp_file = self.cache_file.with_suffix(".json.tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(cache, f, indent=2)
        tmp_file.replace(self.cache_file)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a cached value by key."""
        return self.load_cache().get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a cached value; ``None`` removes the key."""
        cache = self.load_cache()
        if value is None:
            cache.pop(key, None)
        else:
            cache[key] = value
        self.save_cache(cache)

    def load_snapshot(self) -> dict[str, Any] | None:
        """Get the cached snapshot document, if any."""
        return self.get(SNAPSHOT_KEY)

    def save_snapshot(self, document: dict[str, Any]) -> None:
        """Persist a snapshot document."""
        self.set(SNAPSHOT_KEY, document)

    def get_sync_id(self) -> str | None:
        """Get the configured sync identifier."""
        return self.get(SYNC_ID_KEY)

    def set_sync_id(self, sync_id: str | None) -> None:
        """Set or clear the sync identifier."""
        self.set(SYNC_ID_KEY, sync_id)

    def get_last_sync_date(self) -> datetime | None:
        """Get the date of the last successful synchronization.

        Returns:
            Last sync datetime or None if never synced.
        """
        value = self.get(LAST_SYNC_KEY)
        if value:
            return datetime.fromisoformat(value)
        return None

    def set_last_sync_date(self, date: datetime) -> None:
        """Set the last successful synchronization date.

        Args:
            date: The synchronization datetime.
        """
        self.set(LAST_SYNC_KEY, date.isoformat())

    def get_sync_health(self) -> tuple[str | None, str | None]:
        """Get the outcome of the last remote operation.

        Returns:
            Health value and the error message recorded with it.
        """
        cache = self.load_cache()
        return cache.get(HEALTH_KEY), cache.get(LAST_ERROR_KEY)

    def set_sync_health(self, health: str | None, error: str | None = None) -> None:
        """Record the outcome of the last remote operation; ``None`` clears it."""
        cache = self.load_cache()
        for key, value in ((HEALTH_KEY, health), (LAST_ERROR_KEY, error)):
            if value is None:
                cache.pop(key, None)
            else:
                cache[key] = value
        self.save_cache(cache)
