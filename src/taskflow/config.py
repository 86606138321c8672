"""Configuration management for TaskFlow."""

from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from taskflow.utils.storage import StorageManager

DEFAULT_REMOTE_URL = "https://jsonblob.com/api/jsonBlob"


class Settings(BaseModel):
    """User-editable application settings."""

    remote_url: str = DEFAULT_REMOTE_URL
    timezone: str = "UTC"
    poll_interval: float = Field(default=15.0, gt=0)
    debounce_interval: float = Field(default=2.5, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {value}") from e
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        """Zone used for every business-hours calculation."""
        return ZoneInfo(self.timezone)


class Config:
    """Manages application settings."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize configuration.

        Args:
            config_dir: Directory for storing configuration.
        """
        self.storage = StorageManager(config_dir)
        self._settings = Settings(**self.storage.load_config())

    @property
    def settings(self) -> Settings:
        """Current settings."""
        return self._settings

    def update(self, **changes: Any) -> Settings:
        """Validate and persist changed settings.

        Args:
            **changes: Settings fields to change.

        Returns:
            The new settings.

        Raises:
            pydantic.ValidationError: If a value is invalid; nothing is saved.
        """
        merged = {**self._settings.model_dump(), **changes}
        self._settings = Settings(**merged)
        self.storage.save_config(self._settings.model_dump())
        return self._settings
