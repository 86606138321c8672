"""Utility modules for TaskFlow."""

from taskflow.utils.logging import get_logger, setup_logging
from taskflow.utils.storage import StorageManager

__all__ = ["get_logger", "setup_logging", "StorageManager"]
