"""Synchronization engine for the shared dataset."""

from taskflow.sync.engine import SyncEngine, SyncHealth, SyncSetupError, SyncState, SyncStatus

__all__ = ["SyncEngine", "SyncHealth", "SyncSetupError", "SyncState", "SyncStatus"]
