"""Backup export and import.

A backup is a JSON file holding the full snapshot plus, optionally, the
sync identifier in use when it was written. Importing replaces the whole
dataset, exactly like a remote pull; a document that fails validation is
rejected in full.
"""

import json
import logging
from pathlib import Path
from typing import Any

from taskflow.dashboard import Dashboard
from taskflow.models import SnapshotFormatError, SyncSnapshot

logger = logging.getLogger(__name__)

SYNC_ID_FIELD = "syncIdentifier"


def build_backup(snapshot: SyncSnapshot, sync_id: str | None = None) -> dict[str, Any]:
    """Build a backup document from a snapshot."""
    document = snapshot.to_document()
    if sync_id:
        document[SYNC_ID_FIELD] = sync_id
    return document


def export_backup(dashboard: Dashboard, path: Path) -> Path:
    """Write a point-in-time dump of the dataset.

    Args:
        dashboard: Controller whose dataset is exported.
        path: Destination file.

    Returns:
        The written path.
    """
    document = build_backup(dashboard.snapshot(), dashboard.storage.get_sync_id())
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)
    logger.info(f"Exported backup to {path}")
    return path


def read_backup(path: Path) -> tuple[SyncSnapshot, str | None]:
    """Read and validate a backup file without applying it.

    Args:
        path: Backup file.

    Returns:
        The snapshot and the sync identifier stored with it, if any.

    Raises:
        SnapshotFormatError: If the file is not UTF-8 JSON or lacks a field.
    """
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise SnapshotFormatError(f"Backup file is not valid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise SnapshotFormatError(f"Backup file is not UTF-8 text: {e}") from e

    snapshot = SyncSnapshot.from_document(document)
    sync_id = document.get(SYNC_ID_FIELD) or None
    return snapshot, sync_id


def import_backup(dashboard: Dashboard, path: Path) -> str | None:
    """Replace the dataset with the contents of a backup file.

    Args:
        dashboard: Controller receiving the dataset.
        path: Backup file.

    Returns:
        The sync identifier stored in the backup, if any. Adopting it is
        left to the caller.

    Raises:
        SnapshotFormatError: If the file is rejected; nothing is changed.
    """
    snapshot, sync_id = read_backup(path)
    dashboard.replace_snapshot(snapshot)
    logger.info(f"Imported backup from {path}: {len(snapshot.users)} users, {len(snapshot.tasks)} tasks")
    return sync_id
