"""Snapshot store for previously applied state.

This package provides:
- SnapshotStore: Reads and writes the entities last applied per device and kind
- StoredSnapshot: A stored snapshot with metadata

Directory structure managed:
    ~/.rtx-sync/
    └── snapshots/
        └── <device_id>/
            └── <kind>.yaml
"""

from .store import (
    SnapshotStore,
    StoredSnapshot,
    SnapshotError,
    DEFAULT_STORE_DIR,
    FORMAT_VERSION,
)

__all__ = [
    "SnapshotStore",
    "StoredSnapshot",
    "SnapshotError",
    "DEFAULT_STORE_DIR",
    "FORMAT_VERSION",
]
