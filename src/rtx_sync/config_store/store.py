"""Snapshot store for previously applied state.

Handles:
- Reading/writing one YAML snapshot per (device, kind)
- Snapshot versioning and checksums
- Listing and removing snapshots
"""
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from ..config_engine.schema import Entity, Origin

logger = logging.getLogger(__name__)

# Default store directory
DEFAULT_STORE_DIR = Path.home() / ".rtx-sync"

FORMAT_VERSION = 1


class SnapshotError(Exception):
    """A snapshot file exists but cannot be used."""


def entities_checksum(entities: list[dict[str, Any]]) -> str:
    """Checksum over the serialized entities."""
    data = json.dumps(entities, sort_keys=True)
    return f"sha256:{hashlib.sha256(data.encode()).hexdigest()[:16]}"


@dataclass
class StoredSnapshot:
    """A stored snapshot with metadata."""
    device_id: str
    kind: str
    entities: list[dict[str, Any]] = field(default_factory=list)
    version: int = 1
    checksum: str = ""
    updated_at: Optional[datetime] = None

    def to_yaml(self) -> str:
        """Convert to YAML string with metadata header."""
        data = {
            "format_version": FORMAT_VERSION,
            "device_id": self.device_id,
            "kind": self.kind,
            "version": self.version,
            "checksum": self.checksum,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "entities": self.entities,
        }
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls, yaml_str: str, device_id: str, kind: str) -> "StoredSnapshot":
        """Parse from YAML string."""
        data = yaml.safe_load(yaml_str) or {}
        if not isinstance(data, dict):
            raise SnapshotError(f"Snapshot for {device_id}/{kind} is not a mapping")

        format_version = data.get("format_version", FORMAT_VERSION)
        if format_version != FORMAT_VERSION:
            raise SnapshotError(
                f"Unsupported snapshot format {format_version} for {device_id}/{kind}"
            )

        updated_at = None
        updated_at_str = data.get("updated_at")
        if updated_at_str:
            try:
                updated_at = datetime.fromisoformat(updated_at_str)
            except (ValueError, TypeError):
                logger.warning(f"Ignoring bad timestamp in snapshot {device_id}/{kind}: {updated_at_str!r}")

        return cls(
            device_id=device_id,
            kind=kind,
            entities=list(data.get("entities") or []),
            version=data.get("version", 1),
            checksum=data.get("checksum", ""),
            updated_at=updated_at,
        )


class SnapshotStore:
    """
    Stores the entities last applied per device and kind.

    Directory structure:
        ~/.rtx-sync/
        └── snapshots/
            └── <device_id>/
                └── <kind>.yaml
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize the snapshot store.

        Args:
            base_dir: Base directory (default: ~/.rtx-sync)
        """
        self.base_dir = Path(base_dir) if base_dir else DEFAULT_STORE_DIR
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Snapshot store initialized at {self.base_dir}")

    @property
    def snapshots_dir(self) -> Path:
        return self.base_dir / "snapshots"

    def _path(self, device_id: str, kind: str) -> Path:
        return self.snapshots_dir / device_id / f"{kind}.yaml"

    def get(self, device_id: str, kind: str) -> Optional[StoredSnapshot]:
        """
        Get the stored snapshot with metadata.

        Returns None if no snapshot exists.

        Raises:
            SnapshotError: If the file exists but is unreadable or corrupt
        """
        path = self._path(device_id, kind)
        if not path.exists():
            return None

        try:
            stored = StoredSnapshot.from_yaml(path.read_text(encoding="utf-8"), device_id, kind)
        except yaml.YAMLError as e:
            raise SnapshotError(f"Corrupt snapshot {path}: {e}") from e

        if stored.checksum and stored.checksum != entities_checksum(stored.entities):
            raise SnapshotError(f"Checksum mismatch in snapshot {path}")
        return stored

    def load(self, device_id: str, kind: str) -> list[Entity]:
        """
        Load the previously applied entities of one kind.

        A missing snapshot means nothing was applied yet and returns ``[]``.
        """
        stored = self.get(device_id, kind)
        if stored is None:
            return []
        return [Entity.from_dict({"kind": kind, **data}, origin=Origin.PREVIOUS) for data in stored.entities]

    def save(self, device_id: str, kind: str, entities: list[Entity]) -> StoredSnapshot:
        """
        Record the entities applied for one kind.

        Args:
            device_id: Device identifier
            kind: Entity kind
            entities: Entities as applied

        Returns:
            StoredSnapshot with the bumped version
        """
        existing = self.get(device_id, kind)
        version = (existing.version + 1) if existing else 1

        serialized = []
        for entity in entities:
            data = entity.to_dict()
            data.pop("kind", None)
            serialized.append(data)

        stored = StoredSnapshot(
            device_id=device_id,
            kind=kind,
            entities=serialized,
            version=version,
            checksum=entities_checksum(serialized),
            updated_at=datetime.now(timezone.utc),
        )

        path = self._path(device_id, kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so a crash never leaves half a snapshot
        tmp_path = path.with_suffix(".yaml.tmp")
        tmp_path.write_text(stored.to_yaml(), encoding="utf-8")
        tmp_path.replace(path)

        logger.info(f"Saved snapshot {device_id}/{kind} (v{version}, {len(entities)} entities)")
        return stored

    def list_kinds(self, device_id: str) -> list[str]:
        """List kinds with a stored snapshot for a device."""
        device_dir = self.snapshots_dir / device_id
        if not device_dir.exists():
            return []
        return sorted(p.stem for p in device_dir.glob("*.yaml"))

    def list_devices(self) -> list[str]:
        """List devices with at least one snapshot."""
        return sorted(p.name for p in self.snapshots_dir.iterdir() if p.is_dir())

    def delete(self, device_id: str, kind: str) -> bool:
        """Delete a snapshot."""
        path = self._path(device_id, kind)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted snapshot {device_id}/{kind}")
            return True
        return False
