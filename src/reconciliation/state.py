"""
Mapping Store

Durable table linking source task IDs to destination task IDs, together with
the last hashes seen on each side. Persisted as a versioned JSON blob.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


# Bump whenever the ID scheme changes. Older state is discarded on load,
# which turns every task into a fresh "create" rather than a delete.
CURRENT_STATE_VERSION = 2


@dataclass
class TaskMapping:
    """Link between one source record and one destination record"""
    source_id: str
    destination_id: str
    last_source_hash: str
    last_destination_hash: str
    last_sync: datetime

    def source_changed(self, current_hash: str) -> bool:
        return current_hash != self.last_source_hash

    def destination_changed(self, current_hash: str) -> bool:
        return current_hash != self.last_destination_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_id': self.source_id,
            'destination_id': self.destination_id,
            'source_hash': self.last_source_hash,
            'destination_hash': self.last_destination_hash,
            'last_sync': self.last_sync.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TaskMapping":
        return cls(
            source_id=raw['source_id'],
            destination_id=raw['destination_id'],
            last_source_hash=raw['source_hash'],
            last_destination_hash=raw['destination_hash'],
            last_sync=datetime.fromisoformat(raw['last_sync']),
        )


class MappingStore:
    """
    Sync state: mappings, schema version and last sync time

    Only the sync engine mutates the store, and it only calls save() outside
    dry-run mode.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else None
        self.logger = logging.getLogger("TaskSync.State")
        self.mappings: List[TaskMapping] = []
        self.version = CURRENT_STATE_VERSION
        self.last_sync: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.mappings)

    # ==================== Lookup ====================

    def find_by_source_id(self, source_id: str) -> Optional[TaskMapping]:
        for mapping in self.mappings:
            if mapping.source_id == source_id:
                return mapping
        return None

    def find_by_destination_id(self, destination_id: str) -> Optional[TaskMapping]:
        for mapping in self.mappings:
            if mapping.destination_id == destination_id:
                return mapping
        return None

    def source_ids(self) -> set:
        return {m.source_id for m in self.mappings}

    def destination_ids(self) -> set:
        return {m.destination_id for m in self.mappings}

    # ==================== Mutation ====================

    def upsert(
        self,
        source_id: str,
        destination_id: str,
        source_hash: str,
        destination_hash: str,
        when: Optional[datetime] = None
    ) -> TaskMapping:
        """
        Insert or replace the mapping for `source_id`

        Any other mapping already pointing at `destination_id` is dropped so
        one destination record never backs two live mappings.
        """
        mapping = TaskMapping(
            source_id=source_id,
            destination_id=destination_id,
            last_source_hash=source_hash,
            last_destination_hash=destination_hash,
            last_sync=when or datetime.now(),
        )

        kept = []
        replaced = False
        for existing in self.mappings:
            if existing.source_id == source_id:
                if not replaced:
                    kept.append(mapping)
                    replaced = True
                continue
            if existing.destination_id == destination_id:
                self.logger.debug(
                    f"Dropping mapping {existing.source_id[:12]}... "
                    f"(destination {destination_id} relinked)"
                )
                continue
            kept.append(existing)

        if not replaced:
            kept.append(mapping)

        self.mappings = kept
        return mapping

    def remove(self, source_id: Optional[str] = None, destination_id: Optional[str] = None) -> int:
        """Remove mappings matching either ID. Returns how many were removed."""
        if source_id is None and destination_id is None:
            raise ValueError("remove() needs a source_id or a destination_id")

        before = len(self.mappings)
        self.mappings = [
            m for m in self.mappings
            if not (
                (source_id is not None and m.source_id == source_id)
                or (destination_id is not None and m.destination_id == destination_id)
            )
        ]
        return before - len(self.mappings)

    def reset(self) -> None:
        self.mappings = []
        self.last_sync = None
        self.version = CURRENT_STATE_VERSION

    # ==================== Persistence ====================

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'last_sync': self.last_sync.isoformat() if self.last_sync else None,
            'mappings': [m.to_dict() for m in self.mappings],
        }

    @classmethod
    def load(cls, path: Path) -> "MappingStore":
        """
        Load sync state from disk

        Missing or unreadable state starts empty. State written under an
        older ID scheme is discarded.
        """
        store = cls(path)

        if not store.path.exists():
            store.logger.info(f"No sync state at {store.path}, starting fresh")
            return store

        try:
            with open(store.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            version = int(raw.get('version', 0))

            if version < CURRENT_STATE_VERSION:
                store.logger.warning(
                    f"Sync state version outdated (v{version} → v{CURRENT_STATE_VERSION}). "
                    "Resetting sync state for re-sync."
                )
                return store

            store.version = version
            store.mappings = [TaskMapping.from_dict(m) for m in raw.get('mappings', [])]
            if raw.get('last_sync'):
                store.last_sync = datetime.fromisoformat(raw['last_sync'])

        except (OSError, ValueError, KeyError, TypeError) as e:
            store.logger.error(f"Failed to read sync state {store.path}: {e}")
            store.reset()

        store.logger.debug(f"Loaded {len(store.mappings)} mappings from {store.path}")
        return store

    def save(self) -> None:
        """Write the state atomically (temp file + rename)"""
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix='.sync_state_', suffix='.json', dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self.logger.debug(f"Saved {len(self.mappings)} mappings to {self.path}")
