"""
Sync History

Persisted log of past sync runs, newest first.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from reconciliation.result import SyncResult


MAX_ENTRIES = 200


class SyncHistory:
    """JSON file holding one summary entry per sync run"""

    def __init__(self, path: Path, max_entries: int = MAX_ENTRIES):
        self.path = Path(path).expanduser()
        self.max_entries = max_entries
        self.logger = logging.getLogger("TaskSync.History")

    def entries(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                entries = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to read sync history {self.path}: {e}")
            return []

        if not isinstance(entries, list):
            self.logger.warning(f"Ignoring malformed sync history: {self.path}")
            return []
        return entries[:limit] if limit else entries

    def record(self, result: SyncResult) -> Dict[str, Any]:
        """Prepend a run summary and trim to max_entries"""
        entry = {
            'timestamp': result.started_at.isoformat() if result.started_at else None,
            'dry_run': result.dry_run,
            'duration': round(result.duration, 3),
            'summary': result.summary,
            'created': result.created,
            'updated': result.updated,
            'deleted': result.deleted,
            'relinked': result.relinked,
            'completion_writebacks': result.completion_writebacks,
            'metadata_writebacks': result.metadata_writebacks,
            'new_task_writebacks': result.new_task_writebacks,
            'conflicts': len(result.conflicts),
            'errors': [o.to_dict() for o in result.errors],
        }

        entries = [entry] + self.entries()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(entries[:self.max_entries], f, indent=2, ensure_ascii=False)

        return entry
