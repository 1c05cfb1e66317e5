"""
Sync result types

The engine records into a SyncResultBuilder while it runs and hands out one
immutable SyncResult at the end.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .models import Task


class SyncAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMPLETION_WRITEBACK = "completion-writeback"
    METADATA_WRITEBACK = "metadata-writeback"
    NEW_TASK_WRITEBACK = "new-task-writeback"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SyncOutcome:
    """What happened to one task"""
    action: SyncAction
    title: str
    file_path: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'title': self.title,
            'file_path': self.file_path,
            'error': self.error,
        }


@dataclass(frozen=True)
class SyncConflict:
    """Both sides drifted since the last sync. Resolution is always the source."""
    source_task: Task
    destination_task: Task
    resolution: str = "source"


@dataclass(frozen=True)
class SyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    relinked: int = 0
    completion_writebacks: int = 0
    metadata_writebacks: int = 0
    new_task_writebacks: int = 0
    outcomes: Tuple[SyncOutcome, ...] = ()
    conflicts: Tuple[SyncConflict, ...] = ()
    dry_run: bool = False
    started_at: Optional[datetime] = None
    duration: float = 0.0

    @property
    def errors(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.action is SyncAction.ERROR]

    @property
    def has_changes(self) -> bool:
        return any((
            self.created, self.updated, self.deleted,
            self.completion_writebacks, self.metadata_writebacks, self.new_task_writebacks,
        ))

    @property
    def summary(self) -> str:
        parts = []
        for count, label in (
            (self.created, "created"),
            (self.updated, "updated"),
            (self.deleted, "deleted"),
            (self.relinked, "relinked"),
            (self.completion_writebacks, "completed in vault"),
            (self.metadata_writebacks, "metadata written to vault"),
            (self.new_task_writebacks, "added to vault"),
            (len(self.conflicts), "conflicts"),
            (len(self.errors), "errors"),
        ):
            if count > 0:
                parts.append(f"{count} {label}")

        text = ", ".join(parts) if parts else "No changes"
        return f"[DRY RUN] {text}" if self.dry_run else text


class SyncResultBuilder:
    """Mutable accumulator used during a run"""

    def __init__(self, dry_run: bool, started_at: datetime):
        self.dry_run = dry_run
        self.started_at = started_at
        self.counts: Dict[str, int] = {
            'created': 0,
            'updated': 0,
            'deleted': 0,
            'relinked': 0,
            'completion_writebacks': 0,
            'metadata_writebacks': 0,
            'new_task_writebacks': 0,
        }
        self.outcomes: List[SyncOutcome] = []
        self.conflicts: List[SyncConflict] = []

    def _title(self, title: str) -> str:
        return f"[DRY RUN] {title}" if self.dry_run else title

    def record(self, action: SyncAction, task: Task, error: Optional[str] = None) -> None:
        counter = {
            SyncAction.CREATED: 'created',
            SyncAction.UPDATED: 'updated',
            SyncAction.DELETED: 'deleted',
            SyncAction.COMPLETION_WRITEBACK: 'completion_writebacks',
            SyncAction.METADATA_WRITEBACK: 'metadata_writebacks',
            SyncAction.NEW_TASK_WRITEBACK: 'new_task_writebacks',
        }.get(action)
        if counter:
            self.counts[counter] += 1

        title = task.title if action in (SyncAction.ERROR, SyncAction.SKIPPED) else self._title(task.title)
        self.outcomes.append(SyncOutcome(action, title, task.file_path, error))

    def error(self, task: Task, error: Exception) -> None:
        self.record(SyncAction.ERROR, task, str(error))

    def relinked(self) -> None:
        self.counts['relinked'] += 1

    def conflict(self, source_task: Task, destination_task: Task) -> None:
        self.conflicts.append(SyncConflict(source_task, destination_task))

    def build(self, finished_at: datetime) -> SyncResult:
        return SyncResult(
            outcomes=tuple(self.outcomes),
            conflicts=tuple(self.conflicts),
            dry_run=self.dry_run,
            started_at=self.started_at,
            duration=(finished_at - self.started_at).total_seconds(),
            **self.counts,
        )
