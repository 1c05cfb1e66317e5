"""
Capability interfaces for the two sides of a sync

The engine only talks to these protocols and never branches on which
concrete backend it was given.
"""

from datetime import date, datetime
from typing import List, Protocol

from .config import SyncConfig
from .models import EditOutcome, MetadataChanges, Task


class TaskSource(Protocol):
    """The source of truth. Every write must follow the surgical edit contract."""

    def scan(self, config: SyncConfig) -> List[Task]:
        """Return every task in the collection (raises ConfigurationError if unusable)"""

    def generate_id(self, task: Task) -> str:
        """Deterministic, content-derived ID for a scanned task"""

    def mark_complete(self, task: Task, completion_date: date) -> EditOutcome:
        """Complete the task in place, rolling over recurrence if present"""

    def mark_incomplete(self, task: Task) -> EditOutcome:
        """Reopen a completed task in place"""

    def update_metadata(self, task: Task, changes: MetadataChanges) -> EditOutcome:
        """Apply due/start/priority edits to the task's line"""

    def append_new(self, task: Task) -> Task:
        """Append a new task to the inbox and return it as the collection now holds it"""

    def has_changed_since(self, task: Task, since: datetime) -> bool:
        """True if the task's file was modified by someone else after `since`"""


class TaskDestination(Protocol):
    """An external task store mirrored from the source"""

    def fetch_all(self) -> List[Task]:
        """Every task in the store, with destination_id and target_list set"""

    def create(self, task: Task, list_name: str) -> str:
        """Create a task and return its destination ID"""

    def update(self, destination_id: str, task: Task) -> None:
        """Overwrite the stored fields of an existing task"""

    def move(self, destination_id: str, list_name: str) -> None:
        """Move a task to another list"""

    def delete(self, destination_id: str) -> None:
        """Delete a task"""
