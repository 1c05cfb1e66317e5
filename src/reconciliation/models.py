"""
Task model shared by sources, destinations and the sync engine
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, List, Optional


class Priority(IntEnum):
    """Ordinal task priority"""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass(frozen=True)
class SourceInfo:
    """Where a task lives in the vault, captured at scan time"""
    file_path: str  # vault-relative, e.g. '/Projects/Home.md'
    line_number: int  # 1-based
    original_line: str


@dataclass
class Task:
    """Unified task representation across source and destination"""
    title: str
    completed: bool = False
    priority: Priority = Priority.NONE
    due_date: Optional[date] = None
    start_date: Optional[date] = None
    scheduled_date: Optional[date] = None
    completed_date: Optional[date] = None
    tags: List[str] = field(default_factory=list)
    target_list: Optional[str] = None
    notes: Optional[str] = None
    recurrence: Optional[str] = None
    source: Optional[SourceInfo] = None
    destination_id: Optional[str] = None
    last_modified: datetime = field(default_factory=datetime.now)

    @property
    def file_path(self) -> Optional[str]:
        return self.source.file_path if self.source else None


class ChangeKind(Enum):
    UNCHANGED = "unchanged"
    CLEARED = "cleared"
    SET = "set"


@dataclass(frozen=True)
class FieldChange:
    """
    Three-state edit for a single field

    UNCHANGED leaves the field alone, CLEARED removes it, SET replaces it
    with `value`.
    """
    kind: ChangeKind = ChangeKind.UNCHANGED
    value: Any = None

    @classmethod
    def unchanged(cls) -> "FieldChange":
        return cls(ChangeKind.UNCHANGED)

    @classmethod
    def cleared(cls) -> "FieldChange":
        return cls(ChangeKind.CLEARED)

    @classmethod
    def set_to(cls, value: Any) -> "FieldChange":
        return cls(ChangeKind.SET, value)

    @classmethod
    def between(cls, old: Any, new: Any) -> "FieldChange":
        """Describe the edit that turns `old` into `new`"""
        if old == new:
            return cls.unchanged()
        if new is None:
            return cls.cleared()
        return cls.set_to(new)

    @property
    def is_unchanged(self) -> bool:
        return self.kind is ChangeKind.UNCHANGED


@dataclass(frozen=True)
class MetadataChanges:
    """Metadata edits applied to one source line in a single write"""
    due_date: FieldChange = field(default_factory=FieldChange.unchanged)
    start_date: FieldChange = field(default_factory=FieldChange.unchanged)
    priority: FieldChange = field(default_factory=FieldChange.unchanged)

    @property
    def has_changes(self) -> bool:
        return not (
            self.due_date.is_unchanged
            and self.start_date.is_unchanged
            and self.priority.is_unchanged
        )


@dataclass(frozen=True)
class EditOutcome:
    """
    Result of a surgical edit

    `inserted` counts lines added above the edited line (recurrence rollover),
    `source` is where the edited record now lives.
    """
    source: SourceInfo
    inserted: int = 0
