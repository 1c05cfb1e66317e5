"""
Reconciliation core: task model, identity, mapping state, recurrence and the
sync engine. Nothing in here knows about Obsidian or Todoist.
"""

from .config import ListMapping, SyncConfig
from .engine import SyncEngine
from .errors import (
    ConfigurationError,
    DestinationError,
    SafetyAbortError,
    SourceError,
    SyncAlreadyRunningError,
    SyncError,
)
from .identity import generate_hash, generate_id
from .models import EditOutcome, FieldChange, MetadataChanges, Priority, SourceInfo, Task
from .result import SyncAction, SyncConflict, SyncOutcome, SyncResult
from .state import MappingStore, TaskMapping

__all__ = [
    'ConfigurationError',
    'DestinationError',
    'EditOutcome',
    'FieldChange',
    'ListMapping',
    'MappingStore',
    'MetadataChanges',
    'Priority',
    'SafetyAbortError',
    'SourceError',
    'SourceInfo',
    'SyncAction',
    'SyncConfig',
    'SyncConflict',
    'SyncEngine',
    'SyncError',
    'SyncOutcome',
    'SyncResult',
    'Task',
    'TaskMapping',
    'generate_hash',
    'generate_id',
]
