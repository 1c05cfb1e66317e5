"""
Integration modules for the vault source and the task destination
"""

from .audit import AuditLog
from .backup import FileBackup
from .obsidian import ObsidianIntegration
from .surgical import SurgicalEditor
from .todoist import TodoistIntegration
from .watcher import SelfModificationRegistry

__all__ = [
    'AuditLog',
    'FileBackup',
    'ObsidianIntegration',
    'SelfModificationRegistry',
    'SurgicalEditor',
    'TodoistIntegration',
]
