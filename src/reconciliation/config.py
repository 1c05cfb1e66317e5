"""
Sync configuration

Built from the `sync` section of config.yaml.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class ListMapping:
    tag: str
    list_name: str


@dataclass(frozen=True)
class SyncConfig:
    """Behaviour switches for one sync run"""
    dry_run: bool = False
    sync_completed_tasks: bool = True
    default_list: str = "Inbox"
    list_mappings: List[ListMapping] = field(default_factory=list)
    completion_writeback: bool = True
    due_date_writeback: bool = False
    start_date_writeback: bool = False
    priority_writeback: bool = False
    new_task_writeback: bool = False
    inbox_file: str = "Inbox.md"
    excluded_folders: List[str] = field(default_factory=lambda: [".obsidian", ".git", ".trash"])
    included_folders: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]], obsidian: Optional[Dict[str, Any]] = None) -> "SyncConfig":
        """
        Build a SyncConfig from the `sync` and `obsidian` config sections

        Raises:
            ConfigurationError: on wrongly typed values
        """
        raw = raw or {}
        obsidian = obsidian or {}
        writeback = raw.get('writeback') or {}

        def flag(section: Dict[str, Any], key: str, default: bool) -> bool:
            value = section.get(key, default)
            if not isinstance(value, bool):
                raise ConfigurationError(f"'{key}' must be true or false, got {value!r}")
            return value

        mappings = []
        for entry in raw.get('list_mappings') or []:
            if not isinstance(entry, dict) or 'tag' not in entry or 'list' not in entry:
                raise ConfigurationError(f"Invalid list mapping: {entry!r} (expected 'tag' and 'list')")
            mappings.append(ListMapping(tag=str(entry['tag']).lstrip('#'), list_name=str(entry['list'])))

        defaults = cls()
        return cls(
            dry_run=flag(raw, 'dry_run', defaults.dry_run),
            sync_completed_tasks=flag(raw, 'sync_completed_tasks', defaults.sync_completed_tasks),
            default_list=str(raw.get('default_list', defaults.default_list)),
            list_mappings=mappings,
            completion_writeback=flag(writeback, 'completion', defaults.completion_writeback),
            due_date_writeback=flag(writeback, 'due_date', defaults.due_date_writeback),
            start_date_writeback=flag(writeback, 'start_date', defaults.start_date_writeback),
            priority_writeback=flag(writeback, 'priority', defaults.priority_writeback),
            new_task_writeback=flag(writeback, 'new_tasks', defaults.new_task_writeback),
            inbox_file=str(obsidian.get('inbox_file', defaults.inbox_file)),
            excluded_folders=list(obsidian.get('excluded_folders', defaults.excluded_folders)),
            included_folders=list(obsidian.get('included_folders') or []),
        )

    def list_for_tag(self, tag: Optional[str]) -> str:
        """
        Map a vault tag to a destination list name

        Explicit mapping first (case-insensitive), then the capitalized tag.
        An empty tag falls back to the default list.
        """
        clean = (tag or "").lstrip('#')
        if not clean:
            return self.default_list

        for mapping in self.list_mappings:
            if mapping.tag.lower() == clean.lower():
                return mapping.list_name

        return clean[:1].upper() + clean[1:]

    def tag_for_list(self, list_name: Optional[str]) -> Optional[str]:
        """Reverse of list_for_tag, used when writing new tasks into the vault"""
        if not list_name or list_name == self.default_list:
            return None

        for mapping in self.list_mappings:
            if mapping.list_name.lower() == list_name.lower():
                return mapping.tag

        return (list_name[:1].lower() + list_name[1:]).replace(' ', '-')
