"""
Obsidian Integration

Reads tasks from an Obsidian vault and writes back completion, metadata and
new tasks via surgical line edits. This is the source of truth for the sync.
"""

import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from reconciliation.config import SyncConfig
from reconciliation.errors import ConfigurationError, MissingSourceInfoError, SourceError
from reconciliation.identity import generate_id
from reconciliation.models import ChangeKind, EditOutcome, FieldChange, MetadataChanges, Priority, SourceInfo, Task
from reconciliation.recurrence import next_occurrence_dates

from .audit import AuditLog
from .backup import FileBackup
from .surgical import SurgicalEditor
from .tasks_format import (
    DUE,
    START,
    LineEdit,
    append_completion,
    build_recurrence_line,
    format_new_task_line,
    line_dates,
    parse_recurrence,
    parse_task_line,
    remove_completion,
    remove_date,
    set_date,
    set_priority,
    set_status,
)
from .watcher import SelfModificationRegistry


class ObsidianIntegration:
    """Task source backed by the markdown files of an Obsidian vault"""

    def __init__(
        self,
        config: Dict[str, Any],
        backup: Optional[FileBackup] = None,
        audit: Optional[AuditLog] = None,
        registry: Optional[SelfModificationRegistry] = None
    ):
        """
        Initialize Obsidian integration

        Args:
            config: `obsidian` section of the main config file
            backup: Backup taken before each write
            audit: Mutation log
            registry: Watcher registry notified of our own writes
        """
        self.config = config
        self.logger = logging.getLogger("TaskSync.Obsidian")

        self.vault_path = Path(config['vault_path']).expanduser()
        self.inbox_file = config.get('inbox_file', 'Inbox.md')
        self.editor = SurgicalEditor(self.vault_path, backup=backup, audit=audit, registry=registry)

        # mtime of the last write we made per file
        self._own_writes: Dict[str, datetime] = {}

        if not self.vault_path.exists():
            self.logger.warning(f"Obsidian vault not found: {self.vault_path}")

    # ==================== Reading ====================

    def scan(self, config: SyncConfig) -> List[Task]:
        """
        Parse every task in the vault

        Raises:
            ConfigurationError: vault missing or not an Obsidian vault
        """
        self._verify_vault()
        self.logger.info(f"Scanning vault: {self.vault_path}")

        tasks = []
        files = self._find_markdown_files(config)
        for path in files:
            relative = "/" + path.relative_to(self.vault_path).as_posix()
            try:
                content = path.read_bytes().decode('utf-8')
            except (OSError, UnicodeDecodeError) as e:
                self.logger.warning(f"Skipping unreadable file {relative}: {e}")
                continue

            for i, line in enumerate(content.split('\n')):
                task = parse_task_line(line, relative, i + 1)
                if task:
                    tasks.append(task)

        self.logger.info(f"Found {len(tasks)} tasks in {len(files)} files")
        return tasks

    def generate_id(self, task: Task) -> str:
        return generate_id(task)

    def has_changed_since(self, task: Task, since: datetime) -> bool:
        """
        True if the task's file was modified after `since` by someone else

        Our own earlier writes in the same run move the threshold forward.
        An unreadable file counts as changed.
        """
        if task.source is None:
            return True

        try:
            modified = datetime.fromtimestamp(self.editor.resolve(task.source.file_path).stat().st_mtime)
        except OSError:
            return True

        threshold = since
        own = self._own_writes.get(task.source.file_path)
        if own and own > threshold:
            threshold = own
        return modified > threshold

    # ==================== Writing ====================

    def mark_complete(self, task: Task, completion_date: date) -> EditOutcome:
        """
        Tick the task and stamp ✅ with the completion date

        A recurring task gets its next instance inserted directly above.
        """
        source = self._require_source(task)

        def transform(line: str) -> LineEdit:
            new_line = append_completion(set_status(line, True), completion_date)
            above = []

            rule = parse_recurrence(line)
            if rule:
                due, start, scheduled = line_dates(line)
                dates = next_occurrence_dates(rule, due, start, scheduled, completion_date)
                if dates:
                    above.append(build_recurrence_line(line, dates))
                    self.logger.info(f"🔁 Next occurrence of '{task.title[:40]}' due {dates.due_date}")
                else:
                    self.logger.debug(f"No next occurrence for '{task.title[:40]}' ({rule.text})")

            return LineEdit(new_line, above, insert_action="insertRecurrence")

        return self._edit(source, "markTaskComplete", transform)

    def mark_incomplete(self, task: Task) -> EditOutcome:
        source = self._require_source(task)
        return self._edit(
            source,
            "markTaskIncomplete",
            lambda line: LineEdit(remove_completion(set_status(line, False)))
        )

    def update_metadata(self, task: Task, changes: MetadataChanges) -> EditOutcome:
        """Apply due date, start date and priority changes to the task's line"""
        source = self._require_source(task)

        def apply_date(line: str, marker: str, change: FieldChange) -> str:
            if change.kind is ChangeKind.SET:
                return set_date(line, marker, change.value)
            if change.kind is ChangeKind.CLEARED:
                return remove_date(line, marker)
            return line

        def transform(line: str) -> LineEdit:
            line = apply_date(line, DUE, changes.due_date)
            line = apply_date(line, START, changes.start_date)
            if changes.priority.kind is ChangeKind.SET:
                line = set_priority(line, Priority(changes.priority.value))
            elif changes.priority.kind is ChangeKind.CLEARED:
                line = set_priority(line, Priority.NONE)
            return LineEdit(line)

        return self._edit(source, "updateTaskMetadata", transform)

    def append_new(self, task: Task) -> Task:
        """
        Append a task that only exists in the destination to the inbox note

        Returns:
            The task as parsed back from the written line
        """
        self._verify_vault()
        line = format_new_task_line(task)
        file_path = "/" + self.inbox_file.lstrip('/')

        info = self.editor.append_line(file_path, line, "appendNewTask")
        self._remember_write(file_path)

        written = parse_task_line(info.original_line, info.file_path, info.line_number)
        if written is None:
            raise SourceError(f"Could not parse appended task line: {line}")
        written.destination_id = task.destination_id
        return written

    # ==================== Helpers ====================

    def _edit(self, source: SourceInfo, action: str, transform) -> EditOutcome:
        outcome = self.editor.edit_line(
            source.file_path, source.line_number, source.original_line, action, transform
        )
        self._remember_write(source.file_path)
        return outcome

    def _remember_write(self, file_path: str) -> None:
        try:
            mtime = self.editor.resolve(file_path).stat().st_mtime
        except OSError:
            return
        self._own_writes[file_path] = datetime.fromtimestamp(mtime)

    def _require_source(self, task: Task) -> SourceInfo:
        if task.source is None:
            raise MissingSourceInfoError(task.title)
        return task.source

    def _verify_vault(self) -> None:
        if not self.vault_path.is_dir():
            raise ConfigurationError(f"Obsidian vault not found: {self.vault_path}")
        if not (self.vault_path / '.obsidian').is_dir():
            raise ConfigurationError(
                f"Not an Obsidian vault (no .obsidian folder): {self.vault_path}"
            )

    def _find_markdown_files(self, config: SyncConfig) -> List[Path]:
        """
        Markdown files in the vault, sorted

        Hidden folders and excluded folders (by name or vault-relative path)
        are skipped. When included folders are configured only files under
        them are returned.
        """
        excluded = {folder.strip('/') for folder in config.excluded_folders}
        included = [folder.strip('/') for folder in config.included_folders if folder.strip('/')]
        files = []

        for root, dirnames, filenames in os.walk(self.vault_path):
            root_path = Path(root)
            relative_root = root_path.relative_to(self.vault_path).as_posix()

            kept = []
            for name in dirnames:
                relative = name if relative_root == '.' else f"{relative_root}/{name}"
                if name.startswith('.') or name in excluded or relative in excluded:
                    continue
                kept.append(name)
            dirnames[:] = sorted(kept)

            for name in filenames:
                if not name.lower().endswith('.md'):
                    continue
                relative = name if relative_root == '.' else f"{relative_root}/{name}"
                if included and not any(relative.startswith(folder + '/') for folder in included):
                    continue
                files.append(root_path / name)

        return sorted(files)
