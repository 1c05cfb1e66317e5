"""
Todoist Integration

Destination backed by a local Todoist cache file.

Architecture:
- cache/todoist_tasks.json holds the task list in Todoist's REST shape
- An external sync job pushes that file to and from Todoist
- The reconciliation engine only ever reads and writes the cache
"""

import json
import logging
import os
import tempfile
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from reconciliation.errors import DestinationError
from reconciliation.models import Priority, Task


# Todoist priority 4 is "urgent", 1 is "normal"
PRIORITY_FROM_TODOIST = {
    4: Priority.HIGH,
    3: Priority.MEDIUM,
    2: Priority.LOW,
    1: Priority.NONE,
}
PRIORITY_TO_TODOIST = {priority: value for value, priority in PRIORITY_FROM_TODOIST.items()}


class TodoistIntegration:
    """Task destination over the Todoist cache file"""

    def __init__(self, config: Dict[str, Any], project_root: Optional[Path] = None):
        """
        Initialize Todoist integration

        Args:
            config: `todoist` section of the main config file
            project_root: Base for a relative cache_file path
        """
        self.config = config
        self.logger = logging.getLogger("TaskSync.Todoist")

        cache_file = Path(config.get('cache_file', 'cache/todoist_tasks.json')).expanduser()
        if not cache_file.is_absolute():
            cache_file = (project_root or Path.cwd()) / cache_file
        self.cache_file = cache_file

    # ==================== TaskDestination ====================

    def fetch_all(self) -> List[Task]:
        """
        Read every task from the cache

        A missing cache is an empty project list.

        Raises:
            DestinationError: cache unreadable or malformed
        """
        raw_tasks = self._load()
        tasks = []
        for raw in raw_tasks:
            try:
                tasks.append(self._to_task(raw))
            except (KeyError, TypeError, ValueError) as e:
                raise DestinationError(f"Malformed task in Todoist cache: {raw!r} ({e})") from e

        self.logger.info(f"Loaded {len(tasks)} tasks from {self.cache_file.name}")
        return tasks

    def create(self, task: Task, list_name: str) -> str:
        raw_tasks = self._load()
        task_id = uuid.uuid4().hex
        record = self._to_record(task, task_id, list_name)
        raw_tasks.append(record)
        self._save(raw_tasks)

        self.logger.debug(f"Created Todoist task {task_id} in {list_name}: {task.title[:40]}")
        return task_id

    def update(self, destination_id: str, task: Task) -> None:
        """Overwrite the task's fields, keeping its id and project"""
        raw_tasks = self._load()
        index = self._index_of(raw_tasks, destination_id)
        project = raw_tasks[index].get('project')
        raw_tasks[index] = self._to_record(task, destination_id, project)
        self._save(raw_tasks)

    def move(self, destination_id: str, list_name: str) -> None:
        raw_tasks = self._load()
        index = self._index_of(raw_tasks, destination_id)
        raw_tasks[index]['project'] = list_name
        self._save(raw_tasks)

    def delete(self, destination_id: str) -> None:
        raw_tasks = self._load()
        index = self._index_of(raw_tasks, destination_id)
        del raw_tasks[index]
        self._save(raw_tasks)

    # ==================== Conversion ====================

    def _to_task(self, raw: Dict[str, Any]) -> Task:
        """
        Parse one cache record

        Mapping:
        - content → title, description → notes
        - project → target list
        - labels → tags (with '#')
        - Todoist priority 4/3/2/1 → high/medium/low/none
        """
        due = raw.get('due') or {}
        return Task(
            title=raw['content'].strip(),
            completed=bool(raw.get('is_completed', False)),
            priority=PRIORITY_FROM_TODOIST.get(raw.get('priority', 1), Priority.NONE),
            due_date=self._parse_date(due.get('date')),
            start_date=self._parse_date(raw.get('start_date')),
            scheduled_date=self._parse_date(raw.get('scheduled_date')),
            completed_date=self._parse_date(raw.get('completed_at')),
            tags=[f"#{label}" for label in raw.get('labels', [])],
            target_list=raw.get('project'),
            notes=raw.get('description') or None,
            destination_id=str(raw['id']),
        )

    def _to_record(self, task: Task, task_id: str, project: Optional[str]) -> Dict[str, Any]:
        return {
            'id': task_id,
            'content': task.title,
            'description': task.notes or '',
            'project': project,
            'priority': PRIORITY_TO_TODOIST[Priority(task.priority)],
            'labels': [tag.lstrip('#') for tag in task.tags],
            'is_completed': task.completed,
            'completed_at': task.completed_date.isoformat() if task.completed_date else None,
            'due': {'date': task.due_date.isoformat()} if task.due_date else None,
            'start_date': task.start_date.isoformat() if task.start_date else None,
            'scheduled_date': task.scheduled_date.isoformat() if task.scheduled_date else None,
            'updated_at': datetime.now().isoformat(),
        }

    def _parse_date(self, value: Optional[str]) -> Optional[date]:
        """Accept 'YYYY-MM-DD' or a full ISO datetime"""
        if not value:
            return None
        if 'T' in value:
            return datetime.fromisoformat(value.replace('Z', '+00:00')).date()
        return date.fromisoformat(value)

    # ==================== Cache file ====================

    def _index_of(self, raw_tasks: List[Dict[str, Any]], destination_id: str) -> int:
        for index, raw in enumerate(raw_tasks):
            if str(raw.get('id')) == destination_id:
                return index
        raise DestinationError(f"Todoist task not found: {destination_id}")

    def _load(self) -> List[Dict[str, Any]]:
        if not self.cache_file.exists():
            return []

        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                raw_tasks = json.load(f)
        except json.JSONDecodeError as e:
            raise DestinationError(f"Failed to parse Todoist cache: {e}") from e
        except OSError as e:
            raise DestinationError(f"Error reading Todoist cache: {e}") from e

        if not isinstance(raw_tasks, list):
            raise DestinationError(f"Todoist cache must hold a list of tasks: {self.cache_file}")
        return raw_tasks

    def _save(self, raw_tasks: List[Dict[str, Any]]) -> None:
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix='.todoist_', suffix='.json', dir=str(self.cache_file.parent))
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(raw_tasks, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.cache_file)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise DestinationError(f"Failed to write Todoist cache: {e}") from e
