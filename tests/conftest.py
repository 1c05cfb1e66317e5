"""
Shared fixtures for the TaskSync test suite

Run with: pytest tests/
"""

from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from integrations import ObsidianIntegration
from reconciliation import MappingStore, SyncConfig, SyncEngine
from reconciliation.errors import DestinationError
from reconciliation.models import SourceInfo, Task


class InMemoryDestination:
    """TaskDestination double that records every call"""

    def __init__(self):
        self.tasks: Dict[str, Task] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_on: set = set()
        self._counter = 0

    def _new_id(self) -> str:
        self._counter += 1
        return f"dest-{self._counter}"

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise DestinationError(f"{operation} failed")

    def add(self, title: str, list_name: str = "Inbox", **fields) -> Task:
        """Seed a record without recording a call"""
        task = Task(title=title, target_list=list_name, destination_id=self._new_id(), **fields)
        self.tasks[task.destination_id] = task
        return task

    def edit(self, destination_id: str, **fields) -> None:
        """Simulate a change made in the destination app"""
        self.tasks[destination_id] = replace(self.tasks[destination_id], **fields)

    def by_title(self, title: str) -> Task:
        return next(t for t in self.tasks.values() if t.title == title)

    @property
    def mutations(self) -> List[Tuple[str, str]]:
        return [call for call in self.calls if call[0] != 'fetch_all']

    # TaskDestination

    def fetch_all(self) -> List[Task]:
        self.calls.append(('fetch_all', ''))
        self._check('fetch_all')
        return [replace(t, tags=list(t.tags)) for t in self.tasks.values()]

    def create(self, task: Task, list_name: str) -> str:
        self.calls.append(('create', task.title))
        self._check('create')
        destination_id = self._new_id()
        self.tasks[destination_id] = replace(
            task, tags=list(task.tags), target_list=list_name, destination_id=destination_id, source=None
        )
        return destination_id

    def update(self, destination_id: str, task: Task) -> None:
        self.calls.append(('update', destination_id))
        self._check('update')
        current = self.tasks[destination_id]
        self.tasks[destination_id] = replace(
            task, tags=list(task.tags), target_list=current.target_list,
            destination_id=destination_id, source=None
        )

    def move(self, destination_id: str, list_name: str) -> None:
        self.calls.append(('move', destination_id))
        self._check('move')
        self.tasks[destination_id] = replace(self.tasks[destination_id], target_list=list_name)

    def delete(self, destination_id: str) -> None:
        self.calls.append(('delete', destination_id))
        self._check('delete')
        del self.tasks[destination_id]


@pytest.fixture
def vault(tmp_path) -> Path:
    """Empty Obsidian vault"""
    path = tmp_path / "vault"
    (path / ".obsidian").mkdir(parents=True)
    return path


@pytest.fixture
def write_note(vault):
    """Write a note into the vault: write_note('Projects/Home.md', '- [ ] Task')"""
    def _write(relative: str, text: str) -> Path:
        path = vault / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(text.encode('utf-8'))
        return path
    return _write


@pytest.fixture
def destination() -> InMemoryDestination:
    return InMemoryDestination()


@pytest.fixture
def obsidian(vault) -> ObsidianIntegration:
    return ObsidianIntegration({'vault_path': str(vault), 'inbox_file': 'Inbox.md'})


@pytest.fixture
def store(tmp_path) -> MappingStore:
    return MappingStore(tmp_path / "state" / "sync_state.json")


@pytest.fixture
def make_engine(obsidian, destination, store):
    """Build a SyncEngine over the test vault and in-memory destination"""
    def _make(**config) -> SyncEngine:
        return SyncEngine(obsidian, destination, store, SyncConfig(**config))
    return _make


def make_task(title: str, file_path: Optional[str] = "/Tasks.md", line_number: int = 1, **fields) -> Task:
    """Task with provenance, for pure unit tests"""
    source = None
    if file_path is not None:
        source = SourceInfo(file_path=file_path, line_number=line_number, original_line=f"- [ ] {title}")
    return Task(title=title, source=source, **fields)
