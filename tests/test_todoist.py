"""
Tests for the Todoist cache destination
"""

import json
from datetime import date

import pytest

from integrations import TodoistIntegration
from reconciliation import MappingStore, SyncConfig, SyncEngine
from reconciliation.errors import DestinationError
from reconciliation.models import Priority, Task


@pytest.fixture
def todoist(tmp_path):
    return TodoistIntegration({'cache_file': 'cache/todoist_tasks.json'}, project_root=tmp_path)


def write_cache(todoist, records):
    todoist.cache_file.parent.mkdir(parents=True, exist_ok=True)
    todoist.cache_file.write_text(json.dumps(records), encoding='utf-8')


class TestFetch:

    def test_missing_cache_is_empty(self, todoist):
        assert todoist.fetch_all() == []

    def test_parses_records(self, todoist):
        write_cache(todoist, [{
            'id': 123,
            'content': ' Call mom ',
            'description': 'Source: /Tasks.md',
            'project': 'Family',
            'priority': 4,
            'labels': ['family'],
            'is_completed': True,
            'completed_at': '2026-01-09T18:30:00Z',
            'due': {'date': '2026-01-10'},
        }])

        task, = todoist.fetch_all()

        assert task.destination_id == "123"
        assert task.title == "Call mom"
        assert task.priority == Priority.HIGH
        assert task.tags == ["#family"]
        assert task.target_list == "Family"
        assert task.completed_date == date(2026, 1, 9)
        assert task.due_date == date(2026, 1, 10)
        assert task.notes == "Source: /Tasks.md"

    def test_malformed_json(self, todoist):
        todoist.cache_file.parent.mkdir(parents=True)
        todoist.cache_file.write_text("{not json", encoding='utf-8')
        with pytest.raises(DestinationError):
            todoist.fetch_all()

    def test_record_without_content(self, todoist):
        write_cache(todoist, [{'id': 1}])
        with pytest.raises(DestinationError):
            todoist.fetch_all()

    def test_not_a_list(self, todoist):
        write_cache(todoist, {'tasks': []})
        with pytest.raises(DestinationError):
            todoist.fetch_all()


class TestMutations:

    def test_create_update_move_delete(self, todoist):
        task_id = todoist.create(Task(title="Buy milk", tags=["#groceries"], priority=Priority.LOW), "Groceries")

        stored = json.loads(todoist.cache_file.read_text(encoding='utf-8'))
        assert stored[0]['id'] == task_id
        assert stored[0]['labels'] == ["groceries"]
        assert stored[0]['priority'] == 2

        todoist.update(task_id, Task(title="Buy oat milk", completed=True, completed_date=date(2026, 1, 3)))
        task, = todoist.fetch_all()
        assert task.title == "Buy oat milk"
        assert task.completed
        assert task.target_list == "Groceries"

        todoist.move(task_id, "Shopping")
        assert todoist.fetch_all()[0].target_list == "Shopping"

        todoist.delete(task_id)
        assert todoist.fetch_all() == []

    def test_unknown_id(self, todoist):
        with pytest.raises(DestinationError):
            todoist.update("missing", Task(title="x"))
        with pytest.raises(DestinationError):
            todoist.delete("missing")


def test_sync_into_cache_converges(obsidian, write_note, todoist, tmp_path):
    write_note("Tasks.md", "- [ ] Buy milk #groceries 🔽\n- [ ] Call mom 📅 2026-01-10\n")
    store = MappingStore(tmp_path / "state" / "sync_state.json")
    engine = SyncEngine(obsidian, todoist, store, SyncConfig())

    assert engine.run().created == 2
    assert {t.target_list for t in todoist.fetch_all()} == {"Groceries", "Inbox"}
    assert not engine.run().has_changes
