"""
Tests for the mapping store
"""

import json
from datetime import datetime

import pytest

from reconciliation.state import CURRENT_STATE_VERSION, MappingStore


class TestMappingStore:
    """Lookup and mutation"""

    def test_upsert_replaces_existing_source(self, store):
        store.upsert("src-1", "dst-1", "h1", "d1")
        store.upsert("src-1", "dst-2", "h2", "d2")

        assert len(store) == 1
        mapping = store.find_by_source_id("src-1")
        assert mapping.destination_id == "dst-2"
        assert mapping.last_source_hash == "h2"

    def test_upsert_drops_other_mapping_for_same_destination(self, store):
        store.upsert("src-1", "dst-1", "h1", "d1")
        store.upsert("src-2", "dst-1", "h2", "d2")

        assert len(store) == 1
        assert store.find_by_source_id("src-1") is None
        assert store.find_by_destination_id("dst-1").source_id == "src-2"

    def test_remove_by_either_id(self, store):
        store.upsert("src-1", "dst-1", "h", "d")
        store.upsert("src-2", "dst-2", "h", "d")

        assert store.remove(source_id="src-1") == 1
        assert store.remove(destination_id="dst-2") == 1
        assert len(store) == 0

    def test_remove_requires_an_id(self, store):
        with pytest.raises(ValueError):
            store.remove()

    def test_drift_helpers(self, store):
        mapping = store.upsert("src-1", "dst-1", "h1", "d1")
        assert not mapping.source_changed("h1")
        assert mapping.source_changed("h9")
        assert mapping.destination_changed("d9")


class TestPersistence:
    """Save and load"""

    def test_round_trip(self, store):
        when = datetime(2026, 2, 1, 9, 30)
        store.upsert("src-1", "dst-1", "h1", "d1", when=when)
        store.last_sync = when
        store.save()

        loaded = MappingStore.load(store.path)
        assert len(loaded) == 1
        assert loaded.find_by_source_id("src-1").last_sync == when
        assert loaded.last_sync == when
        assert loaded.version == CURRENT_STATE_VERSION

    def test_save_leaves_no_temp_files(self, store):
        store.upsert("src-1", "dst-1", "h1", "d1")
        store.save()
        assert [p.name for p in store.path.parent.iterdir()] == [store.path.name]

    def test_missing_file_starts_empty(self, tmp_path):
        assert len(MappingStore.load(tmp_path / "nope.json")) == 0

    def test_old_version_resets(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            'version': CURRENT_STATE_VERSION - 1,
            'last_sync': None,
            'mappings': [{
                'source_id': 's', 'destination_id': 'd',
                'source_hash': 'h', 'destination_hash': 'h',
                'last_sync': '2026-01-01T00:00:00',
            }],
        }))
        assert len(MappingStore.load(path)) == 0

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert len(MappingStore.load(path)) == 0
