"""
Unit tests for the key-value stores and capped JSON lists.
"""

import json

from resilience.store import (
    InMemoryStore, JsonFileStore, read_json_list, append_capped, filter_json_list
)


class TestInMemoryStore:
    """Test the in-memory store."""

    def test_get_set_remove(self):
        store = InMemoryStore()
        assert store.get("missing") is None

        store.set("k", "v")
        assert store.get("k") == "v"
        assert store.keys() == ["k"]

        store.remove("k")
        store.remove("k")
        assert store.get("k") is None


class TestJsonFileStore:
    """Test the file-backed store."""

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).set("k", "v")

        assert JsonFileStore(path).get("k") == "v"
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "store.json"
        JsonFileStore(path).set("k", "v")
        assert path.exists()

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("not json")

        store = JsonFileStore(path)
        assert store.get("k") is None
        store.set("k", "v")
        assert JsonFileStore(path).get("k") == "v"

    def test_non_object_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2]")
        assert JsonFileStore(path).get("0") is None

    def test_remove(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.set("a", "1")
        store.set("b", "2")
        store.remove("a")

        assert JsonFileStore(path).get("a") is None
        assert JsonFileStore(path).get("b") == "2"


class TestJsonLists:
    """Test capped list helpers."""

    def test_append_capped_keeps_newest(self):
        store = InMemoryStore()
        for i in range(5):
            result = append_capped(store, "events", {'n': i}, capacity=3)

        assert result == [{'n': 2}, {'n': 3}, {'n': 4}]
        assert read_json_list(store, "events") == result

    def test_corrupt_list_reads_empty(self):
        store = InMemoryStore()
        store.set("events", "{broken")
        assert read_json_list(store, "events") == []

    def test_non_list_value_reads_empty(self):
        store = InMemoryStore()
        store.set("events", '{"a": 1}')
        assert read_json_list(store, "events") == []

    def test_filter(self):
        store = InMemoryStore()
        for i in range(4):
            append_capped(store, "events", {'n': i}, capacity=10)

        removed = filter_json_list(store, "events", lambda e: e['n'] % 2 == 0)

        assert removed == 2
        assert read_json_list(store, "events") == [{'n': 0}, {'n': 2}]
