"""
Tests for the JSON-file record store.

Covers merge-on-write, append ordering, missing/corrupt documents,
shape enforcement, name sanitization and I/O fault propagation.
"""

import asyncio
import json

import pytest

from arbitra.config import StoreSettings
from arbitra.services.storage import (
    DocumentShapeError,
    InvalidFileNameError,
    JsonFileRecordStore,
    KeyedDocument,
    ListDocument,
    StorageIOError,
    merge_unique,
    sanitize_file_name,
)


class TestMergeOnWrite:
    """store() merges arrays and overwrites everything else."""

    def test_storing_same_array_twice_is_idempotent(self, store, run):
        async def scenario():
            await store.store("prefs", "peers", ["a", "b"])
            await store.store("prefs", "peers", ["a", "b"])
            return await store.get("prefs", "peers")

        assert run(scenario()) == ["a", "b"]

    def test_arrays_merge_as_union(self, store, run):
        async def scenario():
            await store.store("prefs", "nums", [1, 2])
            await store.store("prefs", "nums", [2, 3])
            return await store.get("prefs", "nums")

        result = run(scenario())
        assert sorted(result) == [1, 2, 3]
        assert len(result) == 3

    def test_scalar_values_overwrite(self, store, run):
        async def scenario():
            await store.store("prefs", "name", "x")
            await store.store("prefs", "name", "y")
            return await store.get("prefs", "name")

        assert run(scenario()) == "y"

    def test_array_replaces_scalar(self, store, run):
        async def scenario():
            await store.store("prefs", "k", "x")
            await store.store("prefs", "k", [1])
            return await store.get("prefs", "k")

        assert run(scenario()) == [1]

    def test_equal_objects_collapse_in_union(self, store, run):
        async def scenario():
            await store.store("prefs", "objs", [{"a": 1}])
            await store.store("prefs", "objs", [{"a": 1}, {"b": 2}])
            return await store.get("prefs", "objs")

        assert run(scenario()) == [{"a": 1}, {"b": 2}]

    def test_other_keys_are_kept(self, store, run):
        async def scenario():
            await store.store("prefs", "a", 1)
            await store.store("prefs", "b", 2)
            return await store.read_document("prefs")

        assert run(scenario()) == {"a": 1, "b": 2}

    def test_non_string_key_rejected(self, store, run):
        with pytest.raises(TypeError):
            run(store.store("prefs", 1, "x"))

    def test_merge_unique_keeps_first_seen_order(self):
        assert merge_unique([3, 1], [1, 2, 3, 4]) == [3, 1, 2, 4]


class TestAppend:
    """append() keeps insertion order and never de-duplicates."""

    def test_append_order(self, store, run):
        r1 = {"sender": "a", "receiver": "b", "amount": 1, "time": 1}
        r2 = {"sender": "b", "receiver": "a", "amount": 2, "time": 2}

        async def scenario():
            await store.append("recenttx", r1)
            await store.append("recenttx", r2)
            return await store.read_list("recenttx")

        assert run(scenario()) == [r1, r2]

    def test_append_does_not_deduplicate(self, store, run):
        async def scenario():
            await store.append("log", {"x": 1})
            await store.append("log", {"x": 1})
            return await store.read_list("log")

        assert run(scenario()) == [{"x": 1}, {"x": 1}]

    def test_concurrent_appends_lose_nothing(self, store, run):
        async def scenario():
            await asyncio.gather(*(store.append("log", i) for i in range(25)))
            return await store.read_list("log")

        result = run(scenario())
        assert sorted(result) == list(range(25))

    def test_locks_released_after_use(self, store, run):
        async def scenario():
            await asyncio.gather(
                *(store.append("log", i) for i in range(10)),
                *(store.store("prefs", f"k{i}", i) for i in range(10)),
            )
            return dict(store._locks)

        assert run(scenario()) == {}
        assert sorted(run(store.read_list("log"))) == list(range(10))


class TestReads:
    """Missing documents and keys fall back instead of failing."""

    def test_get_missing_file_returns_none(self, store, run):
        assert run(store.get("nothing", "nokey")) is None

    def test_get_missing_file_returns_fallback(self, store, run):
        assert run(store.get("nothing", "nokey", fallback=[])) == []

    def test_get_missing_key_returns_fallback(self, store, run):
        async def scenario():
            await store.store("prefs", "a", 1)
            return await store.get("prefs", "b", fallback="default")

        assert run(scenario()) == "default"

    def test_get_all_missing_returns_fallback(self, store, run):
        assert run(store.get_all("nothing")) is None
        assert run(store.get_all("nothing", fallback="[]")) == "[]"

    def test_get_all_returns_raw_content(self, store, run):
        async def scenario():
            await store.append("recenttx", {"a": 1})
            return await store.get_all("recenttx")

        raw = run(scenario())
        assert isinstance(raw, str)
        assert raw == '[{"a":1}]'

    def test_get_all_decodes_invalid_bytes_leniently(self, store, run):
        store.data_dir.mkdir(parents=True, exist_ok=True)
        store.path_for("notes").write_bytes(b"[\"caf\xff\"]")
        assert run(store.get_all("notes", fallback="fb")) == "[\"caf\ufffd\"]"

    def test_document_path_layout(self, store, store_settings, run):
        run(store.store("prefs", "a", 1))
        path = store_settings.app_data_root / "arbitra-test" / "prefs.json"
        assert path.exists()
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": 1}

    def test_documents_survive_new_store_instance(self, store, store_settings, run):
        run(store.store("prefs", "a", [1, 2]))
        again = JsonFileRecordStore(store_settings)
        assert run(again.get("prefs", "a")) == [1, 2]

    def test_no_temp_files_left_behind(self, store, run):
        async def scenario():
            for i in range(5):
                await store.append("log", i)
                await store.store("prefs", "k", i)

        run(scenario())
        names = sorted(p.name for p in store.data_dir.iterdir())
        assert names == ["log.json", "prefs.json"]


class TestStoreAll:
    """store_all() overwrites the whole document."""

    def test_store_all_replaces_document(self, store, run):
        async def scenario():
            await store.store("prefs", "a", [1])
            await store.store_all("prefs", {"c": 2})
            return await store.read_document("prefs")

        assert run(scenario()) == {"c": 2}

    def test_store_all_list_document(self, store, run):
        async def scenario():
            await store.append("log", 1)
            await store.store_all("log", [9, 8])
            return await store.read_list("log")

        assert run(scenario()) == [9, 8]

    def test_store_all_rejects_scalars(self, store, run):
        with pytest.raises(TypeError):
            run(store.store_all("prefs", 42))


class TestCorruptDocuments:
    """Unparseable content is discarded on write, ignored on read."""

    def _corrupt(self, store, name, content="not json {"):
        store.data_dir.mkdir(parents=True, exist_ok=True)
        store.path_for(name).write_text(content, encoding="utf-8")

    def test_store_replaces_corrupt_document(self, store, run):
        self._corrupt(store, "prefs")
        run(store.store("prefs", "k", "v"))
        assert run(store.read_document("prefs")) == {"k": "v"}

    def test_append_replaces_corrupt_document(self, store, run):
        self._corrupt(store, "log")
        run(store.append("log", {"r": 1}))
        assert run(store.read_list("log")) == [{"r": 1}]

    def test_get_on_corrupt_returns_fallback(self, store, run):
        self._corrupt(store, "prefs")
        assert run(store.get("prefs", "k", fallback="fb")) == "fb"

    def test_scalar_json_counts_as_corrupt(self, store, run):
        self._corrupt(store, "prefs", "42")
        run(store.store("prefs", "k", "v"))
        assert run(store.read_document("prefs")) == {"k": "v"}

    def test_undecodable_bytes_count_as_corrupt(self, store, run):
        store.data_dir.mkdir(parents=True, exist_ok=True)
        store.path_for("prefs").write_bytes(b"\xff\xfe\x00garbage")
        run(store.store("prefs", "k", "v"))
        assert run(store.read_document("prefs")) == {"k": "v"}


class TestDocumentShapes:
    """A name is a keyed document or a list document, never both."""

    def test_append_after_store_rejected(self, store, run):
        run(store.store("mixed", "k", 1))
        with pytest.raises(DocumentShapeError):
            run(store.append("mixed", 1))

    def test_list_content_rejected_for_keyed_access(self, store, store_settings, run):
        run(store.append("log", 1))
        fresh = JsonFileRecordStore(store_settings)
        with pytest.raises(DocumentShapeError):
            run(fresh.store("log", "k", 1))

    def test_object_content_rejected_for_append(self, store, store_settings, run):
        run(store.store("prefs", "k", 1))
        fresh = JsonFileRecordStore(store_settings)
        with pytest.raises(DocumentShapeError):
            run(fresh.append("prefs", 1))

    def test_typed_handles(self, store, run):
        prefs = store.keyed_document("prefs")
        log = store.list_document("log")
        assert isinstance(prefs, KeyedDocument)
        assert isinstance(log, ListDocument)

        async def scenario():
            await prefs.store("peers", ["10.0.0.2"])
            await log.append({"n": 1})
            return await prefs.get("peers"), await log.records()

        assert run(scenario()) == (["10.0.0.2"], [{"n": 1}])

    def test_handle_shape_conflict(self, store):
        store.keyed_document("prefs")
        with pytest.raises(DocumentShapeError):
            store.list_document("prefs")


class TestFileNames:
    """Document names are reduced to path-safe identifiers."""

    def test_traversal_is_neutralized(self):
        assert sanitize_file_name("../etc/passwd") == "_etc_passwd"

    def test_spaces_replaced(self):
        assert sanitize_file_name("recent tx") == "recent_tx"

    def test_plain_name_unchanged(self):
        assert sanitize_file_name("recenttx") == "recenttx"

    @pytest.mark.parametrize("name", ["", "   ", "..", "."])
    def test_empty_names_rejected(self, name):
        with pytest.raises(InvalidFileNameError):
            sanitize_file_name(name)

    def test_sanitized_path_stays_in_namespace(self, store):
        path = store.path_for("../../outside")
        assert path.parent == store.data_dir


class TestIOFaults:
    """Failures other than "does not exist" propagate."""

    def test_unreadable_document_raises(self, store, run):
        store.path_for("broken").mkdir(parents=True)
        with pytest.raises(StorageIOError):
            run(store.get("broken", "k"))

    def test_store_over_unreadable_document_raises(self, store, run):
        store.path_for("broken").mkdir(parents=True)
        with pytest.raises(StorageIOError):
            run(store.store("broken", "k", 1))

    def test_unwritable_root_raises(self, tmp_path, run):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        store = JsonFileRecordStore(StoreSettings(app_data_root=blocker))
        with pytest.raises(StorageIOError):
            run(store.append("log", 1))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
