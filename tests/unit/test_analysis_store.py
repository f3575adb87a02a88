"""Unit tests for AnalysisStore and the blob storages behind it."""

import json

import pytest

from whytree.core.models import ROLE_ASSISTANT, ROLE_USER, Analysis, Message
from whytree.storage.analysis_store import (
    STORAGE_KEY,
    AnalysisStore,
    deserialize_analyses,
    serialize_analyses,
)
from whytree.storage.blob import FileBlobStorage, InMemoryBlobStorage


def make_analysis(analysis_id, updated_at, tree="graph TD; A-->B"):
    return Analysis(
        id=analysis_id,
        title=f"Problem {analysis_id}",
        messages=[
            Message(id=f"{analysis_id}-m1", role=ROLE_USER, content=f"Problem {analysis_id}", timestamp=100),
            Message(id=f"{analysis_id}-m2", role=ROLE_ASSISTANT, content="Why?", timestamp=200),
        ],
        tree_artifact=tree,
        created_at=100,
        updated_at=updated_at,
    )


class BrokenStorage(InMemoryBlobStorage):
    def set(self, key, value):
        raise OSError("disk full")

    def remove(self, key):
        raise OSError("read-only")


class TestLoad:
    def test_missing_blob_is_empty(self):
        store = AnalysisStore(InMemoryBlobStorage())
        assert store.analyses == []
        assert store.error is None

    def test_corrupt_blob_is_empty(self):
        store = AnalysisStore(InMemoryBlobStorage({STORAGE_KEY: "{not json"}))
        assert store.analyses == []

    def test_non_list_blob_is_empty(self):
        store = AnalysisStore(InMemoryBlobStorage({STORAGE_KEY: '{"id": "a"}'}))
        assert store.analyses == []

    def test_sorted_newest_first(self):
        blob = serialize_analyses([make_analysis("old", 1000), make_analysis("new", 3000), make_analysis("mid", 2000)])
        store = AnalysisStore(InMemoryBlobStorage({STORAGE_KEY: blob}))
        assert [a.id for a in store.analyses] == ["new", "mid", "old"]

    def test_malformed_records_are_skipped(self):
        good = make_analysis("good", 1000).to_dict()
        blob = json.dumps([good, {"id": "no-timestamps"}, "junk"])
        store = AnalysisStore(InMemoryBlobStorage({STORAGE_KEY: blob}))
        assert [a.id for a in store.analyses] == ["good"]


class TestSave:
    def test_save_then_load(self):
        storage = InMemoryBlobStorage()
        store = AnalysisStore(storage)
        analysis = make_analysis("a1", 5000)

        assert store.save(analysis) is True

        reloaded = AnalysisStore(storage).load()
        assert reloaded == [analysis]

    def test_most_recent_first(self):
        store = AnalysisStore(InMemoryBlobStorage())
        store.save(make_analysis("a1", 1000))
        store.save(make_analysis("a2", 2000))
        assert [a.id for a in store.load()] == ["a2", "a1"]

    def test_upsert_replaces_by_id(self):
        store = AnalysisStore(InMemoryBlobStorage())
        store.save(make_analysis("a1", 1000, tree="graph TD; old"))
        store.save(make_analysis("a2", 2000))
        store.save(make_analysis("a1", 3000, tree="graph TD; new"))

        assert [a.id for a in store.analyses] == ["a1", "a2"]
        assert store.get_by_id("a1").tree_artifact == "graph TD; new"

    def test_save_copies_by_value(self):
        store = AnalysisStore(InMemoryBlobStorage())
        live = make_analysis("a1", 1000)
        store.save(live)
        live.append(Message.create(ROLE_USER, "more"))
        assert len(store.get_by_id("a1").messages) == 2

    def test_write_failure_keeps_previous_state(self):
        storage = InMemoryBlobStorage()
        AnalysisStore(storage).save(make_analysis("a1", 1000))

        store = AnalysisStore(BrokenStorage(storage.blobs))
        assert store.save(make_analysis("a2", 2000)) is False
        assert store.error
        assert [a.id for a in store.analyses] == ["a1"]


class TestDelete:
    def test_delete_then_get_is_absent(self):
        store = AnalysisStore(InMemoryBlobStorage())
        store.save(make_analysis("a1", 1000))
        store.save(make_analysis("a2", 2000))

        assert store.delete("a1") is True
        assert store.get_by_id("a1") is None
        assert [a.id for a in store.load()] == ["a2"]

    def test_delete_unknown_id_is_noop(self):
        store = AnalysisStore(InMemoryBlobStorage())
        store.save(make_analysis("a1", 1000))
        assert store.delete("missing") is True
        assert store.error is None
        assert [a.id for a in store.analyses] == ["a1"]

    def test_clear_removes_blob(self):
        storage = InMemoryBlobStorage()
        store = AnalysisStore(storage)
        store.save(make_analysis("a1", 1000))

        assert store.clear() is True
        assert store.analyses == []
        assert storage.get(STORAGE_KEY) is None

    def test_clear_failure_is_reported(self):
        storage = InMemoryBlobStorage()
        AnalysisStore(storage).save(make_analysis("a1", 1000))
        store = AnalysisStore(BrokenStorage(storage.blobs))

        assert store.clear() is False
        assert store.error
        assert len(store.analyses) == 1


class TestLookup:
    def test_find_by_prefix(self):
        store = AnalysisStore(InMemoryBlobStorage())
        store.save(make_analysis("abc-1", 1000))
        store.save(make_analysis("abd-2", 2000))
        assert [a.id for a in store.find_by_prefix("abc")] == ["abc-1"]
        assert len(store.find_by_prefix("ab")) == 2


class TestBlobFormat:
    def test_round_trip(self):
        analyses = [make_analysis("a1", 1000), make_analysis("a2", 2000, tree=None)]
        assert deserialize_analyses(serialize_analyses(analyses)) == analyses

    def test_non_ascii_preserved(self):
        analysis = make_analysis("a1", 1000, tree="graph TD; A[締め切り] --> B[多忙]")
        assert deserialize_analyses(serialize_analyses([analysis]))[0].tree_artifact == analysis.tree_artifact


class TestFileBlobStorage:
    def test_set_get_remove(self, tmp_path):
        storage = FileBlobStorage(tmp_path / "data")
        assert storage.get(STORAGE_KEY) is None

        storage.set(STORAGE_KEY, "[]")
        assert storage.get(STORAGE_KEY) == "[]"
        assert storage.path_for(STORAGE_KEY).name == f"{STORAGE_KEY}.json"

        storage.remove(STORAGE_KEY)
        assert storage.get(STORAGE_KEY) is None
        storage.remove(STORAGE_KEY)  # idempotent

    def test_no_temp_files_left_behind(self, tmp_path):
        storage = FileBlobStorage(tmp_path)
        storage.set(STORAGE_KEY, "[1]")
        storage.set(STORAGE_KEY, "[2]")
        assert [p.name for p in tmp_path.iterdir()] == [f"{STORAGE_KEY}.json"]

    def test_invalid_key_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            FileBlobStorage(tmp_path).path_for("../..")

    def test_store_on_disk(self, tmp_path):
        store = AnalysisStore(FileBlobStorage(tmp_path))
        store.save(make_analysis("a1", 1000))
        assert AnalysisStore(FileBlobStorage(tmp_path)).get_by_id("a1") == make_analysis("a1", 1000)
