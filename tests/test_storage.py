"""Tests for SQLiteStateStore."""

import json
import sqlite3
from pathlib import Path

import pytest

from docatlas.index.collections import CollectionRegistry
from docatlas.index.jobs import JobStore
from docatlas.index.storage import MetadataCorruptError, SQLiteStateStore
from docatlas.models import IndexMetadata


class TestSQLiteStateStore:
    """Test SQLiteStateStore initialization and schema."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "nested" / "atlas.db"
        assert not db_path.exists()

        store = SQLiteStateStore(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    def test_schema_creation(self, state_store):
        """Test that every state table is created."""
        conn = state_store.connection
        for table in ("metadata", "jobs", "search_cache", "index_state"):
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            )
            assert cursor.fetchone() is not None

    def test_pragma_settings(self, state_store):
        """Test that PRAGMA settings are applied."""
        mode = state_store.connection.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"

    def test_reopen_keeps_data(self, tmp_path):
        db_path = tmp_path / "atlas.db"
        store = SQLiteStateStore(db_path)
        store.save_metadata(IndexMetadata(completed_jobs=4))
        store.close()

        reopened = SQLiteStateStore(db_path)
        assert reopened.load_metadata().completed_jobs == 4
        reopened.close()


class TestTransaction:
    """Test transaction semantics."""

    def test_rollback_on_error(self, state_store):
        with pytest.raises(RuntimeError):
            with state_store.transaction() as conn:
                conn.execute("INSERT INTO jobs(id, payload) VALUES ('a', '{}')")
                raise RuntimeError("boom")

        count = state_store.connection.execute("SELECT COUNT(*) FROM jobs").fetchone()[0]
        assert count == 0

    def test_nested_blocks_commit_once(self, state_store):
        """An error in the outer block also undoes the inner block's writes."""
        with pytest.raises(RuntimeError):
            with state_store.transaction():
                with state_store.transaction() as conn:
                    conn.execute("INSERT INTO jobs(id, payload) VALUES ('a', '{}')")
                raise RuntimeError("boom")

        count = state_store.connection.execute("SELECT COUNT(*) FROM jobs").fetchone()[0]
        assert count == 0


class TestMetadata:
    """Test the aggregate metadata document."""

    def test_missing_returns_defaults(self, state_store):
        assert state_store.load_metadata() == IndexMetadata()

    def test_save_and_load(self, state_store):
        state_store.save_metadata(IndexMetadata(total_documents=3, active_jobs=["job-1"]))
        loaded = state_store.load_metadata()
        assert loaded.total_documents == 3
        assert loaded.active_jobs == ["job-1"]

    def test_corrupt_document_returns_defaults(self, state_store):
        with state_store.transaction() as conn:
            conn.execute("INSERT INTO metadata(id, payload) VALUES (1, 'not json')")
        assert state_store.load_metadata() == IndexMetadata()

    def test_update_metadata_returns_mutator_result(self, state_store):
        def bump(metadata: IndexMetadata) -> int:
            metadata.cache_misses += 2
            return metadata.cache_misses

        assert state_store.update_metadata(bump) == 2
        assert state_store.update_metadata(bump) == 4
        assert state_store.load_metadata().cache_misses == 4

    def test_update_metadata_failure_leaves_document(self, state_store):
        state_store.save_metadata(IndexMetadata(completed_jobs=1))

        def broken(metadata: IndexMetadata) -> None:
            metadata.completed_jobs = 99
            raise ValueError("nope")

        with pytest.raises(ValueError):
            state_store.update_metadata(broken)
        assert state_store.load_metadata().completed_jobs == 1

    def test_corrupt_collection_does_not_wipe_document(self, state_store):
        registry = CollectionRegistry(state_store)
        jobs = JobStore(state_store)
        registry.register("good", "/g")
        job_id = jobs.create("/g")

        with state_store.transaction() as conn:
            row = conn.execute("SELECT payload FROM metadata WHERE id = 1").fetchone()
            payload = json.loads(row["payload"])
            payload["collections"]["bad"] = {"name": "bad", "path": 5}
            conn.execute("UPDATE metadata SET payload = ? WHERE id = 1", (json.dumps(payload),))

        registry.register("other", "/o")

        metadata = state_store.load_metadata()
        assert set(metadata.collections) == {"good", "other"}
        assert job_id in metadata.active_jobs

    def test_update_refuses_unparsable_document(self, state_store):
        with state_store.transaction() as conn:
            conn.execute("INSERT INTO metadata(id, payload) VALUES (1, 'not json')")

        with pytest.raises(MetadataCorruptError):
            state_store.update_metadata(lambda metadata: None)

        row = state_store.connection.execute("SELECT payload FROM metadata WHERE id = 1").fetchone()
        assert row["payload"] == "not json"

    def test_legacy_cache_table_gains_cap_column(self, tmp_path):
        db_path = tmp_path / "legacy.db"
        conn = sqlite3.connect(db_path)
        conn.execute(
            "CREATE TABLE search_cache (key TEXT PRIMARY KEY, query TEXT NOT NULL, collection TEXT, "
            "results TEXT NOT NULL, created_at TEXT NOT NULL, expires_at TEXT NOT NULL, "
            "hit_count INTEGER NOT NULL DEFAULT 0, schema_version INTEGER NOT NULL)"
        )
        conn.commit()
        conn.close()

        store = SQLiteStateStore(db_path)
        try:
            columns = {row["name"] for row in store.connection.execute("PRAGMA table_info(search_cache)")}
            assert "max_results" in columns
        finally:
            store.close()
