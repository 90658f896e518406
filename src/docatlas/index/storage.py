"""SQLite state database shared by the job, cache, fingerprint and collection stores."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from docatlas.models import IndexMetadata

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class MetadataCorruptError(RuntimeError):
    """The stored metadata document exists but cannot be parsed."""


class SQLiteStateStore:
    """Persistence layer for coordination state.

    One connection is shared by every worker thread; ``_lock`` serializes
    access so each ``transaction()`` block is an atomic read-modify-write.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; nested blocks join the outermost transaction."""
        with self._lock:
            self._depth += 1
            try:
                yield self._conn
                if self._depth == 1:
                    self._conn.commit()
            except Exception:
                if self._depth == 1:
                    self._conn.rollback()
                raise
            finally:
                self._depth -= 1

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS search_cache (
                    key TEXT PRIMARY KEY,
                    query TEXT NOT NULL,
                    collection TEXT,
                    results TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    hit_count INTEGER NOT NULL DEFAULT 0,
                    max_results INTEGER NOT NULL DEFAULT 0,
                    schema_version INTEGER NOT NULL
                )
                """
            )
            cache_columns = {row["name"] for row in conn.execute("PRAGMA table_info(search_cache)")}
            if "max_results" not in cache_columns:
                conn.execute(
                    "ALTER TABLE search_cache ADD COLUMN max_results INTEGER NOT NULL DEFAULT 0"
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS index_state (
                    path TEXT PRIMARY KEY,
                    sha256 TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    modified_at TEXT NOT NULL,
                    indexed_at TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # Aggregate metadata document
    # ------------------------------------------------------------------

    def _read_metadata(self) -> IndexMetadata:
        with self._lock:
            row = self._conn.execute("SELECT payload FROM metadata WHERE id = 1").fetchone()
        if row is None:
            return IndexMetadata()
        try:
            return IndexMetadata.from_dict(json.loads(row["payload"]))
        except (ValueError, TypeError, AttributeError) as exc:
            raise MetadataCorruptError(f"Corrupt metadata document: {exc}") from exc

    def load_metadata(self) -> IndexMetadata:
        """Read the metadata document; an unreadable one reads as empty."""
        try:
            return self._read_metadata()
        except MetadataCorruptError as exc:
            LOGGER.warning("Ignoring %s", exc)
            return IndexMetadata()

    def save_metadata(self, metadata: IndexMetadata) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO metadata(id, payload) VALUES (1, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                (json.dumps(metadata.to_dict(), ensure_ascii=True),),
            )
        LOGGER.debug("Saved index metadata")

    def update_metadata(self, mutate: Callable[[IndexMetadata], T]) -> T:
        """Apply ``mutate`` to the metadata document and persist it atomically.

        Raises :class:`MetadataCorruptError` without writing anything when the
        stored document cannot be parsed, so it is never replaced by defaults.
        """
        with self.transaction():
            metadata = self._read_metadata()
            result = mutate(metadata)
            self.save_metadata(metadata)
            return result
