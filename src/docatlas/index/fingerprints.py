"""Per-document fingerprints used for incremental change detection."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from docatlas.index.storage import SQLiteStateStore
from docatlas.models import DocumentFingerprint, format_timestamp, parse_timestamp

LOGGER = logging.getLogger(__name__)

NEW = "new"
CHANGED = "changed"
UNCHANGED = "unchanged"


def classify(existing: Optional[DocumentFingerprint], sha256: str) -> str:
    """Classify a document by comparing content hashes only."""
    if existing is None:
        return NEW
    if existing.sha256 == sha256:
        return UNCHANGED
    return CHANGED


class IndexStateStore:
    """Maps a document path to its last successfully indexed fingerprint."""

    def __init__(self, store: SQLiteStateStore) -> None:
        self.store = store

    @staticmethod
    def _key(path: Path | str) -> str:
        return str(Path(path).expanduser().absolute())

    def get(self, path: Path | str) -> Optional[DocumentFingerprint]:
        key = self._key(path)
        with self.store.transaction() as conn:
            row = conn.execute(
                "SELECT path, sha256, size, modified_at, indexed_at FROM index_state WHERE path = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        try:
            return DocumentFingerprint(
                path=row["path"],
                sha256=str(row["sha256"]),
                size=int(row["size"]),
                modified_at=parse_timestamp(row["modified_at"]),
                indexed_at=parse_timestamp(row["indexed_at"]),
            )
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring corrupt fingerprint for %s: %s", key, exc)
            return None

    def put(self, fingerprint: DocumentFingerprint) -> None:
        key = self._key(fingerprint.path)
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO index_state(path, sha256, size, modified_at, indexed_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    sha256 = excluded.sha256,
                    size = excluded.size,
                    modified_at = excluded.modified_at,
                    indexed_at = excluded.indexed_at
                """,
                (
                    key,
                    fingerprint.sha256,
                    fingerprint.size,
                    format_timestamp(fingerprint.modified_at),
                    format_timestamp(fingerprint.indexed_at),
                ),
            )

    def delete(self, path: Path | str) -> bool:
        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM index_state WHERE path = ?", (self._key(path),))
        return cursor.rowcount > 0

    def clear(self) -> int:
        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM index_state")
        LOGGER.info("Cleared %d fingerprints", cursor.rowcount)
        return cursor.rowcount

    def count(self) -> int:
        with self.store.transaction() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM index_state").fetchone()[0])
