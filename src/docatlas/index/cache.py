"""TTL cache for search results with hit and miss accounting."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from docatlas.index.storage import SQLiteStateStore
from docatlas.models import (
    CACHE_SCHEMA_VERSION,
    CacheEntry,
    CacheStats,
    SearchHit,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


def cache_key(query: str, collection: Optional[str] = None) -> str:
    """Return the stable key for a query scoped to a collection (or all)."""
    scope = collection or "all"
    return hashlib.sha256(f"{query}\x00{scope}".encode("utf-8")).hexdigest()


class SearchCacheStore:
    """Search-result cache persisted in the ``search_cache`` table.

    Reads are lazy-evicting: an expired entry is deleted the first time it is
    looked up and reported as a miss. Hits and misses are counted in the
    shared metadata document so ``stats()`` can report a real hit rate.
    """

    def __init__(
        self,
        store: SQLiteStateStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.clock = clock

    def _row_to_entry(self, row) -> CacheEntry:
        if int(row["schema_version"]) != CACHE_SCHEMA_VERSION:
            raise ValueError(f"Unsupported cache schema version {row['schema_version']}")
        raw_results = json.loads(row["results"])
        if not isinstance(raw_results, list):
            raise ValueError("Cached results must be a list")
        return CacheEntry(
            query=row["query"],
            collection=row["collection"],
            results=[SearchHit.from_dict(item) for item in raw_results],
            created_at=parse_timestamp(row["created_at"]),
            expires_at=parse_timestamp(row["expires_at"]),
            hit_count=int(row["hit_count"]),
            max_results=int(row["max_results"]),
            schema_version=int(row["schema_version"]),
        )

    def _record_miss(self) -> None:
        def bump(metadata) -> None:
            metadata.cache_misses += 1

        self.store.update_metadata(bump)

    def _record_hit(self) -> None:
        def bump(metadata) -> None:
            metadata.cache_hits += 1

        self.store.update_metadata(bump)

    def get(
        self,
        query: str,
        collection: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Optional[CacheEntry]:
        """Return the live entry for a query, or ``None`` on a miss.

        With ``limit``, an entry fetched with a smaller cap than requested is
        a miss and stays in place until the caller overwrites it.
        """
        key = cache_key(query, collection)
        with self.store.transaction() as conn:
            row = conn.execute("SELECT * FROM search_cache WHERE key = ?", (key,)).fetchone()
            if row is None:
                self._record_miss()
                return None

            try:
                entry = self._row_to_entry(row)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Dropping corrupt cache entry %s: %s", key, exc)
                conn.execute("DELETE FROM search_cache WHERE key = ?", (key,))
                self._record_miss()
                return None

            if entry.is_expired(self.clock()):
                LOGGER.debug("Cache entry expired: %s", query)
                conn.execute("DELETE FROM search_cache WHERE key = ?", (key,))
                self._record_miss()
                return None

            if limit is not None and not entry.covers(limit):
                LOGGER.debug(
                    "Cache entry for %s holds %d of %d requested results",
                    query,
                    entry.max_results,
                    limit,
                )
                self._record_miss()
                return None

            entry.hit_count += 1
            conn.execute(
                "UPDATE search_cache SET hit_count = ? WHERE key = ?",
                (entry.hit_count, key),
            )
            self._record_hit()
        return entry

    def put(
        self,
        query: str,
        collection: Optional[str],
        results: Sequence[SearchHit],
        ttl: float = DEFAULT_TTL_SECONDS,
        max_results: Optional[int] = None,
    ) -> CacheEntry:
        """Store results fetched with cap ``max_results`` (default: their count)."""
        now = self.clock()
        entry = CacheEntry(
            query=query,
            collection=collection,
            results=list(results),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            max_results=len(results) if max_results is None else max_results,
        )
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO search_cache(
                    key, query, collection, results, created_at, expires_at, hit_count,
                    max_results, schema_version
                )
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    query = excluded.query,
                    collection = excluded.collection,
                    results = excluded.results,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at,
                    hit_count = 0,
                    max_results = excluded.max_results,
                    schema_version = excluded.schema_version
                """,
                (
                    cache_key(query, collection),
                    query,
                    collection,
                    json.dumps([hit.to_dict() for hit in entry.results], ensure_ascii=True),
                    format_timestamp(entry.created_at),
                    format_timestamp(entry.expires_at),
                    entry.max_results,
                    entry.schema_version,
                ),
            )
        LOGGER.debug("Cached search results: %s", query)
        return entry

    def delete(self, query: str, collection: Optional[str] = None) -> bool:
        with self.store.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM search_cache WHERE key = ?", (cache_key(query, collection),)
            )
        return cursor.rowcount > 0

    def clear_all(self) -> int:
        """Remove every entry, readable or not, and reset the hit and miss counters."""
        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM search_cache")
            deleted = cursor.rowcount

            def reset(metadata) -> None:
                metadata.cache_hits = 0
                metadata.cache_misses = 0

            self.store.update_metadata(reset)
        LOGGER.info("Cleared %d cache entries", deleted)
        return deleted

    def purge_expired(self) -> int:
        """Delete expired entries without touching live ones or the counters."""
        now = self.clock()
        removed = 0
        with self.store.transaction() as conn:
            for row in conn.execute("SELECT key, expires_at FROM search_cache").fetchall():
                try:
                    expired = now >= parse_timestamp(row["expires_at"])
                except (TypeError, ValueError):
                    continue
                if expired:
                    conn.execute("DELETE FROM search_cache WHERE key = ?", (row["key"],))
                    removed += 1
        LOGGER.info("Purged %d expired cache entries", removed)
        return removed

    def _live_entries(self) -> List[tuple[CacheEntry, int]]:
        now = self.clock()
        with self.store.transaction() as conn:
            rows = conn.execute("SELECT * FROM search_cache").fetchall()
        entries: List[tuple[CacheEntry, int]] = []
        for row in rows:
            try:
                entry = self._row_to_entry(row)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping corrupt cache entry %s: %s", row["key"], exc)
                continue
            if entry.is_expired(now):
                continue
            size = len(row["results"].encode("utf-8")) + len(row["query"].encode("utf-8"))
            entries.append((entry, size))
        return entries

    def stats(self) -> CacheStats:
        """Summarize live entries.

        Hit and miss totals are cumulative since the last ``clear_all`` and
        include lookups against entries that have since expired.
        """
        entries = self._live_entries()
        metadata = self.store.load_metadata()
        hits = metadata.cache_hits
        misses = metadata.cache_misses
        created = [entry.created_at for entry, _ in entries]
        total = hits + misses
        return CacheStats(
            entry_count=len(entries),
            total_hits=hits,
            total_misses=misses,
            hit_rate=hits / total if total else 0.0,
            size_bytes=sum(size for _, size in entries),
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
        )
