"""Facade tying the job, cache, fingerprint and collection stores together."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from docatlas.config import AppConfig
from docatlas.engine.pageindex import EngineError, PageIndexClient
from docatlas.index.cache import SearchCacheStore
from docatlas.index.collections import CollectionRegistry
from docatlas.index.fingerprints import IndexStateStore
from docatlas.index.indexer import Indexer, IndexStats, find_documents
from docatlas.index.jobs import JobStore
from docatlas.index.search import SearchOutcome, Searcher
from docatlas.index.sharding import plan_shards, upsert_shard
from docatlas.index.storage import SQLiteStateStore
from docatlas.models import (
    CacheStats,
    CollectionShard,
    DocumentCollection,
    IndexJob,
    JobStatus,
    SearchHit,
    format_timestamp,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

SHUTDOWN_MESSAGE = "Interrupted by shutdown"
RECOVERED_MESSAGE = "Interrupted: the process exited before the job finished"


class Coordinator:
    """Single entry point used by the CLI and the web API.

    Indexing jobs run on a thread pool of ``max_concurrent_jobs`` workers; the
    pool's queue doubles as the admission queue, so a job submitted while
    every worker is busy stays ``pending`` until one frees up.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: SQLiteStateStore | None = None,
        engine: PageIndexClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or SQLiteStateStore(self.config.db_path(Path.cwd()))
        self.engine = engine or PageIndexClient(
            self.config.pageindex_path,
            build_timeout=self.config.build_timeout,
            search_timeout=self.config.search_timeout,
            probe_timeout=self.config.probe_timeout,
        )
        self.fingerprints = IndexStateStore(self.store)
        self.cache = SearchCacheStore(self.store, clock=clock)
        self.jobs = JobStore(self.store)
        self.collections = CollectionRegistry(self.store)
        self.indexer = Indexer(self.engine, self.fingerprints, self.jobs)
        self.searcher = Searcher(
            self.engine,
            self.cache,
            ttl=self.config.cache_ttl,
            cache_enabled=self.config.cache_enabled,
            default_max_results=self.config.max_results,
        )

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_jobs,
            thread_name_prefix="docatlas-index",
        )
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()
        self._submit_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._closed = False

    def __enter__(self) -> "Coordinator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def start_index_job(
        self,
        path: Path | str,
        collection: Optional[str] = None,
        *,
        incremental: bool = True,
        shard_name: Optional[str] = None,
    ) -> str:
        """Persist a pending job and hand it to the worker pool.

        A job whose submission is refused by the pool is marked cancelled so
        it never lingers as pending.
        """
        if path is None or not str(path).strip():
            raise ValueError("Path required")
        if shard_name and not collection:
            raise ValueError("A shard name requires a collection")
        target = Path(str(path).strip()).expanduser().resolve()
        if not target.exists():
            raise FileNotFoundError(f"Path not found: {target}")

        with self._submit_lock:
            if self._closed:
                raise RuntimeError("Coordinator is closed")
            job_id = self.jobs.create(
                str(target), collection, incremental=incremental, shard_name=shard_name
            )
            try:
                future = self._executor.submit(self._run_job, job_id)
            except RuntimeError:
                self.jobs.update(job_id, status=JobStatus.CANCELLED, error=SHUTDOWN_MESSAGE)
                raise
            with self._futures_lock:
                self._futures[job_id] = future
        future.add_done_callback(lambda done, jid=job_id: self._forget(jid, done))
        return job_id

    def _forget(self, job_id: str, future: Future) -> None:
        with self._futures_lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]
        if not future.cancelled() and future.exception() is not None:
            LOGGER.error("Worker for job %s crashed: %s", job_id, future.exception())

    def _run_job(self, job_id: str) -> None:
        job = self.jobs.update(job_id, status=JobStatus.RUNNING)
        if job is None:
            LOGGER.info("Job %s ended before it started", job_id)
            return

        try:
            paths = find_documents(Path(job.target_path), self.config.supported_extensions)
            self.jobs.update(job_id, total_documents=len(paths))
            LOGGER.info("Job %s: %d documents under %s", job_id, len(paths), job.target_path)

            stats = self.indexer.index(
                job_id,
                paths,
                incremental=job.incremental,
                should_stop=self._shutdown.is_set,
            )
            if stats.interrupted:
                self.jobs.update(job_id, status=JobStatus.CANCELLED, error=SHUTDOWN_MESSAGE)
                return
            if stats.cancelled:
                return
            if paths and stats.failed == len(paths):
                self.jobs.update(
                    job_id,
                    status=JobStatus.FAILED,
                    error=f"All {len(paths)} documents failed to index",
                )
                return

            if job.collection:
                self._record_collection(job, stats)
            self.jobs.update(job_id, status=JobStatus.COMPLETED)
            LOGGER.info(
                "Job %s: new %d, changed %d, unchanged %d, failed %d",
                job_id,
                stats.inserted,
                stats.updated,
                stats.skipped,
                stats.failed,
            )
        except Exception as exc:
            LOGGER.exception("Indexing job %s failed", job_id)
            self.jobs.update(job_id, status=JobStatus.FAILED, error=str(exc))

    def _record_collection(self, job: IndexJob, stats: IndexStats) -> None:
        name = job.collection
        collection = self.collections.get(name)
        if collection is None:
            collection = self.collections.register(name, job.target_path)

        documents = stats.succeeded_files
        if job.shard_name:
            shard = CollectionShard(
                name=job.shard_name,
                range=job.shard_name,
                count=len(documents),
                path=job.target_path,
            )
            shards = upsert_shard(collection.shards, shard)
            self.collections.update_stats(
                name, sum(s.count for s in shards), shards=shards, is_sharded=True
            )
        else:
            shards = plan_shards(documents, self.config.shard_threshold)
            if shards:
                LOGGER.info("Collection %s split into %d shards", name, len(shards))
            self.collections.update_stats(
                name, len(documents), shards=shards, is_sharded=bool(shards)
            )

    def get_job_status(self, job_id: str) -> Optional[IndexJob]:
        return self.jobs.load(job_id)

    def list_jobs(self) -> List[IndexJob]:
        return self.jobs.list()

    def cancel_job(self, job_id: str) -> Optional[IndexJob]:
        """Request cancellation; returns the job, or ``None`` if it is unknown.

        Cancelling a job that already finished leaves it untouched.
        """
        job = self.jobs.load(job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            return job

        updated = self.jobs.update(job_id, status=JobStatus.CANCELLED, error="Cancelled by request")
        if updated is None:
            return self.jobs.load(job_id)

        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.cancel()
        LOGGER.info("Cancelled job %s", job_id)
        return updated

    def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[IndexJob]:
        """Block until the job's worker finishes (or ``timeout`` elapses)."""
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is not None:
            wait([future], timeout=timeout)
        return self.jobs.load(job_id)

    def recover_interrupted_jobs(self) -> List[str]:
        """Fail jobs left pending or running by a process that went away."""
        recovered: List[str] = []
        with self._futures_lock:
            owned = set(self._futures)
        for job_id in self.jobs.active_job_ids():
            if job_id in owned:
                continue
            job = self.jobs.load(job_id)
            if job is None or job.status.is_terminal:
                self.jobs.discard_active(job_id)
                continue
            if self.jobs.update(job_id, status=JobStatus.FAILED, error=RECOVERED_MESSAGE):
                LOGGER.warning("Marked interrupted job %s as failed", job_id)
                recovered.append(job_id)
        return recovered

    # ------------------------------------------------------------------
    # Search and cache
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        collection: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> SearchOutcome:
        return self.searcher.search(query, collection=collection, max_results=max_results)

    def iter_search(
        self,
        query: str,
        collection: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> Iterator[SearchHit]:
        """Search and hand results back one at a time.

        Raises :class:`EngineError` up front when the engine could not answer.
        """
        outcome = self.search(query, collection, max_results)
        if outcome.error is not None:
            raise EngineError(outcome.error)
        return iter(outcome.results)

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self, *, expired_only: bool = False) -> int:
        if expired_only:
            return self.cache.purge_expired()
        return self.cache.clear_all()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def register_collection(
        self,
        name: str,
        path: Path | str,
        *,
        shards: Optional[Sequence[CollectionShard]] = None,
        is_sharded: Optional[bool] = None,
    ) -> DocumentCollection:
        if path is None or not str(path).strip():
            raise ValueError("Path required")
        resolved = str(Path(str(path).strip()).expanduser().resolve())
        return self.collections.register(name, resolved, shards=shards, is_sharded=is_sharded)

    def update_collection_stats(
        self,
        name: str,
        document_count: int,
        *,
        shards: Optional[Sequence[CollectionShard]] = None,
        is_sharded: Optional[bool] = None,
    ) -> Optional[DocumentCollection]:
        return self.collections.update_stats(
            name, document_count, shards=shards, is_sharded=is_sharded
        )

    def list_collections(self) -> List[DocumentCollection]:
        return self.collections.list()

    def get_collection(self, name: str) -> Optional[DocumentCollection]:
        return self.collections.get(name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def probe_engine(self) -> bool:
        available = self.engine.probe()
        if not available:
            LOGGER.warning("PageIndex CLI not found - install with: pip install pageindex")
        return available

    def status(self) -> Dict[str, Any]:
        metadata = self.store.load_metadata()
        return {
            "engine_available": self.engine.available,
            "collections": len(metadata.collections),
            "total_documents": metadata.total_documents,
            "active_jobs": list(metadata.active_jobs),
            "completed_jobs": metadata.completed_jobs,
            "last_indexed_at": format_timestamp(metadata.last_indexed_at),
            "cache": self.cache.stats().to_dict(),
        }

    def close(self) -> None:
        """Stop workers at the next document boundary and close the store."""
        with self._submit_lock:
            if self._closed:
                return
            self._closed = True
            self._shutdown.set()
        with self._futures_lock:
            queued = dict(self._futures)
        self._executor.shutdown(wait=True, cancel_futures=True)
        for job_id, future in queued.items():
            if future.cancelled():
                self.jobs.update(job_id, status=JobStatus.CANCELLED, error=SHUTDOWN_MESSAGE)
        self.store.close()
