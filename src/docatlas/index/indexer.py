"""Incremental document indexing pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from docatlas.engine.pageindex import PageIndexClient
from docatlas.index.fingerprints import NEW, UNCHANGED, IndexStateStore, classify
from docatlas.index.jobs import JobStore
from docatlas.models import DocumentFingerprint, JobStatus, utcnow
from docatlas.utils.files import DEFAULT_EXTENSIONS, compute_sha256, iter_document_paths

LOGGER = logging.getLogger(__name__)


def find_documents(target: Path, extensions: Sequence[str] = DEFAULT_EXTENSIONS) -> list[Path]:
    """Find the documents a job should process.

    An explicitly named file is always included; directories are scanned
    recursively for supported extensions.
    """
    if target.is_file():
        return [target]
    return list(iter_document_paths([target], extensions))


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)
    failed_files: list[Path] = field(default_factory=list)
    cancelled: bool = False
    interrupted: bool = False

    @property
    def indexed(self) -> int:
        return self.inserted + self.updated

    @property
    def succeeded_files(self) -> list[Path]:
        failed = set(self.failed_files)
        return [path for path in self.processed_files if path not in failed]

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            self.failed_files.append(path)
        self.processed_files.append(path)


class Indexer:
    """Runs the per-document part of an indexing job.

    Each document is hashed, compared with its stored fingerprint, and sent
    to the engine only when new or changed (or always, for a full rebuild).
    A failure on one document is counted and the batch carries on.
    """

    def __init__(
        self,
        engine: PageIndexClient,
        fingerprints: IndexStateStore,
        jobs: JobStore,
    ) -> None:
        self.engine = engine
        self.fingerprints = fingerprints
        self.jobs = jobs

    def index(
        self,
        job_id: str,
        paths: Sequence[Path],
        *,
        incremental: bool = True,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> IndexStats:
        stats = IndexStats()
        started = time.monotonic()

        for path in paths:
            if should_stop():
                LOGGER.info("Stopping job %s before %s", job_id, path)
                stats.interrupted = True
                return stats
            if self._is_cancelled(job_id):
                LOGGER.info("Job %s cancelled, stopping before %s", job_id, path)
                stats.cancelled = True
                return stats

            try:
                LOGGER.info("Processing: %s", path)
                status = self._index_single(path, incremental=incremental)
            except Exception as exc:
                LOGGER.error("Failed to process %s: %s", path, exc)
                status = "failed"
            stats.increment(status, path)

            updated = self.jobs.update(
                job_id,
                processed_documents=stats.indexed,
                failed_documents=stats.failed,
                skipped_documents=stats.skipped,
                eta=_estimate_eta(started, len(stats.processed_files), len(paths)),
            )
            if updated is None:
                stats.cancelled = True
                return stats

        return stats

    def _is_cancelled(self, job_id: str) -> bool:
        job = self.jobs.load(job_id)
        return job is None or job.status is JobStatus.CANCELLED

    def _index_single(self, path: Path, *, incremental: bool) -> str:
        """Index a single document, returning its IndexStats status."""
        sha256 = compute_sha256(path)
        stat = path.stat()
        kind = classify(self.fingerprints.get(path), sha256)

        if kind == UNCHANGED and incremental:
            LOGGER.debug("Unchanged, skipping: %s", path)
            return "skipped"

        result = self.engine.build_index(path)
        if not result.success:
            LOGGER.warning("Engine failed to index %s: %s", path, result.error)
            return "failed"

        self.fingerprints.put(
            DocumentFingerprint(
                path=str(path),
                sha256=sha256,
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                indexed_at=utcnow(),
            )
        )
        return "inserted" if kind == NEW else "updated"


def _estimate_eta(started: float, done: int, total: int) -> Optional[datetime]:
    remaining = total - done
    if done <= 0 or remaining <= 0:
        return None
    per_document = (time.monotonic() - started) / done
    return utcnow() + timedelta(seconds=per_document * remaining)
