"""Persistent tracking of asynchronous indexing jobs."""

from __future__ import annotations

import dataclasses
import json
import logging
import secrets
import time
from typing import Any, List, Optional

from docatlas.index.storage import SQLiteStateStore
from docatlas.models import IndexJob, IndexMetadata, JobStatus, utcnow

LOGGER = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED},
    JobStatus.RUNNING: {
        JobStatus.RUNNING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    },
}

_JOB_FIELDS = {f.name for f in dataclasses.fields(IndexJob)}


def new_job_id() -> str:
    """Return an id whose lexical order follows creation time."""
    return f"job-{int(time.time() * 1000):013d}-{secrets.token_hex(3)}"


class JobStore:
    """Stores one JSON record per job plus the shared active-jobs list."""

    def __init__(self, store: SQLiteStateStore) -> None:
        self.store = store

    def create(
        self,
        target_path: str,
        collection: Optional[str] = None,
        *,
        incremental: bool = True,
        shard_name: Optional[str] = None,
    ) -> str:
        job = IndexJob(
            id=new_job_id(),
            target_path=target_path,
            collection=collection,
            incremental=incremental,
            shard_name=shard_name,
            created_at=utcnow(),
        )
        with self.store.transaction():
            while self.load(job.id) is not None:
                job.id = new_job_id()
            self.save(job)

            def add_active(metadata: IndexMetadata) -> None:
                if job.id not in metadata.active_jobs:
                    metadata.active_jobs.append(job.id)

            self.store.update_metadata(add_active)

        LOGGER.info("Created indexing job: %s", job.id)
        return job.id

    def save(self, job: IndexJob) -> None:
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO jobs(id, payload) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET payload = excluded.payload,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (job.id, json.dumps(job.to_dict(), ensure_ascii=True)),
            )

    def load(self, job_id: str) -> Optional[IndexJob]:
        with self.store.transaction() as conn:
            row = conn.execute("SELECT payload FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        try:
            return IndexJob.from_dict(json.loads(row["payload"]))
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring corrupt job record %s: %s", job_id, exc)
            return None

    def update(self, job_id: str, **fields: Any) -> Optional[IndexJob]:
        """Merge ``fields`` into a stored job.

        Returns the updated job, or ``None`` when the job is unknown or
        already terminal (terminal states are final, so late updates from a
        worker racing a cancellation are dropped).
        """
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        fields.pop("id", None)
        if "status" in fields:
            fields["status"] = JobStatus(fields["status"])

        with self.store.transaction():
            job = self.load(job_id)
            if job is None:
                return None
            if job.status.is_terminal:
                LOGGER.debug("Ignoring update to terminal job %s (%s)", job_id, job.status.value)
                return None

            new_status = fields.get("status", job.status)
            if new_status not in _ALLOWED_TRANSITIONS[job.status]:
                raise ValueError(
                    f"Invalid job transition {job.status.value} -> {new_status.value} for {job_id}"
                )
            if new_status is JobStatus.RUNNING and job.started_at is None:
                fields.setdefault("started_at", utcnow())
            if new_status.is_terminal:
                fields.setdefault("completed_at", utcnow())
                fields.setdefault("eta", None)

            updated = dataclasses.replace(job, **fields)
            self.save(updated)

            if updated.status.is_terminal:

                def finish(metadata: IndexMetadata) -> None:
                    metadata.active_jobs = [jid for jid in metadata.active_jobs if jid != job_id]
                    metadata.completed_jobs += 1

                self.store.update_metadata(finish)
                LOGGER.info("Job %s finished with status %s", job_id, updated.status.value)

        return updated

    def list(self) -> List[IndexJob]:
        with self.store.transaction() as conn:
            rows = conn.execute("SELECT id, payload FROM jobs ORDER BY id DESC").fetchall()
        jobs: List[IndexJob] = []
        for row in rows:
            try:
                jobs.append(IndexJob.from_dict(json.loads(row["payload"])))
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping corrupt job record %s: %s", row["id"], exc)
        return jobs

    def active_job_ids(self) -> List[str]:
        return list(self.store.load_metadata().active_jobs)

    def discard_active(self, job_id: str) -> None:
        """Drop an id from the active list without touching its record."""

        def remove(metadata: IndexMetadata) -> None:
            metadata.active_jobs = [jid for jid in metadata.active_jobs if jid != job_id]

        self.store.update_metadata(remove)
