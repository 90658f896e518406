"""Tests for Indexer."""

from pathlib import Path

import pytest

from docatlas.index.fingerprints import IndexStateStore
from docatlas.index.indexer import Indexer, IndexStats, find_documents
from docatlas.index.jobs import JobStore
from docatlas.models import JobStatus


class TestIndexStats:
    """Test IndexStats tracking."""

    def test_init_defaults(self):
        """Test default initialization."""
        stats = IndexStats()
        assert stats.inserted == 0
        assert stats.updated == 0
        assert stats.skipped == 0
        assert stats.failed == 0
        assert stats.processed_files == []

    def test_increment_inserted(self):
        stats = IndexStats()
        path = Path("/tmp/test.pdf")

        stats.increment("inserted", path)

        assert stats.inserted == 1
        assert stats.indexed == 1
        assert path in stats.processed_files

    def test_increment_updated(self):
        stats = IndexStats()
        stats.increment("updated", Path("/tmp/test.pdf"))
        assert stats.updated == 1
        assert stats.indexed == 1

    def test_increment_skipped(self):
        stats = IndexStats()
        stats.increment("skipped", Path("/tmp/test.pdf"))
        assert stats.skipped == 1
        assert stats.indexed == 0

    def test_increment_failed(self):
        """Failures are tracked separately from successes."""
        stats = IndexStats()
        good = Path("/tmp/good.pdf")
        bad = Path("/tmp/bad.pdf")

        stats.increment("inserted", good)
        stats.increment("failed", bad)

        assert stats.failed == 1
        assert stats.failed_files == [bad]
        assert stats.succeeded_files == [good]


class TestFindDocuments:
    def test_explicit_file_always_included(self, tmp_path: Path):
        doc = tmp_path / "notes.unknown"
        doc.write_text("x")
        assert find_documents(doc) == [doc]

    def test_directory_filtered(self, docs: Path):
        assert len(find_documents(docs)) == 3


@pytest.fixture
def jobs(state_store) -> JobStore:
    return JobStore(state_store)


@pytest.fixture
def fingerprints(state_store) -> IndexStateStore:
    return IndexStateStore(state_store)


@pytest.fixture
def indexer(engine, fingerprints, jobs) -> Indexer:
    return Indexer(engine, fingerprints, jobs)


def _running_job(jobs: JobStore, target: Path) -> str:
    job_id = jobs.create(str(target))
    jobs.update(job_id, status=JobStatus.RUNNING)
    return job_id


class TestIndexer:
    """Test incremental indexing behaviour."""

    def test_first_run_indexes_everything(self, indexer, jobs, engine, docs):
        paths = find_documents(docs)
        job_id = _running_job(jobs, docs)

        stats = indexer.index(job_id, paths)

        assert stats.inserted == 3
        assert len(engine.built) == 3
        job = jobs.load(job_id)
        assert job.processed_documents == 3
        assert job.skipped_documents == 0

    def test_second_run_skips_unchanged(self, indexer, jobs, engine, docs):
        paths = find_documents(docs)
        indexer.index(_running_job(jobs, docs), paths)
        engine.built.clear()

        job_id = _running_job(jobs, docs)
        stats = indexer.index(job_id, paths)

        assert stats.skipped == 3
        assert engine.built == []
        assert jobs.load(job_id).skipped_documents == 3

    def test_changed_document_reindexed(self, indexer, jobs, engine, docs):
        paths = find_documents(docs)
        indexer.index(_running_job(jobs, docs), paths)
        engine.built.clear()
        (docs / "alpha.md").write_text("alpha, revised")

        stats = indexer.index(_running_job(jobs, docs), paths)

        assert stats.updated == 1
        assert stats.skipped == 2
        assert engine.built == [str(docs / "alpha.md")]

    def test_touch_without_content_change_is_unchanged(self, indexer, jobs, engine, docs):
        """Only the content hash decides whether a document changed."""
        paths = find_documents(docs)
        indexer.index(_running_job(jobs, docs), paths)
        target = docs / "beta.txt"
        target.write_text(target.read_text())

        stats = indexer.index(_running_job(jobs, docs), paths)
        assert stats.skipped == 3

    def test_full_rebuild_ignores_fingerprints(self, indexer, jobs, engine, docs):
        paths = find_documents(docs)
        indexer.index(_running_job(jobs, docs), paths)

        stats = indexer.index(_running_job(jobs, docs), paths, incremental=False)

        assert stats.updated == 3
        assert stats.skipped == 0

    def test_engine_failure_isolated(self, indexer, jobs, engine, fingerprints, docs):
        engine.fail_names = {"beta.txt"}
        paths = find_documents(docs)
        job_id = _running_job(jobs, docs)

        stats = indexer.index(job_id, paths)

        assert stats.inserted == 2
        assert stats.failed == 1
        assert fingerprints.get(docs / "beta.txt") is None
        assert jobs.load(job_id).failed_documents == 1

    def test_failed_document_retried_next_run(self, indexer, jobs, engine, docs):
        engine.fail_names = {"beta.txt"}
        paths = find_documents(docs)
        indexer.index(_running_job(jobs, docs), paths)
        engine.fail_names = set()

        stats = indexer.index(_running_job(jobs, docs), paths)
        assert stats.inserted == 1
        assert stats.skipped == 2

    def test_unreadable_document_counted_as_failed(self, indexer, jobs, docs):
        paths = find_documents(docs) + [docs / "vanished.md"]
        stats = indexer.index(_running_job(jobs, docs), paths)
        assert stats.failed == 1
        assert stats.inserted == 3

    def test_cancelled_job_stops_before_next_document(self, indexer, jobs, engine, docs):
        job_id = _running_job(jobs, docs)
        jobs.update(job_id, status=JobStatus.CANCELLED)

        stats = indexer.index(job_id, find_documents(docs))

        assert stats.cancelled is True
        assert engine.built == []

    def test_should_stop_interrupts(self, indexer, jobs, engine, docs):
        stats = indexer.index(_running_job(jobs, docs), find_documents(docs), should_stop=lambda: True)
        assert stats.interrupted is True
        assert engine.built == []

    def test_eta_cleared_on_last_document(self, indexer, jobs, docs):
        job_id = _running_job(jobs, docs)
        indexer.index(job_id, find_documents(docs))
        assert jobs.load(job_id).eta is None
