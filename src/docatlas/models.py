"""Core DocAtlas data models."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Raises ``ValueError`` for anything that is neither ``None`` nor a valid
    timestamp so callers can treat the record as corrupt.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require_int(data: Dict[str, Any], key: str, default: int | None = None) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Invalid {key}: {value!r}")
    return value


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"Invalid {key}: {value!r}")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"Invalid {key}: {value!r}")
    return value


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass(slots=True)
class DocumentFingerprint:
    """Recorded indexed state of a single document."""

    path: str
    sha256: str
    size: int
    modified_at: datetime
    indexed_at: datetime


@dataclass(slots=True)
class SearchHit:
    """One result record returned by the retrieval engine."""

    content: str
    citation: str
    page: Optional[int] = None
    section: Optional[str] = None
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "citation": self.citation,
            "page": self.page,
            "section": self.section,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchHit":
        if not isinstance(data, dict):
            raise ValueError(f"Invalid search hit: {data!r}")
        page = data.get("page")
        if page is not None and (isinstance(page, bool) or not isinstance(page, int)):
            raise ValueError(f"Invalid page: {page!r}")
        score = data.get("score")
        if score is not None:
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                raise ValueError(f"Invalid score: {score!r}")
            score = float(score)
        return cls(
            content=_require_str(data, "content"),
            citation=_require_str(data, "citation"),
            page=page,
            section=_optional_str(data, "section"),
            score=score,
        )


@dataclass(slots=True)
class CacheEntry:
    """Memoized search results for a (query, collection) pair."""

    query: str
    collection: Optional[str]
    results: List[SearchHit]
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0
    max_results: int = 0
    schema_version: int = CACHE_SCHEMA_VERSION

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def covers(self, limit: int) -> bool:
        """Whether the stored results answer a request for ``limit`` results.

        True when the entry was fetched with at least that cap, or when the
        engine returned fewer results than it was asked for (the full set).
        """
        return self.max_results >= limit or len(self.results) < self.max_results


@dataclass(slots=True)
class IndexJob:
    """One asynchronous indexing run and its progress counters."""

    id: str
    target_path: str
    status: JobStatus = JobStatus.PENDING
    collection: Optional[str] = None
    total_documents: int = 0
    processed_documents: int = 0
    failed_documents: int = 0
    skipped_documents: int = 0
    shard_name: Optional[str] = None
    incremental: bool = True
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    eta: Optional[datetime] = None

    @property
    def handled_documents(self) -> int:
        return self.processed_documents + self.failed_documents + self.skipped_documents

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "target_path": self.target_path,
            "collection": self.collection,
            "total_documents": self.total_documents,
            "processed_documents": self.processed_documents,
            "failed_documents": self.failed_documents,
            "skipped_documents": self.skipped_documents,
            "shard_name": self.shard_name,
            "incremental": self.incremental,
            "created_at": format_timestamp(self.created_at),
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "error": self.error,
            "eta": format_timestamp(self.eta),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexJob":
        if not isinstance(data, dict):
            raise ValueError(f"Invalid job record: {data!r}")
        return cls(
            id=_require_str(data, "id"),
            target_path=_require_str(data, "target_path"),
            status=JobStatus(data.get("status")),
            collection=_optional_str(data, "collection"),
            total_documents=_require_int(data, "total_documents", 0),
            processed_documents=_require_int(data, "processed_documents", 0),
            failed_documents=_require_int(data, "failed_documents", 0),
            skipped_documents=_require_int(data, "skipped_documents", 0),
            shard_name=_optional_str(data, "shard_name"),
            incremental=bool(data.get("incremental", True)),
            created_at=parse_timestamp(data.get("created_at")),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            error=_optional_str(data, "error"),
            eta=parse_timestamp(data.get("eta")),
        )


@dataclass(slots=True)
class CollectionShard:
    """Independently addressable subset of a collection."""

    name: str
    range: str
    count: int
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "range": self.range, "count": self.count, "path": self.path}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionShard":
        return cls(
            name=_require_str(data, "name"),
            range=_require_str(data, "range"),
            count=_require_int(data, "count", 0),
            path=_require_str(data, "path"),
        )


@dataclass(slots=True)
class DocumentCollection:
    """Named, search-routable grouping of documents."""

    name: str
    path: str
    document_count: int = 0
    indexed_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    is_sharded: bool = False
    shards: List[CollectionShard] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "document_count": self.document_count,
            "indexed_at": format_timestamp(self.indexed_at),
            "modified_at": format_timestamp(self.modified_at),
            "is_sharded": self.is_sharded,
            "shards": [shard.to_dict() for shard in self.shards],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentCollection":
        return cls(
            name=_require_str(data, "name"),
            path=_require_str(data, "path"),
            document_count=_require_int(data, "document_count", 0),
            indexed_at=parse_timestamp(data.get("indexed_at")),
            modified_at=parse_timestamp(data.get("modified_at")),
            is_sharded=bool(data.get("is_sharded", False)),
            shards=[CollectionShard.from_dict(item) for item in data.get("shards") or []],
        )


@dataclass(slots=True)
class IndexMetadata:
    """Process-wide aggregate document shared by the stores."""

    collections: Dict[str, DocumentCollection] = field(default_factory=dict)
    total_documents: int = 0
    active_jobs: List[str] = field(default_factory=list)
    completed_jobs: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    last_indexed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collections": {name: coll.to_dict() for name, coll in self.collections.items()},
            "total_documents": self.total_documents,
            "active_jobs": list(self.active_jobs),
            "completed_jobs": self.completed_jobs,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "last_indexed_at": format_timestamp(self.last_indexed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexMetadata":
        """Parse the aggregate document.

        A malformed collection is logged and skipped; anything wrong with the
        document-level fields raises ``ValueError``.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Invalid metadata document: {data!r}")
        raw_collections = data.get("collections") or {}
        if not isinstance(raw_collections, dict):
            raise ValueError(f"Invalid collections: {raw_collections!r}")

        collections: Dict[str, DocumentCollection] = {}
        for name, raw in raw_collections.items():
            try:
                collections[name] = DocumentCollection.from_dict(raw)
            except (TypeError, ValueError, AttributeError) as exc:
                LOGGER.warning("Skipping corrupt collection %r: %s", name, exc)

        return cls(
            collections=collections,
            total_documents=_require_int(data, "total_documents", 0),
            active_jobs=[str(job_id) for job_id in data.get("active_jobs") or []],
            completed_jobs=_require_int(data, "completed_jobs", 0),
            cache_hits=_require_int(data, "cache_hits", 0),
            cache_misses=_require_int(data, "cache_misses", 0),
            last_indexed_at=parse_timestamp(data.get("last_indexed_at")),
        )


@dataclass(slots=True)
class CacheStats:
    entry_count: int = 0
    total_hits: int = 0
    total_misses: int = 0
    hit_rate: float = 0.0
    size_bytes: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_count": self.entry_count,
            "total_hits": self.total_hits,
            "total_misses": self.total_misses,
            "hit_rate": self.hit_rate,
            "size_bytes": self.size_bytes,
            "oldest_entry": format_timestamp(self.oldest_entry),
            "newest_entry": format_timestamp(self.newest_entry),
        }


@dataclass(slots=True)
class BuildResult:
    """Outcome of asking the engine to index one document."""

    success: bool
    document_path: str
    duration: float = 0.0
    node_count: Optional[int] = None
    error: Optional[str] = None
