"""Cache-through search interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from docatlas.engine.pageindex import EngineError, PageIndexClient
from docatlas.index.cache import DEFAULT_TTL_SECONDS, SearchCacheStore
from docatlas.models import SearchHit

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchOutcome:
    query: str
    collection: Optional[str]
    results: List[SearchHit] = field(default_factory=list)
    cached: bool = False
    error: Optional[str] = None

    @property
    def engine_unavailable(self) -> bool:
        return self.error is not None


class Searcher:
    """High-level API that consults the cache before the engine."""

    def __init__(
        self,
        engine: PageIndexClient,
        cache: SearchCacheStore,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        cache_enabled: bool = True,
        default_max_results: int = 5,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.ttl = ttl
        self.cache_enabled = cache_enabled
        self.default_max_results = default_max_results

    def search(
        self,
        query: str,
        *,
        collection: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> SearchOutcome:
        text = (query or "").strip()
        if not text:
            raise ValueError("Empty query")
        limit = self.default_max_results if max_results is None else max_results
        if limit < 1:
            raise ValueError("max_results must be at least 1")

        if self.cache_enabled:
            entry = self.cache.get(text, collection, limit=limit)
            if entry is not None:
                LOGGER.debug("Cache hit for %r (%d hits)", text, entry.hit_count)
                return SearchOutcome(text, collection, entry.results[:limit], cached=True)

        try:
            hits = self.engine.search(text, collection, limit)
        except EngineError as exc:
            LOGGER.warning("Search failed for %r: %s", text, exc)
            return SearchOutcome(text, collection, error=str(exc))

        if self.cache_enabled:
            self.cache.put(text, collection, hits, ttl=self.ttl, max_results=limit)
        return SearchOutcome(text, collection, list(hits))
