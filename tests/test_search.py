"""Tests for the cache-through Searcher."""

import pytest

from docatlas.index.cache import SearchCacheStore
from docatlas.index.search import Searcher
from docatlas.models import SearchHit

HITS = [SearchHit(f"passage {i}", f"doc{i}.pdf", page=i, score=1.0 - i / 10) for i in range(5)]


@pytest.fixture
def cache(state_store, clock):
    return SearchCacheStore(state_store, clock=clock)


@pytest.fixture
def searcher(engine, cache):
    engine.hits = list(HITS)
    return Searcher(engine, cache, ttl=60)


class TestSearcher:
    """Test Searcher behaviour."""

    def test_empty_query_rejected(self, searcher):
        with pytest.raises(ValueError, match="Empty query"):
            searcher.search("   ")

    def test_invalid_limit_rejected(self, searcher):
        with pytest.raises(ValueError):
            searcher.search("query", max_results=0)

    def test_miss_then_hit(self, searcher, engine):
        first = searcher.search("query")
        second = searcher.search("query")

        assert first.cached is False
        assert second.cached is True
        assert second.results == first.results
        assert len(engine.searches) == 1

    def test_query_is_trimmed(self, searcher, engine):
        searcher.search("  query  ")
        outcome = searcher.search("query")
        assert outcome.cached is True
        assert engine.searches[0][0] == "query"

    def test_default_max_results(self, searcher, engine):
        outcome = searcher.search("query")
        assert len(outcome.results) == 5
        assert engine.searches[0][2] == 5

    def test_cached_results_sliced_to_limit(self, searcher):
        searcher.search("query", max_results=5)
        outcome = searcher.search("query", max_results=2)
        assert outcome.cached is True
        assert outcome.results == HITS[:2]

    def test_collection_passed_to_engine(self, searcher, engine):
        searcher.search("query", collection="manuals")
        assert engine.searches == [("query", "manuals", 5)]

    def test_cache_expires(self, searcher, engine, clock):
        searcher.search("query")
        clock.advance(61)
        outcome = searcher.search("query")
        assert outcome.cached is False
        assert len(engine.searches) == 2

    def test_empty_results_cached(self, searcher, engine):
        engine.hits = []
        searcher.search("nothing")
        outcome = searcher.search("nothing")
        assert outcome.cached is True
        assert outcome.results == []

    def test_engine_error_not_cached(self, searcher, engine, cache):
        engine.search_error = "engine down"
        outcome = searcher.search("query")

        assert outcome.engine_unavailable is True
        assert outcome.results == []
        assert "engine down" in outcome.error
        assert cache.stats().entry_count == 0

    def test_cache_disabled(self, engine, cache):
        engine.hits = list(HITS)
        searcher = Searcher(engine, cache, cache_enabled=False)
        searcher.search("query")
        searcher.search("query")
        assert len(engine.searches) == 2
        assert cache.stats().entry_count == 0

    def test_larger_limit_refetches(self, searcher, engine):
        engine.hits = [SearchHit(f"passage {i}", f"doc{i}.pdf") for i in range(10)]

        searcher.search("query", max_results=2)
        wider = searcher.search("query", max_results=10)

        assert wider.cached is False
        assert len(wider.results) == 10
        assert [call[2] for call in engine.searches] == [2, 10]

        narrower = searcher.search("query", max_results=5)
        assert narrower.cached is True
        assert len(narrower.results) == 5

    def test_short_result_set_serves_larger_limit(self, searcher, engine):
        engine.hits = HITS[:3]
        searcher.search("query", max_results=5)

        outcome = searcher.search("query", max_results=10)

        assert outcome.cached is True
        assert outcome.results == HITS[:3]
        assert len(engine.searches) == 1
