"""Shared fixtures: an in-process stand-in for the engine and a manual clock."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from docatlas.config import AppConfig
from docatlas.engine.pageindex import EngineError
from docatlas.index.coordinator import Coordinator
from docatlas.index.storage import SQLiteStateStore
from docatlas.models import BuildResult, SearchHit


class FakeEngine:
    """Records calls and answers like the pageindex CLI would."""

    def __init__(self) -> None:
        self.available: Optional[bool] = True
        self.built: List[str] = []
        self.searches: List[tuple] = []
        self.fail_names: set[str] = set()
        self.hits: List[SearchHit] = []
        self.search_error: Optional[str] = None
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self._lock = threading.Lock()

    def probe(self) -> bool:
        return bool(self.available)

    def build_index(self, document_path) -> BuildResult:
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        path = str(document_path)
        with self._lock:
            self.built.append(path)
        if Path(path).name in self.fail_names:
            return BuildResult(success=False, document_path=path, error="build failed")
        return BuildResult(success=True, document_path=path, duration=0.01, node_count=3)

    def search(self, query, collection=None, max_results=5) -> List[SearchHit]:
        self.searches.append((query, collection, max_results))
        if self.search_error is not None:
            raise EngineError(self.search_error)
        return list(self.hits[:max_results])


class ManualClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def state_store(tmp_path: Path):
    store = SQLiteStateStore(tmp_path / "state" / "atlas.db")
    yield store
    store.close()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(home=tmp_path / "home", max_concurrent_jobs=2, shard_threshold=500)


@pytest.fixture
def coordinator(config: AppConfig, engine: FakeEngine):
    coord = Coordinator(config, engine=engine)
    yield coord
    if engine.gate is not None:
        engine.gate.set()
    coord.close()


@pytest.fixture
def docs(tmp_path: Path) -> Path:
    """A small document tree with three supported files and one ignored file."""
    root = tmp_path / "docs"
    (root / "sub").mkdir(parents=True)
    (root / "alpha.md").write_text("alpha")
    (root / "beta.txt").write_text("beta")
    (root / "sub" / "gamma.pdf").write_bytes(b"%PDF-1.4 gamma")
    (root / "ignored.bin").write_bytes(b"\x00\x01")
    return root
