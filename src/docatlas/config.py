"""Application configuration defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from docatlas.engine.pageindex import (
    BUILD_TIMEOUT_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    SEARCH_TIMEOUT_SECONDS,
)
from docatlas.utils.files import DEFAULT_EXTENSIONS


def _get_default_home() -> Path:
    """Get the default state directory, honouring ``DOCATLAS_HOME``."""
    override = os.environ.get("DOCATLAS_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".docatlas"


@dataclass(slots=True)
class AppConfig:
    home: Path | None = None
    pageindex_path: str | None = None
    max_results: int = 5
    supported_extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    cache_enabled: bool = True
    cache_ttl: float = 300.0
    max_concurrent_jobs: int = 3
    shard_threshold: int = 500
    build_timeout: float = BUILD_TIMEOUT_SECONDS
    search_timeout: float = SEARCH_TIMEOUT_SECONDS
    probe_timeout: float = PROBE_TIMEOUT_SECONDS
    debug: bool = False

    def __post_init__(self) -> None:
        if self.home is None:
            self.home = _get_default_home()
        if self.max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        if self.cache_ttl <= 0:
            raise ValueError("cache_ttl must be positive")

    def resolve_home(self, base_dir: Path | None = None) -> Path:
        if self.home is None:
            self.home = _get_default_home()
        if Path(self.home).is_absolute() or base_dir is None:
            return Path(self.home)
        return base_dir / self.home

    def db_path(self, base_dir: Path | None = None) -> Path:
        return self.resolve_home(base_dir) / "state" / "atlas.db"

    @classmethod
    def from_mapping(cls, raw: Any) -> "AppConfig":
        """Build a config from a loose mapping; ill-typed values keep their defaults."""
        cfg: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
        defaults = cls()

        def number(key: str, default: float, *, integer: bool = False) -> Any:
            value = cfg.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return default
            return int(value) if integer else float(value)

        def flag(key: str, default: bool) -> bool:
            value = cfg.get(key)
            return value if isinstance(value, bool) else default

        home = cfg.get("home")
        pageindex_path = cfg.get("pageindex_path")
        extensions = cfg.get("supported_extensions")

        return cls(
            home=Path(home).expanduser() if isinstance(home, str) and home else defaults.home,
            pageindex_path=pageindex_path
            if isinstance(pageindex_path, str) and pageindex_path
            else None,
            max_results=number("max_results", defaults.max_results, integer=True),
            supported_extensions=tuple(str(ext).lower() for ext in extensions)
            if isinstance(extensions, list)
            else defaults.supported_extensions,
            cache_enabled=flag("cache_enabled", defaults.cache_enabled),
            cache_ttl=number("cache_ttl", defaults.cache_ttl),
            max_concurrent_jobs=number(
                "max_concurrent_jobs", defaults.max_concurrent_jobs, integer=True
            ),
            shard_threshold=number("shard_threshold", defaults.shard_threshold, integer=True),
            build_timeout=number("build_timeout", defaults.build_timeout),
            search_timeout=number("search_timeout", defaults.search_timeout),
            probe_timeout=number("probe_timeout", defaults.probe_timeout),
            debug=flag("debug", defaults.debug),
        )


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a JSON file, falling back to defaults when absent."""
    if path is None:
        candidate = _get_default_home() / "config.json"
        if not candidate.exists():
            return AppConfig()
        path = candidate
    with Path(path).open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    return AppConfig.from_mapping(raw)
