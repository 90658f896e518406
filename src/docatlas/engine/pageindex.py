"""Subprocess client for the ``pageindex`` reasoning-based retrieval engine."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Any, List, Optional, Sequence

from docatlas.models import BuildResult, SearchHit

logger = logging.getLogger(__name__)

DEFAULT_EXECUTABLE = "pageindex"
BUILD_TIMEOUT_SECONDS = 60.0
SEARCH_TIMEOUT_SECONDS = 30.0
PROBE_TIMEOUT_SECONDS = 5.0


class EngineError(RuntimeError):
    """The engine could not be reached or returned something unusable."""


def resolve_executable(configured: str | None = None) -> str:
    """Resolve the engine executable from config, ``PAGEINDEX_PATH`` or ``PATH``."""
    if configured:
        return configured
    return os.environ.get("PAGEINDEX_PATH") or DEFAULT_EXECUTABLE


def _parse_hit(raw: Any) -> SearchHit:
    if not isinstance(raw, dict):
        raise EngineError(f"Unexpected search result: {raw!r}")
    page = raw.get("page")
    score = raw.get("score")
    section = raw.get("section")
    try:
        return SearchHit(
            content=str(raw.get("content") or ""),
            citation=str(raw.get("citation") or ""),
            page=int(page) if page else None,
            section=str(section) if section else None,
            score=float(score) if score is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise EngineError(f"Unexpected search result: {raw!r}") from exc


class PageIndexClient:
    """Thin wrapper around the ``pageindex`` CLI.

    ``available`` is ``None`` until :meth:`probe` runs, then ``True`` or
    ``False``. Index builds never raise; they report failures in the returned
    :class:`BuildResult`. Searches return ``[]`` for no matches and raise
    :class:`EngineError` when the engine itself failed.
    """

    def __init__(
        self,
        executable: str | None = None,
        *,
        build_timeout: float = BUILD_TIMEOUT_SECONDS,
        search_timeout: float = SEARCH_TIMEOUT_SECONDS,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.executable = resolve_executable(executable)
        self.build_timeout = build_timeout
        self.search_timeout = search_timeout
        self.probe_timeout = probe_timeout
        self.available: Optional[bool] = None

    def _run(self, args: Sequence[str], timeout: float) -> str:
        command = [self.executable, *args]
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                env={**os.environ, "NO_COLOR": "1"},
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as exc:
            raise EngineError(f"pageindex {' '.join(args)} timed out after {timeout:g}s") from exc
        except OSError as exc:
            raise EngineError(f"Unable to run {self.executable}: {exc}") from exc

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            raise EngineError(
                f"pageindex {' '.join(args)} failed (code {completed.returncode}): {detail}"
            )
        return completed.stdout

    def probe(self) -> bool:
        """Check whether the engine executable runs at all."""
        try:
            version = self._run(["--version"], self.probe_timeout)
        except EngineError as exc:
            logger.warning("PageIndex not available: %s", exc)
            self.available = False
            return False
        logger.debug("PageIndex version: %s", version.strip())
        self.available = True
        return True

    def build_index(self, document_path: Path | str) -> BuildResult:
        path = str(document_path)
        if self.available is False:
            return BuildResult(success=False, document_path=path, error="PageIndex not available")

        start = time.monotonic()
        try:
            logger.info("Building index for %s", path)
            stdout = self._run(["build", path, "--json"], self.build_timeout)
            payload = json.loads(stdout) if stdout.strip() else {}
            if not isinstance(payload, dict):
                raise EngineError(f"Unexpected build output: {stdout[:200]!r}")
            raw_nodes = payload.get("node_count")
            node_count = int(raw_nodes) if raw_nodes is not None else None
        except (EngineError, TypeError, ValueError) as exc:
            logger.error("Failed to build index for %s: %s", path, exc)
            return BuildResult(
                success=False,
                document_path=path,
                duration=time.monotonic() - start,
                error=str(exc),
            )

        duration = time.monotonic() - start
        logger.debug("Index built in %.2fs, %s nodes", duration, node_count or 0)
        return BuildResult(
            success=True,
            document_path=path,
            duration=duration,
            node_count=node_count,
        )

    def search(
        self,
        query: str,
        collection: str | None = None,
        max_results: int = 5,
    ) -> List[SearchHit]:
        if self.available is False:
            raise EngineError("PageIndex not available")
        trimmed = query.strip()
        if not trimmed:
            return []

        args = ["search", trimmed, "--json", "-n", str(max_results)]
        if collection:
            args.extend(["--collection", collection])

        stdout = self._run(args, self.search_timeout)
        try:
            parsed = json.loads(stdout)
        except ValueError as exc:
            raise EngineError(f"Unparsable search output: {stdout[:200]!r}") from exc

        results = parsed.get("results") if isinstance(parsed, dict) else None
        if not isinstance(results, list):
            return []
        return [_parse_hit(item) for item in results]
