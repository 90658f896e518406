"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator, Sequence

DEFAULT_EXTENSIONS = (".pdf", ".md", ".txt", ".html", ".htm")


def iter_document_paths(
    inputs: Iterable[Path], extensions: Sequence[str] = DEFAULT_EXTENSIONS
) -> Iterator[Path]:
    """Yield supported document paths from input paths, descending into directories."""
    suffixes = {ext.lower() for ext in extensions}
    for item in inputs:
        if item.is_dir():
            yield from iter_document_paths(
                sorted(child for child in item.rglob("*") if child.is_file()), extensions
            )
        elif item.is_file() and item.suffix.lower() in suffixes:
            yield item


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()
