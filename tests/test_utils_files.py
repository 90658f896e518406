"""Tests for file utility functions."""

from __future__ import annotations

import hashlib
from pathlib import Path

from docatlas.utils.files import DEFAULT_EXTENSIONS, compute_sha256, iter_document_paths


class TestIterDocumentPaths:
    """Test iter_document_paths function."""

    def test_single_file(self, tmp_path: Path) -> None:
        """Should yield a single supported file."""
        doc = tmp_path / "notes.md"
        doc.write_text("dummy")

        assert list(iter_document_paths([doc])) == [doc]

    def test_filters_unsupported_extensions(self, docs: Path) -> None:
        """Should skip files whose suffix is not supported."""
        names = sorted(p.name for p in iter_document_paths([docs]))
        assert names == ["alpha.md", "beta.txt", "gamma.pdf"]

    def test_nested_directories(self, docs: Path) -> None:
        """Should descend into subdirectories."""
        paths = list(iter_document_paths([docs]))
        assert docs / "sub" / "gamma.pdf" in paths

    def test_case_insensitive_suffix(self, tmp_path: Path) -> None:
        """Should match upper-case suffixes."""
        doc = tmp_path / "REPORT.PDF"
        doc.write_text("dummy")
        assert list(iter_document_paths([tmp_path])) == [doc]

    def test_custom_extensions(self, docs: Path) -> None:
        """Should honour a custom extension list."""
        names = [p.name for p in iter_document_paths([docs], (".txt",))]
        assert names == ["beta.txt"]

    def test_missing_path_yields_nothing(self, tmp_path: Path) -> None:
        assert list(iter_document_paths([tmp_path / "missing"])) == []

    def test_default_extensions(self) -> None:
        assert ".pdf" in DEFAULT_EXTENSIONS
        assert ".md" in DEFAULT_EXTENSIONS


class TestComputeSha256:
    """Test compute_sha256 function."""

    def test_matches_hashlib(self, tmp_path: Path) -> None:
        """Should return the hex SHA-256 of the file content."""
        doc = tmp_path / "doc.txt"
        doc.write_bytes(b"hello world")
        assert compute_sha256(doc) == hashlib.sha256(b"hello world").hexdigest()

    def test_same_content_same_hash(self, tmp_path: Path) -> None:
        """Identical bytes under different names hash the same."""
        first = tmp_path / "a.txt"
        second = tmp_path / "b.txt"
        first.write_bytes(b"same")
        second.write_bytes(b"same")
        assert compute_sha256(first) == compute_sha256(second)

    def test_large_file(self, tmp_path: Path) -> None:
        """Should hash content spanning several read blocks."""
        data = b"x" * (3 * (1 << 20) + 17)
        doc = tmp_path / "big.bin"
        doc.write_bytes(data)
        assert compute_sha256(doc) == hashlib.sha256(data).hexdigest()

    def test_empty_file(self, tmp_path: Path) -> None:
        doc = tmp_path / "empty.txt"
        doc.write_bytes(b"")
        assert compute_sha256(doc) == hashlib.sha256(b"").hexdigest()
