# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the source scanner."""

import hashlib
from pathlib import Path

import pytest

from prunegraph.context import AnalysisCancelled, CancellationToken
from prunegraph.scanner import UNKNOWN_LANGUAGE, ScanError, SourceScanner, decode_source


class TestSourceScanner:
    """Tests for SourceScanner.scan."""

    def test_missing_root(self, tmp_path):
        with pytest.raises(ScanError, match="does not exist"):
            SourceScanner().scan(tmp_path / "missing")

    def test_root_is_file(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("x = 1\n")
        with pytest.raises(ScanError, match="not a directory"):
            SourceScanner().scan(path)

    def test_records_are_sorted_and_hashed(self, write_tree):
        """Test that files come back sorted with a sha256 of their bytes."""
        root = write_tree({"b.py": "def b():\n    pass\n", "a/x.js": "function x() {}\n"})

        files = SourceScanner().scan(root)

        assert [f.path for f in files] == ["a/x.js", "b.py"]
        b = files[1]
        assert b.language == "python"
        assert b.content_hash == hashlib.sha256((root / "b.py").read_bytes()).hexdigest()
        assert b.lines == ("def b():", "    pass")
        assert files[0].language == "javascript"

    def test_always_ignored_directories(self, write_tree):
        """Test that build output, VCS and tool directories are skipped."""
        root = write_tree(
            {
                "app.py": "x = 1\n",
                "node_modules/lib/index.js": "module.exports = {}\n",
                "__pycache__/app.cpython-311.py": "x\n",
                ".git/config": "[core]\n",
                ".prunegraph/report.json": "{}\n",
                "build/out.py": "y = 2\n",
            }
        )

        files = SourceScanner().scan(root)

        assert [f.path for f in files] == ["app.py"]

    def test_sensitive_files_skipped(self, write_tree):
        root = write_tree({"app.py": "x = 1\n", ".env": "SECRET=1\n", "server.key": "k\n"})

        assert [f.path for f in SourceScanner().scan(root)] == ["app.py"]

    def test_gitignore_and_user_patterns(self, write_tree):
        """Test that .gitignore entries and user globs are honored."""
        root = write_tree(
            {
                ".gitignore": "# comment\ngenerated/\n!keep.py\n",
                "generated/models.py": "x = 1\n",
                "vendor/lib.py": "x = 1\n",
                "app.py": "x = 1\n",
            }
        )

        files = SourceScanner(ignore_patterns={"vendor"}).scan(root)

        assert [f.path for f in files] == [".gitignore", "app.py"]

    def test_unknown_language(self, write_tree):
        """Test that unrecognised files are kept with the unknown tag."""
        root = write_tree({"data.xyz": "???\n", "notes.md": "# notes\n"})

        files = {f.path: f.language for f in SourceScanner().scan(root)}

        assert files == {"data.xyz": UNKNOWN_LANGUAGE, "notes.md": "markdown"}

    def test_shebang_detection(self, write_tree):
        root = write_tree({"bin/tool": "#!/usr/bin/env python3\nprint('hi')\n"})

        files = SourceScanner().scan(root)

        assert files[0].language == "python"

    def test_binary_and_oversized_files_skipped(self, write_tree):
        """Test that binary and oversized files are reported as skipped."""
        root = write_tree({"small.py": "x = 1\n", "big.py": "x = 1\n" * 100})
        (root / "image.png").write_bytes(b"\x89PNG\x00\x00data")

        scanner = SourceScanner(max_file_size_bytes=50)
        files = scanner.scan(root)

        assert [f.path for f in files] == ["small.py"]
        assert dict(scanner.skipped) == {"big.py": "too large", "image.png": "binary"}

    def test_latin1_fallback(self, tmp_path):
        (tmp_path / "legacy.py").write_bytes("NAME = 'caf\xe9'\n".encode("latin-1"))

        files = SourceScanner().scan(tmp_path)

        assert files[0].lines == ("NAME = 'caf\xe9'",)

    def test_cancelled_scan(self, write_tree):
        root = write_tree({"a.py": "x = 1\n"})
        token = CancellationToken()
        token.cancel()

        with pytest.raises(AnalysisCancelled):
            SourceScanner(token=token).scan(root)

    def test_count_by_language(self, write_tree):
        root = write_tree({"a.py": "x\n", "b.py": "y\n", "c.js": "z\n"})
        scanner = SourceScanner()

        assert scanner.count_by_language(scanner.scan(root)) == {"javascript": 1, "python": 2}


class TestShouldIgnore:
    """Tests for SourceScanner.should_ignore with a bound root."""

    def test_nested_ignored_part(self, tmp_path):
        scanner = SourceScanner()
        scanner.bind_root(tmp_path)

        assert scanner.should_ignore(tmp_path / "pkg" / "__pycache__" / "x.pyc")
        assert scanner.should_ignore(tmp_path / ".prunegraph_logs" / "run.log")
        assert not scanner.should_ignore(tmp_path / "pkg" / "module.py")

    def test_user_glob(self, tmp_path):
        scanner = SourceScanner(ignore_patterns={"*.generated.py"})
        scanner.bind_root(tmp_path)

        assert scanner.should_ignore(tmp_path / "api.generated.py")
        assert not scanner.should_ignore(Path(tmp_path / "api.py"))


def test_decode_source():
    assert decode_source("é".encode("utf-8")) == "é"
    assert decode_source(b"\xe9") == "\xe9"
