# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Source scanner: walks a project tree and produces SourceFile records.

Ignore handling:
- ALWAYS_IGNORED: build/output and tool directories, matched per path part
- SENSITIVE_PATTERNS: credential files that are never read
- .gitignore patterns at the project root
- user patterns from configuration and the command line

Language classification uses the profile registry's extension table first,
then a shebang marker for extension-less files. Files in languages without a
profile are still scanned; they become opaque nodes downstream.

Reads run on a bounded ThreadPoolExecutor. Workers share no mutable state and
check the cancellation token between files.
"""

import fnmatch
import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from prunegraph.context import CancellationToken
from prunegraph.models import SourceFile
from prunegraph.profiles import ProfileRegistry, default_registry

logger = logging.getLogger(__name__)

UNKNOWN_LANGUAGE = "unknown"

# Bytes inspected when sniffing for binary content
BINARY_SNIFF_BYTES = 8192


class ScanError(Exception):
    """Raised when the scan root is missing, not a directory, or not traversable."""

    pass


class SourceScanner:
    """Scans a project root into SourceFile records.

    Usage:
        scanner = SourceScanner(ignore_patterns={"*.generated.py"})
        files = scanner.scan(Path("/path/to/project"))
        for path, reason in scanner.skipped:
            ...
    """

    ALWAYS_IGNORED = {
        ".git",
        ".hg",
        ".svn",
        "__pycache__",
        ".venv",
        "venv",
        "env",
        "node_modules",
        ".tox",
        ".nox",
        ".pytest_cache",
        ".mypy_cache",
        ".ruff_cache",
        ".eggs",
        "*.egg-info",
        "dist",
        "build",
        "out",
        "target",
        ".next",
        "coverage",
        ".prunegraph",
        ".prunegraph_logs",
    }

    SENSITIVE_PATTERNS = {
        ".env",
        ".env.*",
        "credentials.json",
        "*.key",
        "*.pem",
        "*.p12",
        "*.pfx",
        "*_key",
        "*_secret",
        "*.jks",
        "*.keystore",
        "*.truststore",
        "*.cer",
        "*.crt",
        "id_rsa",
        "id_dsa",
        "id_ecdsa",
        "id_ed25519",
        "secrets.yaml",
        "secrets.yml",
        ".npmrc",
        ".pypirc",
        "gcloud.json",
        ".aws",
    }

    # Languages we recognise but do not profile; their files become opaque nodes
    UNPROFILED_EXTENSIONS = {
        ".c": "c",
        ".h": "c",
        ".cc": "cpp",
        ".cpp": "cpp",
        ".hpp": "cpp",
        ".cs": "csharp",
        ".rb": "ruby",
        ".php": "php",
        ".kt": "kotlin",
        ".swift": "swift",
        ".scala": "scala",
        ".html": "html",
        ".css": "css",
        ".md": "markdown",
        ".rst": "restructuredtext",
        ".json": "json",
        ".yml": "yaml",
        ".yaml": "yaml",
        ".toml": "toml",
        ".cfg": "ini",
        ".ini": "ini",
        ".txt": "text",
        ".sql": "sql",
    }

    def __init__(
        self,
        registry: Optional[ProfileRegistry] = None,
        ignore_patterns: Optional[Set[str]] = None,
        max_file_size_bytes: int = 10 * 1024 * 1024,
        max_workers: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ):
        """Initialize the scanner.

        Args:
            registry: Profile registry used for language classification.
            ignore_patterns: Additional user-configured glob patterns.
            max_file_size_bytes: Files above this size are skipped.
            max_workers: Read pool size (default: os.cpu_count()).
            token: Cancellation token checked between files.
        """
        self.registry = registry or default_registry()
        # "build/" and "build" both name the directory, as in .gitignore
        self.user_ignore_patterns: Set[str] = {
            p.rstrip("/") for p in (ignore_patterns or set()) if p.rstrip("/")
        }
        self.max_file_size_bytes = max_file_size_bytes
        self.max_workers = max_workers or (os.cpu_count() or 1)
        self.token = token or CancellationToken()
        self.skipped: List[Tuple[str, str]] = []
        self._gitignore_patterns: Set[str] = set()
        self._root: Optional[Path] = None

    def scan(self, root: Path) -> List[SourceFile]:
        """Scan a project root.

        Args:
            root: Project root directory.

        Returns:
            SourceFile records sorted by path.

        Raises:
            ScanError: If root does not exist, is not a directory, or cannot
                be listed.
            AnalysisCancelled: If the token is cancelled mid-scan.
        """
        root = Path(root)
        if not root.exists():
            raise ScanError(f"Scan root does not exist: {root}")
        if not root.is_dir():
            raise ScanError(f"Scan root is not a directory: {root}")
        try:
            os.listdir(root)
        except OSError as e:
            raise ScanError(f"Scan root is not traversable: {root}: {e}") from e

        self.bind_root(root)
        self.skipped = []

        candidates = self._collect_paths(self._root)
        logger.info(f"Scanning {len(candidates)} files under {self._root}")

        results: List[Optional[SourceFile]] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(self._read_one, candidates))
        self.token.raise_if_cancelled()

        files = sorted((f for f in results if f is not None), key=lambda f: f.path)
        self.skipped.sort()
        logger.info(f"Scanned {len(files)} files ({len(self.skipped)} skipped)")
        return files

    def bind_root(self, root: Path) -> None:
        """Set the root that relative paths and .gitignore patterns refer to."""
        self._root = Path(root).resolve()
        self._gitignore_patterns = self._load_gitignore(self._root / ".gitignore")

    def _collect_paths(self, root: Path) -> List[Path]:
        """Walk the tree, pruning ignored directories early."""
        paths: List[Path] = []

        def on_error(error: OSError) -> None:
            # The root itself was checked by scan(); subdirectories degrade to a warning
            logger.warning(f"⚠️ Cannot list directory {error.filename}: {error.strerror}")
            self.skipped.append((self._relative(Path(str(error.filename))), "unreadable directory"))

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            current = Path(dirpath)
            dirnames[:] = sorted(d for d in dirnames if not self.should_ignore(current / d))
            for filename in sorted(filenames):
                path = current / filename
                if path.is_symlink() and not path.exists():
                    continue
                if not self.should_ignore(path):
                    paths.append(path)
        return paths

    def _read_one(self, path: Path) -> Optional[SourceFile]:
        """Read one file into a SourceFile (worker thread)."""
        if self.token.is_cancelled():
            return None

        rel_path = self._relative(path)
        try:
            size = path.stat().st_size
            if size > self.max_file_size_bytes:
                logger.warning(
                    f"⚠️ Skipping {rel_path}: {size} bytes exceeds limit of "
                    f"{self.max_file_size_bytes}"
                )
                self.skipped.append((rel_path, "too large"))
                return None
            raw = path.read_bytes()
        except OSError as e:
            logger.warning(f"⚠️ Skipping unreadable file {rel_path}: {e}")
            self.skipped.append((rel_path, "unreadable"))
            return None

        if b"\x00" in raw[:BINARY_SNIFF_BYTES]:
            logger.debug(f"Skipping binary file {rel_path}")
            self.skipped.append((rel_path, "binary"))
            return None

        text = decode_source(raw)
        return SourceFile(
            path=rel_path,
            abs_path=str(path),
            language=self.detect_language(path, text),
            content_hash=hashlib.sha256(raw).hexdigest(),
            lines=tuple(text.splitlines()),
        )

    def detect_language(self, path: Path, text: str) -> str:
        """Classify a file by extension, then by shebang marker."""
        suffix = path.suffix.lower()
        if suffix:
            language = self.registry.language_for_extension(suffix)
            if language:
                return language
            if suffix in self.UNPROFILED_EXTENSIONS:
                return self.UNPROFILED_EXTENSIONS[suffix]
        first_line = text.split("\n", 1)[0]
        return self.registry.language_for_shebang(first_line) or UNKNOWN_LANGUAGE

    def _relative(self, path: Path) -> str:
        assert self._root is not None
        try:
            return path.relative_to(self._root).as_posix()
        except ValueError:
            return path.as_posix()

    def _load_gitignore(self, gitignore_path: Path) -> Set[str]:
        """Load .gitignore patterns.

        Negations are not supported and are skipped; a trailing "/" is dropped
        so the pattern matches the directory by name.
        """
        patterns: Set[str] = set()

        if not gitignore_path.exists():
            logger.debug(f"No .gitignore found at {gitignore_path}")
            return patterns

        try:
            with open(gitignore_path, encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line or line.startswith("#") or line.startswith("!"):
                        continue
                    if len(line) > 1000:
                        logger.warning(
                            f".gitignore line {line_num}: Pattern too long (>1000 chars), skipping"
                        )
                        continue
                    patterns.add(line.rstrip("/").lstrip("/"))

            logger.debug(f"Loaded {len(patterns)} patterns from .gitignore")
        except (PermissionError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to load .gitignore: {e}")
        except OSError as e:
            logger.error(f"Failed to read .gitignore: {e}")

        return patterns

    def _matches_pattern(self, parts: Sequence[str], rel_path_str: str, pattern: str) -> bool:
        """Match a pattern against the relative path, its name and every path part."""
        if fnmatch.fnmatch(rel_path_str, pattern):
            return True
        return any(fnmatch.fnmatch(part, pattern) for part in parts)

    def should_ignore(self, path: Path) -> bool:
        """Check if a file or directory should be skipped.

        Args:
            path: Absolute path under the scan root.

        Returns:
            True if the path matches any ignore or sensitive pattern.
        """
        rel_path_str = self._relative(path)
        parts = rel_path_str.split("/")

        for pattern in self.ALWAYS_IGNORED:
            if self._matches_pattern(parts, rel_path_str, pattern):
                return True

        for pattern in self.SENSITIVE_PATTERNS:
            if self._matches_pattern(parts, rel_path_str, pattern):
                logger.debug(f"Ignoring sensitive file/directory: {rel_path_str}")
                return True

        for pattern in self._gitignore_patterns | self.user_ignore_patterns:
            if self._matches_pattern(parts, rel_path_str, pattern):
                return True

        return False

    def count_by_language(self, files: List[SourceFile]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for source_file in files:
            counts[source_file.language] = counts.get(source_file.language, 0) + 1
        return dict(sorted(counts.items()))


def decode_source(raw: bytes) -> str:
    """Decode file bytes as UTF-8, falling back to latin-1."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")
