# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Per-run analysis context.

An AnalysisContext is created for each analysis run and passed explicitly
through every stage, so that several runs in one long-lived process never
share mutable state by accident. It carries:
- the run configuration
- a CancellationToken (explicit cancel or wall-clock deadline)
- an ExtractionCache of per-file extraction results keyed by content hash

The cache is the only object meant to outlive a run: a caller may hand the
same cache to the next run's context so unchanged files are not re-extracted.

Usage:
    cache = ExtractionCache()
    context = AnalysisContext(config=config, cache=cache)
    plan = AnalysisEngine(context).run(root)
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Optional, Tuple

from prunegraph.config import Config
from prunegraph.models import FileExtraction

logger = logging.getLogger(__name__)


class AnalysisCancelled(Exception):
    """Raised when a run is cancelled or exceeds its wall-clock budget."""

    pass


class CancellationToken:
    """Cooperative cancellation signal checked by workers between items.

    Thread Safety:
        cancel() and is_cancelled() may be called from any thread.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        """Initialize the token.

        Args:
            timeout_seconds: Optional wall-clock budget starting now. The token
                reports itself cancelled once the budget is exhausted.
        """
        self._event = threading.Event()
        self._deadline: Optional[float] = None
        if timeout_seconds:
            self._deadline = time.monotonic() + timeout_seconds
        self._reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation."""
        self._reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        """Check whether cancellation was requested or the deadline passed."""
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("wall-clock budget exceeded")
            return True
        return False

    def raise_if_cancelled(self) -> None:
        """Raise AnalysisCancelled if the run should stop.

        Raises:
            AnalysisCancelled: If cancelled or past the deadline.
        """
        if self.is_cancelled():
            raise AnalysisCancelled(self._reason)

    @property
    def reason(self) -> str:
        return self._reason


class ExtractionCache:
    """LRU cache of FileExtraction results keyed by (path, content hash).

    A content-hash key makes invalidation implicit: a changed file produces a
    new key and the stale entry ages out.

    Thread Safety:
        All public methods are thread-safe using a reentrant lock.
    """

    def __init__(self, max_entries: int = 10000):
        """Initialize the cache.

        Args:
            max_entries: Maximum number of cached extractions.
        """
        self._max_entries = max_entries
        self._lock = threading.RLock()
        self._cache: "OrderedDict[Tuple[str, str, str], FileExtraction]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, path: str, content_hash: str, language: str) -> Optional[FileExtraction]:
        """Get a cached extraction.

        Args:
            path: Project-relative path.
            content_hash: Content hash of the current file.
            language: Language tag the extraction was produced for.

        Returns:
            The cached FileExtraction, or None on a miss.
        """
        key = (path, content_hash, language)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._cache.move_to_end(key)
            self._hits += 1
            return entry

    def set(self, extraction: FileExtraction) -> None:
        """Cache an extraction."""
        source = extraction.source_file
        key = (source.path, source.content_hash, source.language)
        with self._lock:
            while len(self._cache) >= self._max_entries:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Evicted cached extraction for {evicted[0]}")
            self._cache[key] = extraction
            self._cache.move_to_end(key)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses


class AnalysisContext:
    """Everything one analysis run needs besides its inputs."""

    def __init__(
        self,
        config: Optional[Config] = None,
        cache: Optional[ExtractionCache] = None,
        token: Optional[CancellationToken] = None,
    ):
        """Initialize the context.

        Args:
            config: Run configuration. If None, defaults are used.
            cache: Extraction cache; pass the previous run's cache to reuse it.
            token: Cancellation token. If None, one is created from
                config.timeout_seconds.
        """
        self.config = config or Config(overrides={})
        self.cache = cache if cache is not None else ExtractionCache()
        self.token = token or CancellationToken(self.config.timeout_seconds or None)
