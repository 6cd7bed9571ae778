# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Watch mode: re-run dry-run analysis when the tree changes.

Watchdog events only mark the tree dirty and record when the last relevant
event arrived. The caller's thread polls, and once the tree has been quiet
for the debounce interval it runs one analysis. Editors that write several
files at once therefore trigger a single run.

Events for ignored paths (build output, the report and log directories,
sensitive files) are dropped with the same rules the scanner uses, so writing
the report never re-triggers a run.
"""

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional

from watchdog.events import FileMovedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from prunegraph.scanner import SourceScanner

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

# Callback signature: () -> None, runs one analysis
RunCallback = Callable[[], None]


class TreeWatcher:
    """Debounced change detection for a project tree.

    Thread Safety:
        Event handlers run on the watchdog thread and only touch the dirty
        flag under a lock; analyses run on the thread calling poll() or
        run_forever().

    Usage:
        watcher = TreeWatcher(root, on_change=run_analysis)
        watcher.start()
        watcher.run_forever(stop_event)
    """

    def __init__(
        self,
        root: Path,
        on_change: RunCallback,
        scanner: Optional[SourceScanner] = None,
        debounce_seconds: float = 0.5,
    ):
        """Initialize the watcher.

        Args:
            root: Directory to watch recursively.
            on_change: Called once per settled batch of changes.
            scanner: Supplies the ignore rules (default: a plain scanner).
            debounce_seconds: Quiet period required before a run.
        """
        self.root = Path(root).resolve()
        self.on_change = on_change
        self.scanner = scanner or SourceScanner()
        self.scanner.bind_root(self.root)
        self.debounce_seconds = debounce_seconds
        self.changed_paths: List[str] = []
        self.runs = 0

        self._lock = threading.Lock()
        self._dirty = False
        self._last_event = 0.0
        self._observer: Optional["BaseObserver"] = None
        self._event_handler = _TreeEventHandler(self)

    def record_change(self, file_path: str) -> bool:
        """Mark the tree dirty if file_path is relevant.

        Returns:
            True if the change was recorded, False if the path is ignored.
        """
        path = Path(file_path)
        if not path.is_absolute():
            path = self.root / path
        if self.scanner.should_ignore(path):
            return False
        with self._lock:
            self._dirty = True
            self._last_event = time.monotonic()
            self.changed_paths.append(str(path))
        logger.debug(f"Change recorded: {path}")
        return True

    def poll(self) -> bool:
        """Run one analysis if changes have settled.

        Returns:
            True if an analysis ran.
        """
        with self._lock:
            if not self._dirty or time.monotonic() - self._last_event < self.debounce_seconds:
                return False
            self._dirty = False
            changed = len(self.changed_paths)
            self.changed_paths = []

        logger.info(f"{changed} change(s) settled, re-running analysis")
        self.runs += 1
        self.on_change()
        return True

    def start(self) -> None:
        """Start watching.

        Raises:
            RuntimeError: If the watcher is already running.
        """
        if self._observer is not None and self._observer.is_alive():
            raise RuntimeError("TreeWatcher is already running")

        self._observer = Observer()
        self._observer.schedule(  # type: ignore  # watchdog types vary by version
            self._event_handler, str(self.root), recursive=True
        )
        self._observer.start()  # type: ignore  # watchdog types vary by version
        logger.info(f"Watching {self.root}")

    def stop(self) -> None:
        """Stop watching; blocks until the observer thread ends (with timeout)."""
        if self._observer is not None and self._observer.is_alive():
            self._observer.stop()  # type: ignore  # watchdog types vary by version
            self._observer.join(timeout=5.0)
            logger.info("Watcher stopped")

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def run_forever(self, stop_event: threading.Event, interval: float = 0.2) -> None:
        """Poll until stop_event is set."""
        while not stop_event.wait(interval):
            self.poll()


class _TreeEventHandler(FileSystemEventHandler):
    """Forwards relevant watchdog events to the TreeWatcher."""

    def __init__(self, watcher: TreeWatcher):
        super().__init__()
        self.watcher = watcher

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher.record_change(str(event.src_path))

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A move counts as a change at both the old and the new path."""
        if event.is_directory or not isinstance(event, FileMovedEvent):
            return
        self.watcher.record_change(str(event.src_path))
        self.watcher.record_change(str(event.dest_path))
