"""Filesystem watching for live mode."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from watchdog.events import FileSystemEvent

logger = logging.getLogger(__name__)

# Debounce delay in seconds
DEBOUNCE_DELAY = 0.1


@dataclass
class FileChange:
    """Represents a file change event."""

    path: Path
    event_type: str  # created, modified, deleted, moved
    timestamp: float = field(default_factory=time.time)


class FileWatcher:
    """Watches a directory tree for changes using watchdog.

    Every change under the root counts; bursts are collapsed into a single
    ``on_change`` call after ``debounce_delay`` seconds of quiet. The
    callback runs on a timer thread, so callers living on an event loop
    should hand it over with ``loop.call_soon_threadsafe``.
    """

    def __init__(
        self,
        paths: list[Path],
        on_change: Callable[[list[FileChange]], None],
        debounce_delay: float = DEBOUNCE_DELAY,
    ) -> None:
        self.paths = paths
        self.on_change = on_change
        self.debounce_delay = debounce_delay
        self._pending_changes: list[FileChange] = []
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._observer = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start watching for file changes."""
        from watchdog.events import FileSystemEventHandler
        from watchdog.observers import Observer

        class Handler(FileSystemEventHandler):
            def __init__(handler_self, watcher: FileWatcher) -> None:  # noqa: N805
                handler_self.watcher = watcher

            def on_any_event(handler_self, event: FileSystemEvent) -> None:  # noqa: N805
                if event.is_directory:
                    return
                if event.event_type in ("opened", "closed", "closed_no_write"):
                    return
                change = FileChange(
                    path=Path(str(event.src_path)),
                    event_type=event.event_type,
                )
                handler_self.watcher._add_change(change)

        self._observer = Observer()
        handler = Handler(self)

        for path in self.paths:
            if path.exists():
                self._observer.schedule(handler, str(path), recursive=True)
            else:
                logger.warning(f"Watch path does not exist: {path}")

        self._observer.start()
        logger.debug(f"Watching {', '.join(str(p) for p in self.paths)}")

    def stop(self) -> None:
        """Stop watching for file changes."""
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending_changes.clear()

    def _add_change(self, change: FileChange) -> None:
        """Add a change to pending changes with debouncing."""
        with self._lock:
            self._pending_changes.append(change)

            # Reset timer
            if self._timer:
                self._timer.cancel()

            self._timer = threading.Timer(self.debounce_delay, self._flush_changes)
            self._timer.daemon = True
            self._timer.start()

    def _flush_changes(self) -> None:
        """Process pending changes after debounce delay."""
        with self._lock:
            changes = self._pending_changes.copy()
            self._pending_changes.clear()
            self._timer = None

        if not changes:
            return

        # Deduplicate changes by path
        unique_changes: dict[Path, FileChange] = {}
        for change in changes:
            unique_changes[change.path] = change

        try:
            self.on_change(list(unique_changes.values()))
        except Exception:
            logger.exception("File change callback failed")
