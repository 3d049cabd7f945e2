"""Debounced file watcher for the task store document."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from task_relay.tasks.errors import StorageIOError

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.1


class StoreFileWatcher:
    """Call ``on_settled`` once the store file stops changing.

    Every relevant file-system event restarts a stability timer; the callback
    fires only after ``debounce_seconds`` pass without further events, so an
    editor's write+rename burst yields a single reload. Events arriving while
    ``is_guarded()`` is true are dropped, and the guard is checked again right
    before firing. The owning store guards while it is saving or reloading and
    while the file still carries the mtime of its own last write, since
    watchdog delivers events for that write after saving has finished.
    """

    def __init__(
        self,
        path: Path,
        on_settled: Callable[[], object],
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        is_guarded: Callable[[], bool] | None = None,
    ) -> None:
        self.path = Path(path)
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self._on_settled = on_settled
        self._is_guarded = is_guarded or (lambda: False)
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()
        self._observer: Observer | None = None
        self.settled_count = 0

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(
            _StoreFileEventHandler(self),
            str(self.path.parent),
            recursive=False,
        )
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching task store %s (debounce=%.3fs)", self.path, self.debounce_seconds)

    def stop(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)
        logger.info("Stopped watching task store %s", self.path)

    def matches(self, event: FileSystemEvent) -> bool:
        """True if ``event`` touches the watched file (directly or as a rename target)."""

        if event.is_directory:
            return False
        candidates = [event.src_path, getattr(event, "dest_path", "")]
        return any(candidate and _same_path(candidate, self.path) for candidate in candidates)

    def notify(self) -> None:
        """Record one change; (re)start the stability window."""

        if self._is_guarded():
            logger.debug("Ignoring store file event during own write/reload")
            return
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.debounce_seconds, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self) -> None:
        with self._timer_lock:
            if self._timer is not threading.current_thread():
                # Superseded by a newer event; that timer fires instead.
                return
            self._timer = None
        if self._is_guarded():
            logger.debug("Store busy when change settled; skipping reload")
            return
        self.settled_count += 1
        try:
            self._on_settled()
        except (OSError, StorageIOError) as error:
            # e.g. permission denied mid-rename; the next event retries.
            logger.warning("Skipping reload of %s: %s", self.path, error)


class _StoreFileEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: StoreFileWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in {"created", "modified", "moved"}:
            return
        if self._watcher.matches(event):
            self._watcher.notify()


def _same_path(candidate: str | bytes, target: Path) -> bool:
    if isinstance(candidate, bytes):
        candidate = os.fsdecode(candidate)
    return os.path.realpath(candidate) == os.path.realpath(target)
