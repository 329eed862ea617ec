"""Working-folder watcher that coalesces deletions into debounced batches.

File deletions and renames queue their old path and arm a single
debounce timer. When it fires, all queued paths are delivered in one
``FilesDeletionDetected`` event. A directory deletion instead arms a
full-rescan timer; when that fires the queued paths are discarded, since
a rescan supersedes them. Paths inside a ``build`` directory are ignored.

Each timer is guarded by a pending flag that is only set by a
compare-and-swap, so a burst of events never stacks timers.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5
IGNORED_DIRECTORY = "build"


@dataclass(frozen=True)
class FilesDeletionDetected:
    deleted_paths: list[str] = field(default_factory=list)
    requires_full_rescan: bool = False


DeletionListener = Callable[[FilesDeletionDetected], None]


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def _thread_timer(delay: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


def is_ignored_path(path: str) -> bool:
    return any(part.lower() == IGNORED_DIRECTORY for part in PurePath(path).parts)


class _DeletionHandler(FileSystemEventHandler):
    def __init__(self, watcher: "FolderWatcher"):
        self._watcher = watcher

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._watcher.handle_deleted(str(event.src_path), event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._watcher.handle_moved(str(event.src_path))


class FolderWatcher:
    """Watches a project folder for deletions and renames."""

    def __init__(
        self,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory = _thread_timer,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.debounce_seconds = debounce_seconds
        self._timer_factory = timer_factory
        self._observer_factory = observer_factory
        self._observer = None
        self._listeners: list[DeletionListener] = []
        self._pending_paths: deque[str] = deque()
        self._lock = threading.Lock()
        self._refresh_pending = False
        self._rescan_pending = False
        self._timers: dict[str, Timer] = {}
        self.watched_path: str | None = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def subscribe(self, listener: DeletionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self, folder: str) -> bool:
        """Start watching ``folder`` recursively, replacing any previous watch."""
        self.stop()

        if not folder or not Path(folder).is_dir():
            logger.warning(f"Cannot start file watcher: path is invalid or does not exist: {folder}")
            return False

        observer = self._observer_factory()
        observer.schedule(_DeletionHandler(self), folder, recursive=True)
        observer.start()
        self._observer = observer
        self.watched_path = folder
        logger.info(f"FileWatcher started for: {folder}")
        return True

    def stop(self) -> None:
        """Stop watching and drop anything still pending."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            self.watched_path = None
            logger.info("FileWatcher stopped")

        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._pending_paths.clear()
            self._refresh_pending = False
            self._rescan_pending = False

    def handle_deleted(self, path: str, is_directory: bool = False) -> None:
        if is_ignored_path(path):
            return

        # Some backends report directory deletions as plain deletions
        if is_directory or not PurePath(path).suffix:
            logger.info(f"Directory likely deleted: {path}, scheduling full rescan")
            self._schedule_full_rescan()
            return

        with self._lock:
            self._pending_paths.append(path)
        self._schedule_refresh()

    def handle_moved(self, old_path: str) -> None:
        """A rename (including a move to trash) counts as a deletion of the old path."""
        if is_ignored_path(old_path):
            return
        with self._lock:
            self._pending_paths.append(old_path)
        self._schedule_refresh()

    def _compare_and_set(self, flag: str) -> bool:
        with self._lock:
            if getattr(self, flag):
                return False
            setattr(self, flag, True)
            return True

    def _arm(self, flag: str, callback: Callable[[], None]) -> None:
        timer = self._timer_factory(self.debounce_seconds, callback)
        with self._lock:
            self._timers[flag] = timer
        timer.start()

    def _schedule_refresh(self) -> None:
        if self._compare_and_set("_refresh_pending"):
            self._arm("_refresh_pending", self._flush_pending)

    def _schedule_full_rescan(self) -> None:
        if self._compare_and_set("_rescan_pending"):
            self._arm("_rescan_pending", self._fire_full_rescan)

    def _flush_pending(self) -> None:
        with self._lock:
            self._refresh_pending = False
            deleted = [path for path in self._pending_paths if path]
            self._pending_paths.clear()

        if not deleted:
            return

        logger.info(f"File deletions detected: {len(deleted)} files")
        self._emit(FilesDeletionDetected(deleted_paths=deleted, requires_full_rescan=False))

    def _fire_full_rescan(self) -> None:
        with self._lock:
            self._rescan_pending = False
            self._refresh_pending = False
            self._pending_paths.clear()

        logger.info("Performing full rescan due to directory deletion")
        self._emit(FilesDeletionDetected(deleted_paths=[], requires_full_rescan=True))

    def _emit(self, event: FilesDeletionDetected) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Deletion listener failed: {e}")
