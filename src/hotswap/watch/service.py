"""Recursive directory watching.

Wraps the ``watchdog`` observers behind a small subscribe/unsubscribe
interface:
- One shared observer thread per service
- One recursive watch per subscription
- Fully synchronous unsubscribe (no callback runs after it returns)
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch
from watchdog.observers.polling import PollingObserver

from hotswap.events.signal import Subscription

logger = logging.getLogger(__name__)

# watchdog event types that represent an actual change to the tree
_CHANGE_TYPES = {
    "created": "created",
    "modified": "modified",
    "deleted": "deleted",
    "moved": "moved",
}


class WatchSubscriptionError(Exception):
    """Raised when a directory cannot be watched."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot watch directory {path}: {reason}")


@dataclass
class FileChange:
    """Represents a detected file change."""

    path: Path
    change_type: str  # "created", "modified", "deleted", "moved"
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class DirectoryWatchService(ABC):
    """Delivers change notifications for a directory and all descendants."""

    @abstractmethod
    def subscribe(self, root: Path, callback: Callable[[FileChange], None]) -> Subscription:
        """Start watching ``root`` recursively.

        Args:
            root: Directory to watch.
            callback: Called once per change, possibly on another thread.

        Returns:
            Subscription whose ``unsubscribe()`` stops delivery synchronously.

        Raises:
            WatchSubscriptionError: If the directory cannot be watched.
        """
        ...

    def close(self) -> None:
        """Release any resources held by the service."""


class _ForwardingHandler(FileSystemEventHandler):
    """Turns watchdog events into FileChange callbacks."""

    def __init__(self, root: Path, callback: Callable[[FileChange], None]):
        super().__init__()
        self.root = root
        self.callback = callback
        self._active = True
        # Held for the duration of a dispatch so deactivate() waits for it
        self._lock = threading.RLock()

    def on_any_event(self, event: FileSystemEvent) -> None:
        change_type = _CHANGE_TYPES.get(event.event_type)
        if change_type is None:
            return

        with self._lock:
            if not self._active:
                return
            change = FileChange(path=Path(os.fsdecode(event.src_path)), change_type=change_type)
            try:
                self.callback(change)
            except Exception:
                # Raising here would kill the observer thread for every watch
                logger.exception(f"Watch callback failed for {change.path}")

    def deactivate(self) -> None:
        with self._lock:
            self._active = False


class WatchdogWatchService(DirectoryWatchService):
    """Directory watch service backed by a watchdog observer.

    Uses the native observer for the platform (inotify, FSEvents,
    ReadDirectoryChangesW) unless ``polling`` is set, in which case the
    portable polling observer is used.
    """

    def __init__(self, polling: bool = False, poll_interval: float = 1.0):
        self.polling = polling
        self.poll_interval = poll_interval
        self._observer: BaseObserver | None = None
        self._watch_refs: dict[ObservedWatch, int] = {}
        self._lock = threading.Lock()

    def _ensure_started(self) -> BaseObserver:
        if self._observer is None:
            if self.polling:
                self._observer = PollingObserver(timeout=self.poll_interval)
            else:
                self._observer = Observer()
            self._observer.daemon = True
            self._observer.start()
            logger.debug(f"Started {type(self._observer).__name__}")
        return self._observer

    def subscribe(self, root: Path, callback: Callable[[FileChange], None]) -> Subscription:
        root = Path(root)
        if not root.is_dir():
            raise WatchSubscriptionError(root, "not an existing directory")

        handler = _ForwardingHandler(root, callback)
        with self._lock:
            observer = self._ensure_started()
            try:
                watch = observer.schedule(handler, str(root), recursive=True)
            except OSError as e:
                raise WatchSubscriptionError(root, str(e)) from e
            self._watch_refs[watch] = self._watch_refs.get(watch, 0) + 1

        logger.debug(f"Watching {root}")

        def release() -> None:
            handler.deactivate()
            self._release_watch(watch, handler)
            logger.debug(f"Stopped watching {root}")

        return Subscription(release, description=f"watch:{root}")

    def _release_watch(self, watch: ObservedWatch, handler: _ForwardingHandler) -> None:
        with self._lock:
            if self._observer is None or watch not in self._watch_refs:
                return
            self._watch_refs[watch] -= 1
            if self._watch_refs[watch] > 0:
                self._observer.remove_handler_for_watch(handler, watch)
                return
            del self._watch_refs[watch]
            try:
                self._observer.unschedule(watch)
            except KeyError:
                logger.debug(f"Watch for {watch.path} already gone")

    @property
    def watch_count(self) -> int:
        with self._lock:
            return len(self._watch_refs)

    def close(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
            self._watch_refs.clear()
        if observer is not None:
            observer.stop()
            observer.join()
            logger.debug("Watch observer stopped")
