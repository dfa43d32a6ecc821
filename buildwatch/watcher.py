"""
DirectoryWatcher: bridges watchdog observers to RawChangeEvents.

The watcher monitors each root recursively and calls ``on_event`` with a
RawChangeEvent for every create, modify, delete or rename below a root.
Forwarding happens under a lock that stop() also takes, so once stop()
returns the downstream callback will not be called again.

Directory snapshots (watchdog.utils.dirsnapshot) are taken at start. They
serve two purposes: reporting files changed within the lookback window before
the watcher started, and re-scanning the roots after events were lost.
"""

import errno
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from watchdog.events import (EVENT_TYPE_CLOSED, EVENT_TYPE_CREATED,
                             EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED,
                             EVENT_TYPE_MOVED, FileSystemEvent,
                             FileSystemEventHandler)
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver
from watchdog.utils.dirsnapshot import DirectorySnapshot, DirectorySnapshotDiff

from buildwatch.errors import (RootNotFoundError, WatcherOverflowError,
                               WatchPermissionError)
from buildwatch.utils import is_within

DEFAULT_LOOKBACK = 10.0

# inotify reports these when the per-user watch or instance limits are exhausted.
_OVERFLOW_ERRNOS = (errno.ENOSPC, errno.EMFILE)

_FORWARDED_KINDS = {
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MOVED,
    EVENT_TYPE_CLOSED,
}

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawChangeEvent:
    """A single change reported for one path."""

    path: str
    timestamp: float
    kind: str = EVENT_TYPE_MODIFIED


def validate_roots(roots: Iterable[str]) -> List[str]:
    """
    Check that every root is an existing, readable directory.

    Args:
        roots: Directory paths; relative paths are made absolute.

    Returns:
        List[str]: Absolute root paths, duplicates removed, order kept.

    Raises:
        RootNotFoundError: If a root is missing or not a directory.
        WatchPermissionError: If a root cannot be listed.
    """
    if isinstance(roots, (str, bytes, os.PathLike)):
        roots = [roots]

    validated = []
    for root in roots:
        path = os.path.abspath(os.fsdecode(os.fspath(root)))
        if not os.path.isdir(path):
            raise RootNotFoundError(path)
        if not os.access(path, os.R_OK | os.X_OK):
            raise WatchPermissionError(path)
        if path not in validated:
            validated.append(path)
    return validated


class _ForwardingHandler(FileSystemEventHandler):
    """Hands every watchdog event to the owning DirectoryWatcher."""

    def __init__(self, watcher: "DirectoryWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._watcher.dispatch(event)


class DirectoryWatcher:
    """
    Recursive directory watcher built on a watchdog observer.

    Attributes:
        on_event: Called with each RawChangeEvent.
        on_error: Called with recoverable errors (WatcherOverflowError).
        lookback: Seconds before start from which changes are still reported.
        polling: Use the polling observer instead of the native one.
        roots: The absolute roots being watched.
        created_at: Clock time at which start() was called.
    """

    def __init__(
        self,
        on_event: Callable[[RawChangeEvent], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        lookback: float = DEFAULT_LOOKBACK,
        polling: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.on_event = on_event
        self.on_error = on_error
        self.lookback = max(float(lookback), 0.0)
        self.polling = polling
        self.clock = clock or time.time
        self.roots: Tuple[str, ...] = ()
        self.created_at: Optional[float] = None
        self._observer = None
        self._snapshots: Dict[str, Optional[DirectorySnapshot]] = {}
        self._lock = threading.RLock()
        self._active = False

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def observer_name(self) -> Optional[str]:
        observer = self._observer
        return type(observer).__name__ if observer is not None else None

    def start(self, roots: Iterable[str]) -> "DirectoryWatcher":
        """
        Begin watching roots recursively.

        Raises:
            RootNotFoundError: If a root does not exist.
            WatchPermissionError: If a root cannot be read.
            RuntimeError: If the watcher was already started.
        """
        roots = validate_roots(roots)
        with self._lock:
            if self._active or self._observer is not None:
                raise RuntimeError("DirectoryWatcher is already started")
            self.roots = tuple(roots)
            self.created_at = self.clock()
            self._active = True

        try:
            self._snapshots = {root: self._snapshot(root) for root in self.roots}
            observer = self._start_observer(PollingObserver if self.polling else Observer)
        except BaseException:
            with self._lock:
                self._active = False
            raise

        with self._lock:
            self._observer = observer
        log.info("Watching %s with %s", ", ".join(self.roots), type(observer).__name__)

        self._initial_scan()
        return self

    def stop(self) -> None:
        """
        Stop watching. No event is forwarded once this returns. Calling it
        again, or before start(), does nothing.
        """
        with self._lock:
            was_active = self._active
            self._active = False
            observer, self._observer = self._observer, None

        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread() and observer.is_alive():
                observer.join(timeout=5.0)
        if was_active:
            log.info("Stopped watching %s", ", ".join(self.roots))

    def _start_observer(self, observer_cls):
        observer = observer_cls()
        handler = _ForwardingHandler(self)
        for root in self.roots:
            observer.schedule(handler, root, recursive=True)
        try:
            observer.start()
        except OSError as e:
            observer.unschedule_all()
            if e.errno not in _OVERFLOW_ERRNOS or observer_cls is PollingObserver:
                raise
            log.warning("Native file watcher unavailable (%s); falling back to polling", e)
            self._report(WatcherOverflowError(f"Native file watcher unavailable: {e}"))
            return self._start_observer(PollingObserver)
        return observer

    def _snapshot(self, root: str) -> Optional[DirectorySnapshot]:
        try:
            return DirectorySnapshot(root, recursive=True)
        except OSError as e:
            log.warning("Could not enumerate %s: %s", root, e)
            return None

    def _initial_scan(self) -> int:
        """Report files modified within the lookback window before start."""
        if not self.lookback:
            return 0
        threshold = self.created_at - self.lookback
        reported = 0
        for root, snapshot in self._snapshots.items():
            if snapshot is None:
                continue
            for path in snapshot.paths:
                if path == root or snapshot.isdir(path):
                    continue
                mtime = snapshot.mtime(path)
                if mtime >= threshold and self.publish(path, mtime, EVENT_TYPE_MODIFIED):
                    reported += 1
        if reported:
            log.debug("Initial scan reported %d recently changed file(s)", reported)
        return reported

    def dispatch(self, event: FileSystemEvent) -> None:
        """Translate a watchdog event into RawChangeEvents."""
        kind = event.event_type
        if kind not in _FORWARDED_KINDS:
            return
        if kind in (EVENT_TYPE_MODIFIED, EVENT_TYPE_CLOSED):
            # Directory mtime changes whenever a child changes; the child is reported anyway.
            if event.is_directory:
                return
            kind = EVENT_TYPE_MODIFIED

        now = self.clock()
        self.publish(os.fsdecode(event.src_path), now, kind)
        if kind == EVENT_TYPE_MOVED:
            dest_path = getattr(event, "dest_path", "")
            if dest_path:
                self.publish(os.fsdecode(dest_path), now, kind)

    def publish(self, path: str, timestamp: Optional[float] = None, kind: str = EVENT_TYPE_MODIFIED) -> bool:
        """
        Forward one change to on_event.

        Events are dropped when the watcher is stopped, when the path is not
        under a root, or when the timestamp is older than the lookback window.

        Returns:
            bool: True if the event was forwarded.
        """
        if timestamp is None:
            timestamp = self.clock()
        with self._lock:
            if not self._active:
                return False
            if timestamp < self.created_at - self.lookback:
                log.debug("Dropping stale event for %s", path)
                return False
            if not any(is_within(path, root) for root in self.roots):
                return False
            self.on_event(RawChangeEvent(path, timestamp, kind))
            return True

    def rescan(self) -> int:
        """
        Diff a fresh snapshot of each root against the previous one and
        publish an event for every difference.

        Returns:
            int: The number of events published.
        """
        published = 0
        now = self.clock()
        for root in self.roots:
            previous = self._snapshots.get(root)
            current = self._snapshot(root)
            if current is None:
                continue
            self._snapshots[root] = current
            if previous is None:
                continue

            diff = DirectorySnapshotDiff(previous, current)
            changes = [(path, EVENT_TYPE_CREATED) for path in diff.files_created + diff.dirs_created]
            changes += [(path, EVENT_TYPE_MODIFIED) for path in diff.files_modified]
            changes += [(path, EVENT_TYPE_DELETED) for path in diff.files_deleted + diff.dirs_deleted]
            for src_path, dest_path in diff.files_moved + diff.dirs_moved:
                changes.append((src_path, EVENT_TYPE_MOVED))
                changes.append((dest_path, EVENT_TYPE_MOVED))

            for path, kind in changes:
                if self.publish(path, now, kind):
                    published += 1

        log.info("Re-scan of %s published %d change(s)", ", ".join(self.roots), published)
        return published

    def missing_roots(self) -> List[str]:
        """Roots that no longer exist as directories."""
        return [root for root in self.roots if not os.path.isdir(root)]

    def _report(self, error: Exception) -> None:
        if self.on_error is None:
            log.warning("%s", error)
            return
        try:
            self.on_error(error)
        except Exception:
            log.exception("Error callback failed while reporting %s", error)
