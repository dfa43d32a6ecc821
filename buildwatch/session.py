"""
Watch sessions: the public entry point of buildwatch.

A session wires the pipeline

    DirectoryWatcher -> EventDebouncer -> ignore Matcher -> react_fn

and owns its lifecycle. Raw events go into the debouncer from the watcher's
observer thread. A periodic worker settles quiet paths, filters them through
the matcher and queues the accepted ones. A single queue worker calls
react_fn for each queued path, so calls never overlap.

Usage::

    session = watch(["/proj"], ["**/*.tmp"])(rebuild)
    ...
    session.cancel()
"""

import itertools
import logging
import os
import threading
import time
from queue import Queue
from typing import Callable, Iterable, Iterator, Optional, Union

from buildwatch import matcher as matcher_module
from buildwatch.config import WatchSettings
from buildwatch.debounce import EventDebouncer
from buildwatch.errors import (ReactFnError, RootDeletedError, WatchError,
                               WatcherOverflowError)
from buildwatch.matcher import Matcher
from buildwatch.thread_manager import ThreadManager
from buildwatch.utils import is_within, spawn_periodic_worker, spawn_queue_worker
from buildwatch.watcher import DirectoryWatcher, RawChangeEvent, validate_roots

ReactFn = Callable[[str], None]
ErrorFn = Callable[[WatchError], None]

_JOIN_TIMEOUT = 5.0
_session_ids = itertools.count(1)


class WatchSession:
    """
    One running watch over a fixed set of roots.

    The session is also the handle returned by ``watch()``: call cancel() to
    end it. Runtime errors are reported to ``on_error`` and logged; they
    never end the session, except RootDeletedError which is terminal.

    Attributes:
        roots: Absolute watch roots.
        matcher: Compiled ignore patterns.
        settings: The WatchSettings in effect.
        terminal_error: The error that ended the session, if any.
        delivered: Number of successful react_fn calls.
    """

    def __init__(
        self,
        roots: Iterable[str],
        ignore_patterns: Union[Matcher, Iterable[str]] = (),
        react_fn: Optional[ReactFn] = None,
        on_error: Optional[ErrorFn] = None,
        settings: Optional[WatchSettings] = None,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], float]] = None,
        watcher_factory: Optional[Callable[..., DirectoryWatcher]] = None,
    ):
        self.settings = settings or WatchSettings()
        if isinstance(ignore_patterns, Matcher):
            self.matcher = ignore_patterns
        else:
            self.matcher = matcher_module.compile(
                list(self.settings.ignore) + list(ignore_patterns),
                case_sensitive=self.settings.case_sensitive,
            )
        self.roots = tuple(validate_roots(roots))
        self.react_fn = react_fn
        self.on_error = on_error
        self.name = name or f"session-{next(_session_ids)}"
        self.logger = logger or logging.getLogger(f"buildwatch.session.{self.name}")
        self.clock = clock or time.time

        self.debouncer = EventDebouncer(self.settings.quiet_window, clock=self.clock)
        watcher_factory = watcher_factory or DirectoryWatcher
        self.watcher = watcher_factory(
            on_event=self._on_raw_event,
            on_error=self._on_watcher_error,
            lookback=self.settings.lookback_seconds,
            polling=self.settings.polling,
            clock=self.clock,
        )

        self.terminal_error: Optional[WatchError] = None
        self.delivered = 0
        self._deliveries = Queue()
        self._delivery_worker = None
        self._threads = ThreadManager()
        self._state = "new"
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._rescan_requested = threading.Event()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._state == "running"

    def start(self, react_fn: Optional[ReactFn] = None) -> "WatchSession":
        """
        Subscribe to the roots and start delivering changes.

        Raises:
            ValueError: If no reaction callback was given.
            RuntimeError: If the session was already started or cancelled.
            RootNotFoundError: If a root vanished since validation.
        """
        if react_fn is not None:
            self.react_fn = react_fn
        if self.react_fn is None:
            raise ValueError("A reaction callback is required to start a watch session")

        with self._lock:
            if self._state != "new":
                raise RuntimeError(f"Watch session {self.name} cannot be started twice")
            self._state = "running"

        try:
            self.watcher.start(self.roots)
        except BaseException:
            with self._lock:
                self._state = "stopped"
            self._stopped.set()
            raise

        self._threads.register_thread(spawn_periodic_worker(
            self._tick, self.settings.tick_interval, name=f"{self.name}-debounce"
        ))
        self._delivery_worker = spawn_queue_worker(
            self._deliveries, self._deliver, name=f"{self.name}-deliver"
        )
        self._threads.register_thread(self._delivery_worker)

        self.logger.info(
            "Watch session %s started: roots=%s, ignore=%s, debounce=%sms, observer=%s",
            self.name, list(self.roots), list(self.matcher.patterns),
            self.settings.debounce_ms, self.watcher.observer_name,
        )
        return self

    def cancel(self) -> None:
        """
        Stop watching. Pending and queued changes are discarded, not
        delivered. Calling cancel() more than once has no further effect.
        """
        with self._lock:
            if self._state == "stopped":
                return
            was_running = self._state == "running"
            self._state = "stopped"

        if was_running:
            self.watcher.stop()
            self._threads.stop_and_join_all(timeout=_JOIN_TIMEOUT)
            dropped = self.debouncer.clear()
            if self._delivery_worker is not None:
                dropped += self._delivery_worker.discard_pending()
            self.logger.info("Watch session %s cancelled (%d undelivered change(s) discarded)", self.name, dropped)
        self._stopped.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session ends. Returns False if the timeout expired first."""
        return self._stopped.wait(timeout)

    def relative_path(self, path: str) -> Optional[str]:
        """
        Path relative to the deepest root containing it, or None when the
        path is not below any root (or is a root itself).
        """
        containing = [root for root in self.roots if is_within(path, root)]
        if not containing:
            return None
        relative = os.path.relpath(path, max(containing, key=len))
        if relative == os.curdir:
            return None
        return relative

    def accepts(self, path: str) -> bool:
        """True if a settled change to path would be delivered."""
        relative = self.relative_path(path)
        return relative is not None and not self.matcher.test(relative)

    def _on_raw_event(self, event: RawChangeEvent) -> None:
        self.debouncer.observe(event.path, event.timestamp, event.kind)

    def _on_watcher_error(self, error: WatchError) -> None:
        if isinstance(error, WatcherOverflowError):
            self._rescan_requested.set()
        self._report(error)

    def _tick(self) -> None:
        if not self.active:
            return

        if self._rescan_requested.is_set():
            self._rescan_requested.clear()
            self.watcher.rescan()

        missing = self.watcher.missing_roots()
        if missing:
            self._terminate(RootDeletedError(missing[0]))
            return

        for change in self.debouncer.settle():
            relative = self.relative_path(change.path)
            if relative is None:
                continue
            pattern = self.matcher.match(relative)
            if pattern is not None:
                self.logger.debug("Ignoring %s (matches %r)", change.path, pattern)
                continue
            self._deliveries.put(change.path)

    def _deliver(self, path: str) -> None:
        if not self.active:
            return
        try:
            self.react_fn(path)
            self.delivered += 1
        except Exception as e:
            self._report(ReactFnError(path, e))

    def _terminate(self, error: WatchError) -> None:
        with self._lock:
            if self._state != "running" or self.terminal_error is not None:
                return
            self.terminal_error = error
        self._report(error)
        self.cancel()

    def _report(self, error: WatchError) -> None:
        if isinstance(error, ReactFnError):
            self.logger.error("%s", error, exc_info=error.error)
        elif isinstance(error, WatcherOverflowError):
            self.logger.warning("%s; re-scanning roots", error)
        else:
            self.logger.error("%s", error)

        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            self.logger.exception("Error callback failed while reporting %r", error)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.cancel()

    def __repr__(self):
        return (f"<WatchSession {self.name} roots={list(self.roots)} state={self._state} "
                f"pending={self.debouncer.pending_count}>")


def watch(
    roots: Iterable[str],
    ignore_patterns: Iterable[str] = (),
    on_error: Optional[ErrorFn] = None,
    settings: Optional[WatchSettings] = None,
    name: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
    **overrides,
) -> Callable[[ReactFn], WatchSession]:
    """
    Validate a watch and return a function that starts it.

    Patterns are compiled and roots checked here, so a bad configuration
    fails immediately and nothing is subscribed. Calling the returned
    function with a reaction callback starts the session and returns it.

    Args:
        roots: Directories to watch recursively.
        ignore_patterns: Glob patterns, relative to the containing root, of
            paths that must never be reported.
        on_error: Receives runtime errors (overflow, failing callback,
            deleted root).
        settings: Session tunables; keyword overrides (e.g. debounce_ms=100)
            are applied on top.

    Raises:
        InvalidPatternError: If a pattern does not compile.
        RootNotFoundError: If a root does not exist.
        WatchPermissionError: If a root cannot be read.
    """
    if isinstance(ignore_patterns, str):
        ignore_patterns = [ignore_patterns]
    settings = (settings or WatchSettings()).replace(**overrides)
    compiled = matcher_module.compile(
        list(settings.ignore) + list(ignore_patterns),
        case_sensitive=settings.case_sensitive,
    )
    validated_roots = validate_roots(roots)

    def start(react_fn: ReactFn) -> WatchSession:
        session = WatchSession(
            validated_roots,
            compiled,
            react_fn,
            on_error=on_error,
            settings=settings,
            name=name,
            logger=logger,
        )
        return session.start()

    return start


def iter_changes(
    roots: Iterable[str],
    ignore_patterns: Iterable[str] = (),
    settings: Optional[WatchSettings] = None,
    **overrides,
) -> Iterator[str]:
    """
    Accepted changed paths as a lazy, infinite iterator.

    Validation happens immediately; the session starts on the first next()
    and is cancelled when the iterator is closed. If the session is ended by
    a terminal error, that error is raised from the iterator.
    """
    changes = Queue()

    def on_error(error):
        if isinstance(error, RootDeletedError):
            changes.put(error)

    start = watch(roots, ignore_patterns, on_error=on_error, settings=settings, **overrides)
    return _drain(start, changes)


def _drain(start, changes):
    session = start(changes.put)
    try:
        while True:
            item = changes.get()
            if isinstance(item, Exception):
                raise item
            yield item
    finally:
        session.cancel()
