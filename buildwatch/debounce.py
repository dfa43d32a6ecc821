"""
Debouncing of raw file-system change events.

Editors tend to produce bursts of events for a single save (write, rename,
chmod within a few milliseconds). The EventDebouncer keeps one PendingChange
per path and only reports it once no new event has arrived for the quiet
window.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

DEFAULT_QUIET_WINDOW = 0.3

log = logging.getLogger(__name__)


@dataclass
class PendingChange:
    """A change waiting for its path to go quiet."""

    path: str
    first_seen: float
    last_seen: float
    kind: str = "modified"
    count: int = 1


class EventDebouncer:
    """
    Coalesces repeated events on the same path within a quiet window.

    Attributes:
        quiet_window: Seconds without events before a path is settled.
        clock: Callable returning the current time in seconds.
    """

    def __init__(
        self,
        quiet_window: float = DEFAULT_QUIET_WINDOW,
        clock: Optional[Callable[[], float]] = None,
    ):
        if quiet_window < 0:
            raise ValueError("quiet_window must not be negative")
        self.quiet_window = quiet_window
        self.clock = clock or time.time
        self._pending: Dict[str, PendingChange] = {}
        self._lock = threading.Lock()

    def observe(self, path: str, timestamp: Optional[float] = None, kind: str = "modified") -> PendingChange:
        """
        Record a raw event for path.

        If the path already has a pending change, its last_seen time is moved
        forward, which postpones the flush. Otherwise a new entry is created.

        Returns:
            PendingChange: A copy of the entry after the update.
        """
        if timestamp is None:
            timestamp = self.clock()
        with self._lock:
            pending = self._pending.get(path)
            if pending is None:
                pending = PendingChange(path, timestamp, timestamp, kind)
                self._pending[path] = pending
            else:
                # Out-of-order timestamps must not move the window backwards.
                pending.last_seen = max(pending.last_seen, timestamp)
                pending.first_seen = min(pending.first_seen, timestamp)
                pending.kind = kind
                pending.count += 1
            return PendingChange(pending.path, pending.first_seen, pending.last_seen, pending.kind, pending.count)

    def settle(self, now: Optional[float] = None) -> List[PendingChange]:
        """
        Remove and return all changes whose quiet window has elapsed.

        Returns:
            List[PendingChange]: Settled changes, oldest first_seen first.
        """
        if now is None:
            now = self.clock()
        with self._lock:
            settled = [
                pending
                for pending in self._pending.values()
                if now - pending.last_seen >= self.quiet_window
            ]
            for pending in settled:
                del self._pending[pending.path]

        settled.sort(key=lambda p: (p.first_seen, p.path))
        if settled:
            log.debug("Settled %d change(s)", len(settled))
        return settled

    def clear(self) -> int:
        """Discard all pending changes without reporting them. Returns how many were dropped."""
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
        return dropped

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
