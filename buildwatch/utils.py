"""
Worker threads used by watch sessions.

1. PeriodicWorker: calls a function every ``interval`` seconds. Sessions use
   it to drive the debouncer tick.
2. QueueWorker: takes items off a Queue and hands each to a function. Sessions
   use it to call the reaction callback, one path at a time.

Both run until stop() is called; stopping is cooperative.
"""

import logging
import os
import threading
from queue import Empty

log = logging.getLogger(__name__)


class PeriodicWorker(threading.Thread):
    """
    Daemon thread calling ``tick_fn()`` until stopped.

    A tick that raises is logged and the next tick still happens.
    """

    def __init__(self, tick_fn, interval, name=None):
        """
        Args:
            tick_fn (callable): Called with no arguments on every tick.
            interval (float): Seconds to wait between the end of one call and
                the start of the next.
            name (str, optional): Thread name.
        """
        super().__init__(name=name, daemon=True)
        self.tick_fn = tick_fn
        self.interval = interval
        self._stopping = threading.Event()

    def run(self):
        log.debug("%s ticking every %ss", self.name, self.interval)
        while not self._stopping.is_set():
            try:
                self.tick_fn()
            except Exception:
                log.exception("Tick of %s failed", self.name)
            if self._stopping.wait(self.interval):
                break
        log.debug("%s stopped.", self.name)

    def stop(self):
        self._stopping.set()


class QueueWorker(threading.Thread):
    """
    Daemon thread handing queued items to ``handle_fn`` in FIFO order.

    Only this thread calls ``handle_fn``, so calls never overlap.
    """

    def __init__(self, queue, handle_fn, poll_interval=0.1, name=None):
        """
        Args:
            queue (Queue): Source of items.
            handle_fn (callable): Called with one item at a time.
            poll_interval (float): Longest wait for an item before the stop
                flag is checked again.
            name (str, optional): Thread name.
        """
        super().__init__(name=name, daemon=True)
        self.queue = queue
        self.handle_fn = handle_fn
        self.poll_interval = poll_interval
        self._stopping = threading.Event()

    def run(self):
        log.debug("%s waiting for items", self.name)
        while not self._stopping.is_set():
            try:
                item = self.queue.get(timeout=self.poll_interval)
            except Empty:
                continue
            try:
                # Items taken after stop() are dropped, not handled.
                if not self._stopping.is_set():
                    self.handle_fn(item)
            except Exception:
                log.exception("Handling %r in %s failed", item, self.name)
            finally:
                self.queue.task_done()
        log.debug("%s stopped.", self.name)

    def stop(self):
        self._stopping.set()

    def discard_pending(self):
        """
        Drop every item still waiting in the queue.

        Returns:
            int: The number of items dropped.
        """
        dropped = 0
        while True:
            try:
                self.queue.get_nowait()
            except Empty:
                break
            self.queue.task_done()
            dropped += 1
        return dropped


def spawn_periodic_worker(tick_fn, interval, name=None):
    """Create and start a PeriodicWorker."""
    worker = PeriodicWorker(tick_fn, interval, name=name)
    worker.start()
    return worker


def spawn_queue_worker(queue, handle_fn, poll_interval=0.1, name=None):
    """Create and start a QueueWorker."""
    worker = QueueWorker(queue, handle_fn, poll_interval, name=name)
    worker.start()
    return worker


def is_within(path, root):
    """Return True if path is root itself or lies below it."""
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Mixed drives or mixed absolute/relative paths.
        return False
