"""
ThreadManager keeps track of the worker threads owned by one watch session.

Threads are expected to follow the cooperative stop pattern of
buildwatch.utils (a stop() method that sets an event the thread checks).
Python threads cannot be killed, so stopping means signalling and joining.
"""

import logging
import threading

log = logging.getLogger(__name__)


class ThreadManager:
    """
    Registry of the worker threads belonging to one session.

    Attributes:
        threads (list): Registered threads, in registration order.
    """

    def __init__(self):
        self.threads = []
        self._lock = threading.Lock()

    def _snapshot(self):
        with self._lock:
            return list(self.threads)

    def register_thread(self, thread):
        """
        Raises:
            ValueError: If thread is not a threading.Thread.
        """
        if not isinstance(thread, threading.Thread):
            raise ValueError(f"Cannot register {thread!r}: not a threading.Thread")
        with self._lock:
            self.threads.append(thread)
        log.debug("Registered thread: %s", thread.name)

    def stop_all(self):
        """Ask every registered thread that has a stop() method to stop."""
        for thread in self._snapshot():
            stop = getattr(thread, 'stop', None)
            if callable(stop):
                log.debug("Stopping thread: %s", thread.name)
                stop()
            else:
                log.warning("Thread %s cannot be stopped (no stop() method).", thread.name)

    def join_all(self, timeout=None):
        """
        Wait for every registered thread to finish, up to ``timeout`` seconds
        each. The calling thread is skipped, so a worker can shut down the
        session that owns it.
        """
        current = threading.current_thread()
        for thread in self._snapshot():
            if thread is current or not thread.is_alive():
                continue
            thread.join(timeout)
            if thread.is_alive():
                log.warning("Thread %s did not stop within %s seconds.", thread.name, timeout)

    def stop_and_join_all(self, timeout=None):
        self.stop_all()
        self.join_all(timeout)
