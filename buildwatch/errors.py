"""
Exception types raised and reported by buildwatch.

Validation errors (bad pattern, bad root) are raised synchronously by
``watch()``. Errors that happen while a session is running are passed to the
session's ``on_error`` callback instead of being raised.
"""


class WatchError(Exception):
    """Base class for all buildwatch errors."""

    pass


class InvalidPatternError(WatchError, ValueError):
    """Raised when a glob pattern is malformed or uses unsupported syntax."""

    def __init__(self, pattern, reason):
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class RootNotFoundError(WatchError, FileNotFoundError):
    """Raised when a watch root does not exist or is not a directory."""

    def __init__(self, root):
        super().__init__(f"Watch root not found: {root}")
        self.root = root


class WatchPermissionError(WatchError, PermissionError):
    """Raised when a watch root cannot be read by this process."""

    def __init__(self, root):
        super().__init__(f"Permission denied for watch root: {root}")
        self.root = root


class WatcherOverflowError(WatchError):
    """
    The underlying file-event primitive lost events (queue overflow, watch
    limit reached). Recoverable: the session re-scans its roots.
    """

    pass


class ReactFnError(WatchError):
    """Wraps an exception raised by the reaction callback for one path."""

    def __init__(self, path, error):
        super().__init__(f"Reaction callback failed for {path}: {error!r}")
        self.path = path
        self.error = error


class RootDeletedError(WatchError):
    """A watch root disappeared while watching. Terminates the session."""

    def __init__(self, root):
        super().__init__(f"Watch root was removed: {root}")
        self.root = root
