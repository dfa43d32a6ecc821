"""
buildwatch: a debounced, glob-filtered directory-tree watcher.

Reports settled changes below a set of watch roots to a callback, one path
at a time, for driving incremental builds. Provides both a CLI and a library
API (``watch``, ``iter_changes``).
"""

from buildwatch.config import WatchSettings
from buildwatch.errors import (InvalidPatternError, ReactFnError,
                               RootDeletedError, RootNotFoundError,
                               WatchError, WatcherOverflowError,
                               WatchPermissionError)
from buildwatch.session import WatchSession, iter_changes, watch

__version__ = "0.1.0"

__all__ = [
    "watch",
    "iter_changes",
    "WatchSession",
    "WatchSettings",
    "WatchError",
    "InvalidPatternError",
    "RootNotFoundError",
    "WatchPermissionError",
    "WatcherOverflowError",
    "ReactFnError",
    "RootDeletedError",
]
