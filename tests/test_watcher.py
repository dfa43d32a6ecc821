"""
Tests for the DirectoryWatcher against a real temporary directory tree.
"""

import errno
import os
import shutil
import time

import pytest

from buildwatch import watcher as watcher_module
from buildwatch.errors import (RootNotFoundError, WatcherOverflowError,
                               WatchPermissionError)
from buildwatch.watcher import DirectoryWatcher, validate_roots


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def temp_dir(tmp_path):
    """Fixture to create a temporary directory structure."""
    test_dir = tmp_path / "test_dir"
    test_dir.mkdir()
    (test_dir / "file1.txt").write_text("Initial content 1")
    subdir = test_dir / "subdir"
    subdir.mkdir()
    (subdir / "subfile1.txt").write_text("Subdir content 1")
    yield test_dir


@pytest.fixture
def events():
    return []


@pytest.fixture
def errors():
    return []


@pytest.fixture
def make_watcher(events, errors):
    watchers = []

    def factory(**kwargs):
        kwargs.setdefault("lookback", 0)
        w = DirectoryWatcher(events.append, errors.append, **kwargs)
        watchers.append(w)
        return w

    yield factory
    for w in watchers:
        w.stop()


def paths_of(events):
    return [e.path for e in events]


def test_validate_roots(temp_dir, tmp_path):
    roots = validate_roots([str(temp_dir), str(temp_dir), str(temp_dir / "subdir")])
    assert roots == [str(temp_dir), str(temp_dir / "subdir")]

    with pytest.raises(RootNotFoundError):
        validate_roots([str(tmp_path / "missing")])
    with pytest.raises(RootNotFoundError):
        validate_roots([str(temp_dir / "file1.txt")])


def test_validate_roots_makes_paths_absolute(temp_dir, monkeypatch):
    monkeypatch.chdir(temp_dir)
    assert validate_roots("subdir") == [str(temp_dir / "subdir")]


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions and a non-root user")
def test_unreadable_root_rejected(tmp_path):
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0)
    try:
        with pytest.raises(WatchPermissionError) as excinfo:
            validate_roots([str(locked)])
        assert isinstance(excinfo.value, PermissionError)
    finally:
        locked.chmod(0o755)


def test_start_missing_root_fails(make_watcher, tmp_path):
    w = make_watcher()
    with pytest.raises(RootNotFoundError):
        w.start([str(tmp_path / "missing")])
    assert not w.active


def test_detects_created_file(make_watcher, temp_dir, events):
    w = make_watcher()
    w.start([str(temp_dir)])
    new_file = temp_dir / "subdir" / "new.txt"
    new_file.write_text("New content")

    assert wait_for(lambda: str(new_file) in paths_of(events))
    assert all(e.path != str(temp_dir / "subdir") for e in events if e.kind == "modified")


def test_detects_modification_with_polling(make_watcher, temp_dir, events):
    w = make_watcher(polling=True)
    w.start([str(temp_dir)])
    assert w.observer_name == "PollingObserver"

    time.sleep(0.1)
    target = temp_dir / "file1.txt"
    target.write_text("Modified content that is longer")
    assert wait_for(lambda: str(target) in paths_of(events))


def test_rename_reports_both_paths(make_watcher, temp_dir, events):
    w = make_watcher()
    w.start([str(temp_dir)])
    src = temp_dir / "file1.txt"
    dest = temp_dir / "renamed.txt"
    src.rename(dest)

    assert wait_for(lambda: {str(src), str(dest)} <= set(paths_of(events)))


def test_publish_filters(make_watcher, temp_dir, tmp_path, events):
    w = make_watcher(lookback=5)
    w.start([str(temp_dir)])
    inside = str(temp_dir / "x.c")

    assert w.publish(inside) is True
    assert w.publish(str(tmp_path / "outside.c")) is False
    assert w.publish(inside, w.created_at - 60) is False
    assert w.publish(inside, w.created_at - 1) is True
    assert paths_of(events).count(inside) >= 2


def test_no_events_after_stop(make_watcher, temp_dir, events):
    w = make_watcher()
    w.start([str(temp_dir)])
    w.stop()
    w.stop()
    assert not w.active
    assert w.publish(str(temp_dir / "file1.txt")) is False

    before = len(events)
    (temp_dir / "late.txt").write_text("too late")
    time.sleep(0.3)
    assert len(events) == before


def test_initial_scan_reports_recent_files(make_watcher, temp_dir, events):
    old_file = temp_dir / "old.txt"
    old_file.write_text("old")
    an_hour_ago = time.time() - 3600
    os.utime(old_file, (an_hour_ago, an_hour_ago))

    w = make_watcher(lookback=10)
    w.start([str(temp_dir)])

    reported = paths_of(events)
    assert str(temp_dir / "file1.txt") in reported
    assert str(temp_dir / "subdir" / "subfile1.txt") in reported
    assert str(old_file) not in reported
    assert str(temp_dir / "subdir") not in reported


def test_no_initial_scan_without_lookback(make_watcher, temp_dir, events):
    w = make_watcher(lookback=0)
    w.start([str(temp_dir)])
    assert str(temp_dir / "file1.txt") not in paths_of(events)


def test_rescan_reports_differences(make_watcher, temp_dir, events):
    w = make_watcher()
    w.start([str(temp_dir)])
    w.stop()
    # Restart bookkeeping without the observer to isolate the diff.
    w._active = True

    created = temp_dir / "created.txt"
    created.write_text("created")
    (temp_dir / "subdir" / "subfile1.txt").unlink()
    events.clear()

    assert w.rescan() >= 2
    kinds = {e.path: e.kind for e in events}
    assert kinds[str(created)] == "created"
    assert kinds[str(temp_dir / "subdir" / "subfile1.txt")] == "deleted"
    w._active = False


def test_missing_roots(make_watcher, temp_dir):
    w = make_watcher()
    w.start([str(temp_dir)])
    assert w.missing_roots() == []
    shutil.rmtree(temp_dir)
    assert w.missing_roots() == [str(temp_dir)]


def test_watch_limit_falls_back_to_polling(make_watcher, temp_dir, errors, monkeypatch):
    real_observer = watcher_module.Observer

    class ExhaustedObserver(real_observer):
        def start(self):
            raise OSError(errno.ENOSPC, "inotify watch limit reached")

    monkeypatch.setattr(watcher_module, "Observer", ExhaustedObserver)

    w = make_watcher()
    w.start([str(temp_dir)])
    assert w.active
    assert w.observer_name == "PollingObserver"
    assert len(errors) == 1
    assert isinstance(errors[0], WatcherOverflowError)


def test_other_observer_errors_propagate(make_watcher, temp_dir, monkeypatch):
    real_observer = watcher_module.Observer

    class BrokenObserver(real_observer):
        def start(self):
            raise OSError(errno.EIO, "I/O error")

    monkeypatch.setattr(watcher_module, "Observer", BrokenObserver)

    w = make_watcher()
    with pytest.raises(OSError):
        w.start([str(temp_dir)])
    assert not w.active
