import io
import os

import pytest

from dirtail.follower import DirectoryFollower
from dirtail.matcher import PathMatcher
from dirtail.models import EventKind, WatchEvent
from dirtail.output import OutputMultiplexer
from dirtail.reader import TailReader
from dirtail.watcher import DirectoryWatcher


class FakeWatcher(DirectoryWatcher):
    """Deterministic watcher: tests push events, next_batch hands them over."""

    def __init__(self, directory: str):
        super().__init__(directory)
        self.pending: list[WatchEvent] = []
        self.rescan = False
        self.stopped = False

    def push(self, kind: EventKind, path: str, dest_path: str | None = None):
        self.pending.append(WatchEvent(kind, path, dest_path))

    def next_batch(self, timeout: float) -> list[WatchEvent]:
        events, self.pending = self.pending, []
        return events

    def needs_rescan(self) -> bool:
        rescan, self.rescan = self.rescan, False
        return rescan

    def stop(self):
        self.stopped = True


@pytest.fixture
def log_dir(tmp_path):
    return str(tmp_path)


@pytest.fixture
def sink():
    return io.BytesIO()


@pytest.fixture
def write(log_dir):
    """Append (or with mode="w", overwrite) text in a file under log_dir; returns its path."""
    def _write(name: str, text: str, mode: str = "a") -> str:
        path = os.path.join(log_dir, name)
        with open(path, mode + "b") as f:
            f.write(text.encode())
        return path
    return _write


@pytest.fixture
def make_follower(log_dir, sink):
    def _make(pattern=None, order="path", lines=None, watcher=None, rescan_interval=0,
              read_limit=1024 * 1024):
        watcher = watcher or FakeWatcher(log_dir)
        follower = DirectoryFollower(
            log_dir,
            PathMatcher(pattern),
            watcher,
            TailReader(read_limit=read_limit),
            OutputMultiplexer(sink, cwd=log_dir),
            order=order,
            poll_interval=0.01,
            rescan_interval=rescan_interval,
            lines=lines,
        )
        return follower, watcher
    return _make
