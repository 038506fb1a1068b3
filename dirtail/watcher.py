"""Directory watchers: native watchdog notifications with a polling fallback.

Both variants expose the same interface to the follow loop:

- ``next_batch(timeout)`` blocks for at most *timeout* seconds and returns
  every pending ``WatchEvent`` for the directory (possibly none).
- ``needs_rescan()`` reports that events may have been lost since the last
  call, so the caller should diff a full listing.
- ``stop()`` releases the notification source.

``subscribe()`` picks the variant; a failure to set up native notifications
yields a degraded polling watcher instead of an error.
"""

import os
import queue
import logging
import threading

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.utils.dirsnapshot import DirectorySnapshot, DirectorySnapshotDiff

from dirtail.models import EventKind, WatchEvent

logger = logging.getLogger(__name__)

QUEUE_SIZE = 1024

_KINDS = {
    EVENT_TYPE_CREATED: EventKind.CREATED,
    EVENT_TYPE_MODIFIED: EventKind.MODIFIED,
    EVENT_TYPE_CLOSED: EventKind.MODIFIED,
    EVENT_TYPE_DELETED: EventKind.REMOVED,
}


class DirectoryScanner:
    """Diffs consecutive non-recursive listings of one directory into events."""

    def __init__(self, directory: str):
        self._directory = directory
        self._snapshot: DirectorySnapshot | None = None
        self._error_reported = False

    def _take(self) -> DirectorySnapshot | None:
        try:
            snapshot = DirectorySnapshot(self._directory, recursive=False)
        except OSError as e:
            if not self._error_reported:
                logger.warning("Cannot list %s: %s", self._directory, e)
                self._error_reported = True
            return None
        self._error_reported = False
        return snapshot

    def baseline(self):
        self._snapshot = self._take()

    def scan(self) -> list[WatchEvent]:
        current = self._take()
        if current is None:
            return []
        previous = self._snapshot
        self._snapshot = current
        if previous is None:
            return [WatchEvent(EventKind.CREATED, p) for p in sorted(current.paths)
                    if p != self._directory and not os.path.isdir(p)]

        diff = DirectorySnapshotDiff(previous, current)
        events = [WatchEvent(EventKind.REMOVED, p) for p in sorted(diff.files_deleted)]
        events += [WatchEvent(EventKind.RENAMED, src, dest) for src, dest in sorted(diff.files_moved)]
        events += [WatchEvent(EventKind.CREATED, p) for p in sorted(diff.files_created)]
        events += [WatchEvent(EventKind.MODIFIED, p) for p in sorted(diff.files_modified)]
        return events


class DirectoryWatcher:
    """Common base for watcher variants."""

    degraded = False
    polls = False   # True when every batch already comes from a full rescan

    def __init__(self, directory: str):
        self.directory = directory

    def start(self):
        pass

    def next_batch(self, timeout: float) -> list[WatchEvent]:
        raise NotImplementedError

    def needs_rescan(self) -> bool:
        return False

    def stop(self):
        pass


class PollingWatcher(DirectoryWatcher):
    """Synthesizes events by rescanning the directory every *timeout* seconds."""

    polls = True

    def __init__(self, directory: str, degraded: bool = False,
                 shutdown_event: threading.Event | None = None):
        super().__init__(directory)
        self.degraded = degraded
        self._scanner = DirectoryScanner(directory)
        self._shutdown = shutdown_event or threading.Event()

    def start(self):
        self._scanner.baseline()

    def next_batch(self, timeout: float) -> list[WatchEvent]:
        self._shutdown.wait(timeout)
        return self._scanner.scan()


class EventQueueHandler(FileSystemEventHandler):
    """Translates watchdog events into WatchEvents on a bounded queue.

    Runs on the observer thread. When the queue is full the event is dropped
    and the overflow flag is raised so the consumer rescans instead.
    """

    def __init__(self, directory: str, q: queue.Queue, overflow: threading.Event):
        super().__init__()
        self._directory = directory
        self._real_directory = os.path.realpath(directory)
        self._queue = q
        self._overflow = overflow

    def _local_path(self, raw_path) -> str | None:
        path = os.fsdecode(raw_path)
        if os.path.realpath(os.path.dirname(os.path.abspath(path))) != self._real_directory:
            return None
        return os.path.join(self._directory, os.path.basename(path))

    def _put(self, event: WatchEvent):
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            if not self._overflow.is_set():
                logger.warning("Event queue full, falling back to a directory rescan")
            self._overflow.set()

    def on_any_event(self, event):
        if event.is_directory:
            return
        src = self._local_path(event.src_path)

        if event.event_type == EVENT_TYPE_MOVED:
            dest = self._local_path(event.dest_path)
            if src and dest:
                self._put(WatchEvent(EventKind.RENAMED, src, dest))
            elif src:
                self._put(WatchEvent(EventKind.REMOVED, src))
            elif dest:
                self._put(WatchEvent(EventKind.CREATED, dest))
            return

        kind = _KINDS.get(event.event_type)
        if kind is not None and src is not None:
            self._put(WatchEvent(kind, src))


class NativeWatcher(DirectoryWatcher):
    """watchdog Observer feeding a bounded queue drained by the follow loop."""

    def __init__(self, directory: str, queue_size: int = QUEUE_SIZE):
        super().__init__(directory)
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, queue_size))
        self._overflow = threading.Event()
        self._handler = EventQueueHandler(directory, self._queue, self._overflow)
        self._observer = Observer()

    def start(self):
        self._observer.schedule(self._handler, self.directory, recursive=False)
        self._observer.start()

    def next_batch(self, timeout: float) -> list[WatchEvent]:
        try:
            events = [self._queue.get(timeout=timeout)]
        except queue.Empty:
            return []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def needs_rescan(self) -> bool:
        if self._overflow.is_set():
            self._overflow.clear()
            return True
        return False

    def stop(self):
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=5)


def subscribe(directory: str, queue_size: int = QUEUE_SIZE, force_polling: bool = False,
              shutdown_event: threading.Event | None = None) -> DirectoryWatcher:
    """Start and return a watcher for *directory*."""
    if not force_polling:
        watcher = NativeWatcher(directory, queue_size)
        try:
            watcher.start()
        except (OSError, RuntimeError) as e:
            logger.warning("Native file notifications unavailable for %s (%s), polling instead",
                           directory, e)
            watcher.stop()
        else:
            logger.info("Watching %s with native notifications", directory)
            return watcher

    watcher = PollingWatcher(directory, degraded=not force_polling, shutdown_event=shutdown_event)
    watcher.start()
    logger.info("Watching %s by polling", directory)
    return watcher
