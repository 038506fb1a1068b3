"""DirectoryFollower: the follow loop tying watcher, registry, reader and output together.

Each cycle waits for the next batch of watcher events (or the poll tick),
applies them to the registry, then reads every dirty file in a stable order
and forwards new bytes to the multiplexer. Everything runs on one thread;
only the watcher's notification source lives on another.
"""

import os
import time
import logging
import threading
from dataclasses import dataclass

from dirtail.matcher import PathMatcher
from dirtail.models import EventKind, TrackedFile, WatchEvent
from dirtail.output import OutputMultiplexer
from dirtail.reader import TailReader
from dirtail.registry import FileRegistry
from dirtail.watcher import DirectoryScanner, DirectoryWatcher

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.3
RESCAN_INTERVAL = 5.0


@dataclass
class FollowStats:
    files_discovered: int = 0
    files_removed: int = 0
    rotations: int = 0
    cycles: int = 0
    bytes_emitted: int = 0


class DirectoryFollower:
    def __init__(
        self,
        directory: str,
        matcher: PathMatcher,
        watcher: DirectoryWatcher,
        reader: TailReader,
        output: OutputMultiplexer,
        order: str = "path",
        poll_interval: float = POLL_INTERVAL,
        rescan_interval: float = RESCAN_INTERVAL,
        lines: int | None = None,
        shutdown_event: threading.Event | None = None,
    ):
        self._directory = directory
        self._matcher = matcher
        self._watcher = watcher
        self._reader = reader
        self._output = output
        self._order = order
        self._poll_interval = poll_interval
        self._rescan_interval = rescan_interval
        self._lines = lines
        self._registry = FileRegistry()
        self._scanner = DirectoryScanner(directory)
        self._last_rescan = time.monotonic()
        self._stop = shutdown_event or threading.Event()
        self.stats = FollowStats()

    @property
    def registry(self) -> FileRegistry:
        return self._registry

    # -- registry updates -------------------------------------------------

    def _wanted(self, path: str) -> bool:
        return self._matcher.matches(os.path.basename(path)) and os.path.isfile(path)

    def _discover(self, path: str) -> TrackedFile | None:
        tracked = self._registry.discover(path)
        if tracked is not None:
            self.stats.files_discovered += 1
        return tracked

    def _on_seen(self, path: str):
        if path in self._registry:
            self._registry.mark_dirty(path)
        elif self._wanted(path):
            self._discover(path)

    def _on_removed(self, path: str):
        tracked = self._registry.get(path)
        if tracked is None:
            return
        if os.path.exists(path):
            # Replaced rather than gone; the rotation check sorts it out
            self._registry.mark_dirty(path)
            return
        for data in self._reader.read_removed(tracked):
            self._output.emit(tracked, data)
            self.stats.bytes_emitted += len(data)
        self._registry.remove(path)
        self._output.forget(path)
        self.stats.files_removed += 1

    def _on_renamed(self, src: str, dest: str):
        tracked = self._registry.get(src)
        if tracked is None:
            self._on_seen(dest)
        elif self._matcher.matches(os.path.basename(dest)):
            self._reader.close(src)
            self._reader.close(dest)
            if dest in self._registry:
                # The overwritten file is gone for good
                self._output.forget(dest)
                self.stats.files_removed += 1
            self._registry.rename(src, dest)
            self._output.forget(src)
        else:
            self._on_removed(src)

    def apply(self, events: list[WatchEvent]):
        """Apply a batch of watcher events to the registry."""
        for event in events:
            if event.kind in (EventKind.CREATED, EventKind.MODIFIED):
                self._on_seen(event.path)
            elif event.kind == EventKind.REMOVED:
                self._on_removed(event.path)
            elif event.kind == EventKind.RENAMED:
                self._on_renamed(event.path, event.dest_path)

    # -- reading ----------------------------------------------------------

    def drain(self) -> int:
        """Read every dirty file once and emit the new bytes. Returns bytes emitted."""
        emitted = 0
        for tracked in self._registry.dirty_files(self._order):
            stat = self._reader.stat(tracked)
            if stat is None:
                continue
            if self._registry.check_rotation(tracked, stat):
                self.stats.rotations += 1
                self._reader.close(tracked.path)

            while True:
                data = self._reader.read_new(tracked)
                if data:
                    self._output.emit(tracked, data)
                    emitted += len(data)
                if len(data) < self._reader.read_limit:
                    break
            if tracked.unavailable:
                continue    # retried next cycle
            self._registry.mark_read(tracked)

        self._output.flush()
        self.stats.bytes_emitted += emitted
        return emitted

    def _rescan_due(self) -> bool:
        if self._watcher.polls or self._rescan_interval <= 0:
            return False
        return time.monotonic() - self._last_rescan >= self._rescan_interval

    def _rescan(self) -> list[WatchEvent]:
        self._last_rescan = time.monotonic()
        return self._scanner.scan()

    # -- lifecycle --------------------------------------------------------

    def start(self):
        """Track every matching file already present in the directory."""
        self._scanner.baseline()
        for name in sorted(os.listdir(self._directory)):
            path = os.path.join(self._directory, name)
            if not self._wanted(path):
                continue
            tracked = self._discover(path)
            if tracked is not None and self._lines is not None:
                self._reader.start_at_last_lines(tracked, self._lines)
        if self._watcher.degraded:
            mode = "polling, native notifications unavailable"
        else:
            mode = "polling" if self._watcher.polls else "native notifications"
        logger.info("Following %d existing file(s) in %s (%s)", len(self._registry), self._directory, mode)

    def cycle(self, timeout: float | None = None) -> int:
        """One loop iteration: wait for events, apply them, drain dirty files."""
        if timeout is None:
            timeout = self._poll_interval
        events = self._watcher.next_batch(timeout)
        if self._watcher.needs_rescan():
            self._registry.mark_all_dirty()
            events += self._rescan()
        elif self._rescan_due():
            events += self._rescan()
        self.apply(events)
        self.stats.cycles += 1
        return self.drain()

    def run(self):
        """Follow until stop() is called, then flush and release every handle."""
        try:
            self.start()
            self.drain()
            while not self._stop.is_set():
                self.cycle()
        finally:
            try:
                self._output.flush()
            finally:
                self._reader.close_all()
                self._watcher.stop()
                logger.info(
                    "Stats: %d cycles, %d bytes emitted, %d files discovered, %d removed, %d rotations",
                    self.stats.cycles, self.stats.bytes_emitted, self.stats.files_discovered,
                    self.stats.files_removed, self.stats.rotations,
                )

    def stop(self):
        """Ask the loop to finish; it notices within one poll interval. Signal-safe."""
        self._stop.set()
