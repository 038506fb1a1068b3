"""TailReader: incremental byte reads from tracked files.

Open handles are cached per path in LRU order and reopened transparently
after eviction or rotation. Every read is bounded: seek to the stored
offset, read at most READ_LIMIT bytes, return. Whatever is left over is
picked up by the next read.
"""

import os
import logging
from collections import OrderedDict

from dirtail.models import TrackedFile, file_identity

logger = logging.getLogger(__name__)

BUFFER_SIZE = 8 * 1024
MAX_OPEN_FILES = 512
READ_LIMIT = 1024 * 1024


def tail_start_offset(fh, lines: int) -> int:
    """Offset at which the last *lines* lines of *fh* begin.

    A trailing newline does not count as the start of an empty last line.
    Scans backwards in BUFFER_SIZE blocks.
    """
    size = os.fstat(fh.fileno()).st_size
    if size == 0:
        return 0
    if lines <= 0:
        return size

    end = size - 1
    fh.seek(end)
    if fh.read(1) != b"\n":
        end = size

    found = 0
    pos = end
    while pos > 0:
        start = max(0, pos - BUFFER_SIZE)
        fh.seek(start)
        block = fh.read(pos - start)
        idx = len(block)
        while True:
            idx = block.rfind(b"\n", 0, idx)
            if idx < 0:
                break
            found += 1
            if found >= lines:
                return start + idx + 1
        pos = start
    return 0


class TailReader:
    def __init__(self, max_open_files: int = MAX_OPEN_FILES, read_limit: int = READ_LIMIT):
        self._max_open = max(1, max_open_files)
        self.read_limit = max(1, read_limit)
        self._handles: OrderedDict[str, object] = OrderedDict()

    @property
    def open_count(self) -> int:
        return len(self._handles)

    def _report_unavailable(self, tracked: TrackedFile, error: OSError):
        if not tracked.unavailable:
            logger.warning("Cannot read %s: %s", tracked.path, error)
        tracked.unavailable = True

    def _report_available(self, tracked: TrackedFile):
        if tracked.unavailable:
            logger.info("%s is readable again", tracked.path)
        tracked.unavailable = False

    def _open(self, tracked: TrackedFile):
        """Return a handle on the file *tracked* currently refers to."""
        fh = self._handles.get(tracked.path)
        if fh is not None:
            if file_identity(os.fstat(fh.fileno())) == tracked.identity:
                self._handles.move_to_end(tracked.path)
                return fh
            logger.debug("Handle for %s points at a stale file, reopening", tracked.path)
            self.close(tracked.path)

        fh = open(tracked.path, "rb")
        current = file_identity(os.fstat(fh.fileno()))
        if tracked.identity is not None and current != tracked.identity:
            # Replaced between stat and open; the next rotation check picks it up.
            fh.close()
            raise FileNotFoundError(f"{tracked.path} was replaced while opening")

        self._handles[tracked.path] = fh
        logger.debug("Opened %s", tracked.path)
        while len(self._handles) > self._max_open:
            old_path, old_fh = self._handles.popitem(last=False)
            old_fh.close()
            logger.debug("Evicted handle for %s", old_path)
        return fh

    def stat(self, tracked: TrackedFile) -> os.stat_result | None:
        try:
            return os.stat(tracked.path)
        except OSError as e:
            self._report_unavailable(tracked, e)
            return None

    def read_new(self, tracked: TrackedFile) -> bytes:
        """Read up to ``read_limit`` bytes appended since ``tracked.offset`` and advance it.

        Returns b"" if nothing is new or the file is momentarily unreadable.
        A result of exactly ``read_limit`` bytes means more may be waiting.
        """
        try:
            fh = self._open(tracked)
            fh.seek(tracked.offset)
            data = fh.read(self.read_limit)
        except OSError as e:
            self.close(tracked.path)
            self._report_unavailable(tracked, e)
            return b""

        self._report_available(tracked)
        tracked.offset += len(data)
        return data

    def read_removed(self, tracked: TrackedFile):
        """Drain whatever is left through an already open handle, then close it.

        Yields chunks of at most ``read_limit`` bytes.
        """
        fh = self._handles.pop(tracked.path, None)
        if fh is None:
            return
        try:
            if file_identity(os.fstat(fh.fileno())) != tracked.identity:
                return
            fh.seek(tracked.offset)
            while True:
                data = fh.read(self.read_limit)
                if not data:
                    return
                tracked.offset += len(data)
                yield data
        except OSError as e:
            logger.debug("Final read of %s failed: %s", tracked.path, e)
        finally:
            fh.close()

    def start_at_last_lines(self, tracked: TrackedFile, lines: int):
        """Move ``tracked.offset`` so only the last *lines* lines are shown."""
        try:
            fh = self._open(tracked)
            tracked.offset = tail_start_offset(fh, lines)
        except OSError as e:
            self._report_unavailable(tracked, e)

    def close(self, path: str):
        fh = self._handles.pop(path, None)
        if fh is not None:
            fh.close()
            logger.debug("Closed %s", path)

    def close_all(self):
        """Close all open file handles."""
        for fh in self._handles.values():
            try:
                fh.close()
            except OSError as e:
                logger.debug("Error closing handle: %s", e)
        self._handles.clear()
