"""OutputMultiplexer: merges per-file byte streams into one tail-style stream.

A ``==> path <==`` header is written whenever the active file changes, or
when a file produces output for the first time (again, after rotation).
Bytes are written verbatim.
"""

import os
import logging

from dirtail.models import TrackedFile

logger = logging.getLogger(__name__)


def display_path(path: str, cwd: str | None = None) -> str:
    """Path as shown in headers: relative to *cwd* when possible."""
    try:
        return os.path.relpath(path, cwd or os.getcwd())
    except ValueError:
        # Different drive on Windows
        return path


def format_header(path: str, cwd: str | None = None) -> bytes:
    return b"\n==> " + os.fsencode(display_path(path, cwd)) + b" <==\n"


class OutputMultiplexer:
    def __init__(self, sink, cwd: str | None = None):
        self._sink = sink
        self._cwd = cwd
        self._active_path: str | None = None
        self._ends_with_newline = True
        self._bytes_written = 0

    @property
    def active_path(self) -> str | None:
        return self._active_path

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def _write(self, data: bytes):
        self._sink.write(data)
        self._bytes_written += len(data)
        self._ends_with_newline = data.endswith(b"\n")

    def emit(self, tracked: TrackedFile, data: bytes):
        if not data:
            return
        if tracked.path != self._active_path or not tracked.first_output_done:
            # Keep the header on its own line after unterminated output
            prefix = b"" if self._ends_with_newline else b"\n"
            logger.debug("Switching output to %s", tracked.path)
            self._write(prefix + format_header(tracked.path, self._cwd))
            self._active_path = tracked.path
            tracked.first_output_done = True
        self._write(data)

    def forget(self, path: str):
        """Drop the active marker if it points at *path* (file removed or renamed)."""
        if self._active_path == path:
            self._active_path = None

    def flush(self):
        self._sink.flush()
