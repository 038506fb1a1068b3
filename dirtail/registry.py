"""FileRegistry: in-memory tracking state for every followed file.

Keyed by path, insertion-ordered by discovery. Owned by the follow loop,
which is the only caller of the mutating methods.
"""

import os
import logging

from dirtail.models import FileState, TrackedFile, file_identity

logger = logging.getLogger(__name__)

ORDERS = ("path", "discovery")


class FileRegistry:
    def __init__(self):
        self._files: dict[str, TrackedFile] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self):
        return iter(list(self._files.values()))

    def get(self, path: str) -> TrackedFile | None:
        return self._files.get(path)

    def paths(self) -> list[str]:
        return list(self._files)

    def discover(self, path: str) -> TrackedFile | None:
        """Start tracking *path* from offset 0. Returns None if already tracked or gone."""
        if path in self._files:
            return None
        try:
            stat = os.stat(path)
        except OSError as e:
            logger.debug("Cannot stat %s at discovery: %s", path, e)
            return None

        tracked = TrackedFile(path=path, identity=file_identity(stat))
        self._files[path] = tracked
        logger.info("Discovered %s", path)
        return tracked

    def mark_dirty(self, path: str) -> bool:
        tracked = self._files.get(path)
        if tracked is None:
            return False
        tracked.dirty = True
        return True

    def mark_all_dirty(self):
        for tracked in self._files.values():
            tracked.dirty = True

    def mark_read(self, tracked: TrackedFile):
        tracked.dirty = False
        tracked.state = FileState.TAILING

    def remove(self, path: str) -> TrackedFile | None:
        tracked = self._files.pop(path, None)
        if tracked is not None:
            tracked.state = FileState.REMOVED
            tracked.dirty = False
            logger.info("Stopped following %s (removed)", path)
        return tracked

    def rename(self, src: str, dest: str) -> TrackedFile | None:
        """Re-key a tracked file, keeping its offset and identity."""
        tracked = self._files.pop(src, None)
        if tracked is None:
            return None
        stale = self._files.pop(dest, None)
        if stale is not None:
            stale.state = FileState.REMOVED
        tracked.path = dest
        tracked.dirty = True
        self._files[dest] = tracked
        logger.info("Renamed %s -> %s", src, dest)
        return tracked

    def check_rotation(self, tracked: TrackedFile, stat: os.stat_result) -> bool:
        """Reset *tracked* if its path now points at a different or shorter file.

        Returns True when a rotation or truncation was detected.
        """
        current = file_identity(stat)
        if tracked.identity is None:
            tracked.identity = current
            return False

        if current != tracked.identity:
            logger.info("File rotated (identity changed): %s", tracked.path)
        elif stat.st_size < tracked.offset:
            logger.info("File truncated: %s (%d < %d)", tracked.path, stat.st_size, tracked.offset)
        else:
            return False

        tracked.identity = current
        tracked.offset = 0
        tracked.first_output_done = False
        tracked.state = FileState.ROTATED
        return True

    def dirty_files(self, order: str = "path") -> list[TrackedFile]:
        """Files awaiting a read, in deterministic processing order."""
        dirty = [t for t in self._files.values() if t.dirty]
        if order == "path":
            dirty.sort(key=lambda t: t.path)
        elif order != "discovery":
            raise ValueError(f"unknown order: {order!r}")
        return dirty
