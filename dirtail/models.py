"""Per-file tracking state and watcher event types."""

import os
from dataclasses import dataclass
from enum import Enum


class FileState(Enum):
    DISCOVERED = "discovered"
    TAILING = "tailing"
    ROTATED = "rotated"
    REMOVED = "removed"


class EventKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True)
class WatchEvent:
    kind: EventKind
    path: str
    dest_path: str | None = None   # only set for RENAMED


def file_identity(stat: os.stat_result) -> tuple[int, int]:
    """Fingerprint of the underlying file: (device, inode)."""
    return (stat.st_dev, stat.st_ino)


@dataclass
class TrackedFile:
    path: str
    identity: tuple[int, int] | None = None
    offset: int = 0
    first_output_done: bool = False
    dirty: bool = True
    state: FileState = FileState.DISCOVERED
    unavailable: bool = False

    @property
    def name(self) -> str:
        return os.path.basename(self.path)
