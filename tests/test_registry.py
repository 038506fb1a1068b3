"""Tests for registry module."""

import os

import pytest

from dirtail.models import FileState, file_identity
from dirtail.registry import FileRegistry


class TestDiscover:
    def test_new_file_starts_at_zero(self, write):
        path = write("a.log", "hello\n")
        reg = FileRegistry()
        tracked = reg.discover(path)
        assert tracked.offset == 0
        assert tracked.identity == file_identity(os.stat(path))
        assert tracked.dirty is True
        assert tracked.first_output_done is False
        assert tracked.state == FileState.DISCOVERED
        assert path in reg

    def test_already_tracked_returns_none(self, write):
        path = write("a.log", "x")
        reg = FileRegistry()
        reg.discover(path)
        assert reg.discover(path) is None
        assert len(reg) == 1

    def test_missing_file_returns_none(self, log_dir):
        reg = FileRegistry()
        assert reg.discover(os.path.join(log_dir, "ghost.log")) is None
        assert len(reg) == 0

    def test_insertion_order_kept(self, write):
        reg = FileRegistry()
        for name in ("c.log", "a.log", "b.log"):
            reg.discover(write(name, "x"))
        assert [os.path.basename(p) for p in reg.paths()] == ["c.log", "a.log", "b.log"]


class TestDirtyTracking:
    def test_mark_dirty_and_read(self, write):
        path = write("a.log", "x")
        reg = FileRegistry()
        tracked = reg.discover(path)
        reg.mark_read(tracked)
        assert tracked.dirty is False
        assert tracked.state == FileState.TAILING
        assert reg.mark_dirty(path) is True
        assert tracked.dirty is True

    def test_mark_dirty_unknown_path(self):
        assert FileRegistry().mark_dirty("/nope") is False

    def test_dirty_files_ascending_path(self, write):
        reg = FileRegistry()
        for name in ("c.log", "a.log", "b.log"):
            reg.discover(write(name, "x"))
        assert [t.name for t in reg.dirty_files("path")] == ["a.log", "b.log", "c.log"]

    def test_dirty_files_discovery_order(self, write):
        reg = FileRegistry()
        for name in ("c.log", "a.log", "b.log"):
            reg.discover(write(name, "x"))
        assert [t.name for t in reg.dirty_files("discovery")] == ["c.log", "a.log", "b.log"]

    def test_clean_files_excluded(self, write):
        reg = FileRegistry()
        a = reg.discover(write("a.log", "x"))
        reg.discover(write("b.log", "x"))
        reg.mark_read(a)
        assert [t.name for t in reg.dirty_files()] == ["b.log"]

    def test_unknown_order_rejected(self):
        with pytest.raises(ValueError):
            FileRegistry().dirty_files("random")

    def test_mark_all_dirty(self, write):
        reg = FileRegistry()
        a = reg.discover(write("a.log", "x"))
        b = reg.discover(write("b.log", "x"))
        reg.mark_read(a)
        reg.mark_read(b)
        reg.mark_all_dirty()
        assert a.dirty and b.dirty


class TestRemoveAndRename:
    def test_remove(self, write):
        path = write("a.log", "x")
        reg = FileRegistry()
        tracked = reg.discover(path)
        assert reg.remove(path) is tracked
        assert tracked.state == FileState.REMOVED
        assert path not in reg
        assert reg.remove(path) is None

    def test_rename_keeps_offset_and_identity(self, write, log_dir):
        src = write("a.log", "hello")
        reg = FileRegistry()
        tracked = reg.discover(src)
        tracked.offset = 5
        dest = os.path.join(log_dir, "b.log")
        renamed = reg.rename(src, dest)
        assert renamed is tracked
        assert tracked.path == dest
        assert tracked.offset == 5
        assert src not in reg and dest in reg

    def test_rename_untracked(self):
        assert FileRegistry().rename("/a", "/b") is None


class TestRotation:
    def test_no_change(self, write):
        path = write("a.log", "hello")
        reg = FileRegistry()
        tracked = reg.discover(path)
        tracked.offset = 5
        assert reg.check_rotation(tracked, os.stat(path)) is False
        assert tracked.offset == 5

    def test_growth_is_not_rotation(self, write):
        path = write("a.log", "hello")
        reg = FileRegistry()
        tracked = reg.discover(path)
        tracked.offset = 5
        write("a.log", " world")
        assert reg.check_rotation(tracked, os.stat(path)) is False

    def test_truncation_resets(self, write):
        path = write("a.log", "hello world\n")
        reg = FileRegistry()
        tracked = reg.discover(path)
        tracked.offset = 12
        tracked.first_output_done = True
        write("a.log", "new\n", mode="w")
        assert reg.check_rotation(tracked, os.stat(path)) is True
        assert tracked.offset == 0
        assert tracked.first_output_done is False
        assert tracked.state == FileState.ROTATED

    def test_identity_change_resets(self, write, log_dir):
        path = write("a.log", "old\n")
        reg = FileRegistry()
        tracked = reg.discover(path)
        tracked.offset = 4
        replacement = write("a.log.new", "replacement content\n")
        os.replace(replacement, path)
        stat = os.stat(path)
        assert reg.check_rotation(tracked, stat) is True
        assert tracked.offset == 0
        assert tracked.identity == file_identity(stat)
