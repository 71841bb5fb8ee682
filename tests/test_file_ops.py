"""Tests for core.file_ops: atomic replacement, identity and removal."""
import os
import pytest
from unittest.mock import patch


class TestAtomicWrite:
    def test_replaces_content(self, tmp_path):
        target = tmp_path / "img.png"
        target.write_bytes(b"old")

        from core.file_ops import atomic_write
        atomic_write(str(target), b"new")

        assert target.read_bytes() == b"new"
        assert os.listdir(tmp_path) == ["img.png"]

    def test_copies_mode(self, tmp_path):
        target = tmp_path / "img.png"
        target.write_bytes(b"old")
        os.chmod(target, 0o600)

        from core.file_ops import atomic_write
        atomic_write(str(target), b"new", copy_mode_from=str(target))

        assert os.stat(target).st_mode & 0o777 == 0o600

    def test_failed_rename_keeps_original_and_cleans_up(self, tmp_path):
        target = tmp_path / "img.png"
        target.write_bytes(b"old")

        from core.file_ops import atomic_write
        with patch("core.file_ops.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(OSError):
                atomic_write(str(target), b"new")

        assert target.read_bytes() == b"old"
        assert os.listdir(tmp_path) == ["img.png"]


class TestFileIdentity:
    def test_identity(self, tmp_path):
        target = tmp_path / "img.png"
        target.write_bytes(b"12345")

        from core.file_ops import file_identity
        identity = file_identity(str(target))
        assert identity.file_size == 5
        assert identity.modified_time == os.stat(target).st_mtime_ns

    def test_missing(self, tmp_path):
        from core.errors import ImageIOError
        from core.file_ops import file_identity
        with pytest.raises(ImageIOError):
            file_identity(str(tmp_path / "nope"))


class TestRemoveFiles:
    def test_counts_removed_and_skips_missing(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_text("x")
        b.write_text("x")

        from core.file_ops import remove_files
        assert remove_files([str(a), str(tmp_path / "missing"), str(b)]) == 2
        assert not a.exists() and not b.exists()

    def test_failure_logged_and_skipped(self, tmp_path, caplog):
        a = tmp_path / "a"
        a.write_text("x")
        real_remove = os.remove

        def flaky(path):
            if path == str(a):
                raise PermissionError("denied")
            real_remove(path)

        b = tmp_path / "b"
        b.write_text("x")

        from core.file_ops import remove_files
        with patch("core.file_ops.os.remove", side_effect=flaky):
            assert remove_files([str(a), str(b)]) == 1

        assert a.exists()
        assert "Failed to remove" in caplog.text
