"""Tests for mdview._utils.

Tests cover:
- PID liveness checks
- Cross-process file locking
- Data directory resolution
- Log filename sanitization
"""

import os
import sys
from pathlib import Path

import pytest

from mdview._utils import (
    detached_popen_kwargs,
    get_data_dir,
    get_log_path,
    is_pid_alive,
    lock_file,
    log_filename,
    unlock_file,
)


class TestPidCheck:
    def test_own_process_is_alive(self):
        assert is_pid_alive(os.getpid()) is True

    def test_nonexistent_pid(self):
        assert is_pid_alive(999999999) is False

    def test_non_positive_pid(self):
        assert is_pid_alive(0) is False
        assert is_pid_alive(-1) is False


@pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
class TestFileLocking:
    def test_second_exclusive_lock_is_refused(self, tmp_path):
        import fcntl

        lock_path = tmp_path / "test.lock"
        first = open(lock_path, "a+")
        second = open(lock_path, "a+")
        try:
            lock_file(first)
            with pytest.raises(OSError):
                fcntl.flock(second, fcntl.LOCK_EX | fcntl.LOCK_NB)
            unlock_file(first)
            fcntl.flock(second, fcntl.LOCK_EX | fcntl.LOCK_NB)
            unlock_file(second)
        finally:
            first.close()
            second.close()


class TestDataDir:
    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MDVIEW_DATA_DIR", str(tmp_path / "custom"))
        assert get_data_dir() == tmp_path / "custom"

    @pytest.mark.skipif(sys.platform != "linux", reason="XDG layout")
    def test_xdg_data_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MDVIEW_DATA_DIR", raising=False)
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
        assert get_data_dir() == tmp_path / "xdg" / "mdview"

    @pytest.mark.skipif(sys.platform != "linux", reason="XDG layout")
    def test_default_linux_location(self, monkeypatch):
        monkeypatch.delenv("MDVIEW_DATA_DIR", raising=False)
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        assert get_data_dir() == Path.home() / ".local" / "share" / "mdview"

    def test_log_path_under_logs_dir(self, tmp_path):
        path = get_log_path(Path("/some/path/README.md"), tmp_path)
        assert path.parent == tmp_path / "logs"
        assert path.name.startswith("README-")


class TestLogFilename:
    def test_simple_name(self):
        name = log_filename(Path("/some/path/README.md"))
        assert name.startswith("README-")
        assert name.endswith(".log")

    def test_special_characters_are_replaced(self):
        name = log_filename(Path("/some/path/my file (1).md"))
        assert name.startswith("my_file__1_-")

    def test_same_stem_different_directories(self):
        a = log_filename(Path("/one/README.md"))
        b = log_filename(Path("/two/README.md"))
        assert a != b

    def test_stable_for_same_path(self):
        assert log_filename(Path("/one/README.md")) == log_filename(
            Path("/one/README.md")
        )

    def test_long_stem_is_truncated(self):
        name = log_filename(Path("/x/" + "a" * 200 + ".md"))
        stem = name.rsplit("-", 1)[0]
        assert len(stem) == 50


class TestDetach:
    def test_detach_kwargs(self):
        kwargs = detached_popen_kwargs()
        if sys.platform == "win32":
            assert "creationflags" in kwargs
        else:
            assert kwargs == {"start_new_session": True}
