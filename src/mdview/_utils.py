"""Shared utilities for the mdview package.

Deduplicates the platform-specific pieces used by the registry, the
server process and the supervisor: PID checks, file locking, detached
process creation, data-directory resolution and log file naming.
"""

from __future__ import annotations

import errno
import hashlib
import os
import re
import sys
from pathlib import Path
from typing import Any

APP_NAME = "mdview"

# ---------------------------------------------------------------------------
# PID check
# ---------------------------------------------------------------------------


def is_pid_alive(pid: int) -> bool:
    """Check if a process with the given PID is alive."""
    if pid <= 0:
        return False
    if sys.platform == "win32":
        import ctypes

        kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
        handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
        if handle:
            kernel32.CloseHandle(handle)
            return True
        return False
    else:
        try:
            os.kill(pid, 0)
            return True
        except OSError as e:
            # Exists, but owned by someone else
            return e.errno == errno.EPERM


# ---------------------------------------------------------------------------
# Cross-platform file locking
# ---------------------------------------------------------------------------


def lock_file(fd: Any) -> None:
    """Block until an exclusive lock is held. Works on Unix (fcntl) and Windows (msvcrt)."""
    if sys.platform == "win32":
        import msvcrt

        # msvcrt.locking operates on the file descriptor's current position
        fd.seek(0)
        msvcrt.locking(fd.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl

        fcntl.flock(fd, fcntl.LOCK_EX)


def unlock_file(fd: Any) -> None:
    """Release a file lock."""
    if sys.platform == "win32":
        import msvcrt

        fd.seek(0)
        try:
            msvcrt.locking(fd.fileno(), msvcrt.LK_UNLCK, 1)
        except OSError:
            pass
    else:
        import fcntl

        fcntl.flock(fd, fcntl.LOCK_UN)


# ---------------------------------------------------------------------------
# Cross-platform subprocess detach kwargs
# ---------------------------------------------------------------------------


def detached_popen_kwargs() -> dict[str, Any]:
    """Return Popen kwargs for detaching a subprocess from the parent."""
    if sys.platform == "win32":
        CREATE_NEW_PROCESS_GROUP = 0x00000200
        DETACHED_PROCESS = 0x00000008
        return {"creationflags": CREATE_NEW_PROCESS_GROUP | DETACHED_PROCESS}
    return {"start_new_session": True}


# ---------------------------------------------------------------------------
# Data directory resolution
# ---------------------------------------------------------------------------


def get_data_dir() -> Path:
    """Resolve the mdview application-data directory.

    Resolution order:
    1. ``MDVIEW_DATA_DIR`` environment variable (explicit override)
    2. The platform's per-user application-data location
    """
    env = os.getenv("MDVIEW_DATA_DIR")
    if env:
        return Path(env)
    if sys.platform == "win32":
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        if base:
            return Path(base) / APP_NAME
        return Path.home() / "AppData" / "Local" / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".local" / "share" / APP_NAME


def get_logs_dir(data_dir: Path | None = None) -> Path:
    return (data_dir or get_data_dir()) / "logs"


# ---------------------------------------------------------------------------
# Log file naming
# ---------------------------------------------------------------------------

_UNSAFE_CHARS_RE = re.compile(r"[^\w\-]", re.ASCII)
_MAX_STEM_CHARS = 50


def log_filename(file_path: Path) -> str:
    """Build a per-instance log filename for a markdown file.

    The stem is sanitized to ``[A-Za-z0-9_-]`` and suffixed with a short
    hash of the full path, so two ``README.md`` files in different
    directories never share a log.
    """
    stem = _UNSAFE_CHARS_RE.sub("_", file_path.stem or "unknown")[:_MAX_STEM_CHARS]
    digest = hashlib.sha1(str(file_path).encode("utf-8")).hexdigest()[:8]
    return f"{stem}-{digest}.log"


def get_log_path(file_path: Path, data_dir: Path | None = None) -> Path:
    return get_logs_dir(data_dir) / log_filename(file_path)
