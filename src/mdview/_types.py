"""Type definitions for the mdview preview daemon.

Defines the core data structures shared between processes and components:
the registry's instance record, the watcher's change signal, and the
error taxonomy surfaced by the supervisor and CLI.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class Instance:
    """One running preview daemon bound to one markdown file.

    Instances are immutable once registered; the registry only ever
    inserts or removes them.
    """

    file_path: Path
    """Canonical absolute path of the watched file (registry key)."""

    port: int
    pid: int
    """OS process id of the serving process."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    log_path: Path | None = None
    """Captured output of a background instance. None in foreground mode."""

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"

    def uptime(self, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(timezone.utc)
        return max(now - self.started_at, timedelta(0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": str(self.file_path),
            "port": self.port,
            "pid": self.pid,
            "url": self.url,
            "started_at": self.started_at.isoformat(),
            "log_path": str(self.log_path) if self.log_path else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Instance:
        """Rebuild an Instance from its JSON form.

        Raises KeyError/ValueError/TypeError on malformed records; the
        registry treats those as corrupt entries.
        """
        started_at = datetime.fromisoformat(data["started_at"])
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=timezone.utc)
        log_path = data.get("log_path")
        return cls(
            file_path=Path(data["file_path"]),
            port=int(data["port"]),
            pid=int(data["pid"]),
            started_at=started_at,
            log_path=Path(log_path) if log_path else None,
        )


@dataclass(frozen=True)
class ChangeEvent:
    """The watched file's content may differ from what was last rendered."""

    at: float = field(default_factory=time.monotonic)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class MdviewError(Exception):
    """Base class for errors surfaced to the mdview CLI."""

    exit_code = 1


class NoPortAvailable(MdviewError):
    """Every port in the scanned range is already bound."""

    exit_code = 3

    def __init__(self, base_port: int, last_port: int) -> None:
        super().__init__(f"No available port in range {base_port}-{last_port}")
        self.base_port = base_port
        self.last_port = last_port


class AlreadyRegistered(MdviewError):
    """A live instance already serves this file."""

    exit_code = 0

    def __init__(self, existing: Instance) -> None:
        super().__init__(
            f"'{existing.file_path}' is already served at {existing.url} "
            f"(pid={existing.pid})"
        )
        self.existing = existing


class StartupFailed(MdviewError):
    """A background instance did not confirm its bind in time."""

    exit_code = 4

    def __init__(self, message: str, log_path: Path | None = None) -> None:
        if log_path is not None:
            message = f"{message} (see {log_path})"
        super().__init__(message)
        self.log_path = log_path


class NotRunning(MdviewError):
    """No live instance serves the requested file."""

    exit_code = 1

    def __init__(self, file_path: Path) -> None:
        super().__init__(f"No running instance found for '{file_path}'")
        self.file_path = file_path


class WatchLost(MdviewError):
    """The watched file was removed and did not come back."""

    exit_code = 5

    def __init__(self, file_path: Path) -> None:
        super().__init__(f"Lost track of '{file_path}': file was removed or moved")
        self.file_path = file_path
