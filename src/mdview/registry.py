"""Cross-process registry of running preview instances.

Every ``mdview`` invocation is its own OS process, so the registry lives
on disk: a JSON document keyed by canonical file path, guarded by an
advisory exclusive lock on a sidecar lock file. Each public operation
performs its whole read-check-write sequence while holding that lock.

Records whose process no longer exists are reclaimed on the next read
(lookup, register, list), so an instance killed out of band never blocks
a fresh ``serve`` of the same file.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from mdview._types import AlreadyRegistered, Instance
from mdview._utils import get_data_dir, is_pid_alive, lock_file, unlock_file

logger = logging.getLogger(__name__)

STATE_VERSION = 1
_STATE_FILE = "instances.json"
_LOCK_FILE = ".instances.lock"


def canonicalize(file_path: Path | str) -> Path:
    """Resolve symlinks and relative segments into the registry key."""
    return Path(file_path).expanduser().resolve()


class InstanceRegistry:
    """Durable mapping of canonical file path to running Instance.

    Args:
        data_dir: Directory holding the store and lock file. Defaults to
            the platform application-data directory.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir else get_data_dir()
        self.state_path = self.data_dir / _STATE_FILE
        self.lock_path = self.data_dir / _LOCK_FILE

    # --- Locking and storage ---

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the cross-process exclusive lock for the duration."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        lock_fd = open(self.lock_path, "a+")
        try:
            lock_file(lock_fd)
            try:
                yield
            finally:
                unlock_file(lock_fd)
        finally:
            lock_fd.close()

    def _read(self) -> dict[str, Instance]:
        """Load all records. Caller must hold the lock."""
        if not self.state_path.exists():
            return {}
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict) or not isinstance(
                data.get("instances", {}), dict
            ):
                raise ValueError("unexpected registry layout")
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            self._quarantine()
            return {}

        instances: dict[str, Instance] = {}
        for key, raw in data.get("instances", {}).items():
            try:
                inst = Instance.from_dict(raw)
            except (KeyError, ValueError, TypeError, AttributeError):
                logger.warning(f"Dropping malformed registry entry for {key!r}")
                continue
            instances[str(inst.file_path)] = inst
        return instances

    def _quarantine(self) -> None:
        """Move an unparseable store aside so startup can proceed."""
        backup = self.state_path.with_name(_STATE_FILE + ".bak")
        try:
            os.replace(self.state_path, backup)
            logger.warning(
                f"Registry file was corrupted; backed up to {backup} "
                "and treating as empty"
            )
        except OSError:
            logger.warning("Registry file was corrupted and could not be backed up")

    def _write(self, instances: dict[str, Instance]) -> None:
        """Persist all records atomically. Caller must hold the lock."""
        payload: dict[str, Any] = {
            "version": STATE_VERSION,
            "instances": {key: inst.to_dict() for key, inst in instances.items()},
        }
        tmp_path = self.state_path.with_name(f".{_STATE_FILE}.{os.getpid()}.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.state_path)

    def _prune(self, instances: dict[str, Instance]) -> bool:
        """Drop records whose process is gone. Returns True if any were."""
        stale = [key for key, inst in instances.items() if not is_pid_alive(inst.pid)]
        for key in stale:
            inst = instances.pop(key)
            logger.info(f"Reclaimed stale instance for '{key}' (pid={inst.pid})")
        return bool(stale)

    # --- Public API ---

    def lookup(self, file_path: Path | str) -> Instance | None:
        """Return the live instance serving ``file_path``, if any."""
        key = str(canonicalize(file_path))
        with self._locked():
            instances = self._read()
            inst = instances.get(key)
            if inst is None:
                return None
            if is_pid_alive(inst.pid):
                return inst
            del instances[key]
            logger.info(f"Reclaimed stale instance for '{key}' (pid={inst.pid})")
            self._write(instances)
            return None

    def register(self, instance: Instance) -> Instance:
        """Record a new instance.

        Raises:
            AlreadyRegistered: If a live instance serves the same file.
        """
        key = str(canonicalize(instance.file_path))
        with self._locked():
            instances = self._read()
            existing = instances.get(key)
            if existing is not None and is_pid_alive(existing.pid):
                raise AlreadyRegistered(existing)
            self._prune(instances)
            instances[key] = instance
            self._write(instances)
        logger.debug(f"Registered '{key}' on port {instance.port} (pid={instance.pid})")
        return instance

    def unregister(self, file_path: Path | str, pid: int | None = None) -> bool:
        """Remove the entry for ``file_path``. Idempotent.

        Args:
            file_path: File whose record to drop.
            pid: If given, only drop the record when it belongs to this
                process, so a shutting-down server never removes the
                record of a newer instance.

        Returns:
            True if a record was removed.
        """
        key = str(canonicalize(file_path))
        with self._locked():
            instances = self._read()
            existing = instances.get(key)
            if existing is None:
                return False
            if pid is not None and existing.pid != pid:
                logger.debug(
                    f"Entry for '{key}' belongs to pid={existing.pid}, not {pid}; "
                    "leaving it"
                )
                return False
            del instances[key]
            self._write(instances)
        logger.debug(f"Unregistered '{key}'")
        return True

    def list_all(self) -> list[Instance]:
        """Return every live instance, oldest first."""
        with self._locked():
            instances = self._read()
            if self._prune(instances):
                self._write(instances)
        return sorted(instances.values(), key=lambda inst: inst.started_at)
