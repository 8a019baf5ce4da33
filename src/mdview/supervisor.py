"""Foreground and background lifecycle of preview instances.

``run_foreground`` runs a server in the current process and keeps it in
the registry for exactly as long as it serves. ``serve`` starts the same
logic as a detached process with its output captured in a per-instance
log file, and waits for it to register. ``stop`` and ``list_instances``
operate on the registry from any process.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mdview._types import (
    AlreadyRegistered,
    Instance,
    NoPortAvailable,
    NotRunning,
    StartupFailed,
)
from mdview._utils import detached_popen_kwargs, get_log_path, is_pid_alive
from mdview.ports import DEFAULT_PORT, MAX_ATTEMPTS
from mdview.registry import InstanceRegistry, canonicalize

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 10.0
STOP_GRACE = 3.0
_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class ServeResult:
    """Outcome of a background ``serve``."""

    instance: Instance
    started: bool
    """False when an existing instance was reused."""


def resolve_path(file: Path | str, must_exist: bool = True) -> Path:
    """Canonicalize a user-supplied path.

    Raises:
        FileNotFoundError: If ``must_exist`` and nothing is there.
        IsADirectoryError: If ``must_exist`` and it is not a regular file.
    """
    path = canonicalize(file)
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"File '{file}' not found")
        if not path.is_file():
            raise IsADirectoryError(f"'{file}' is not a file")
    return path


@contextmanager
def registered_instance(
    registry: InstanceRegistry, instance: Instance
) -> Iterator[Instance]:
    """Hold a registry entry for the duration of the block.

    Raises:
        AlreadyRegistered: If another live instance owns the file.
    """
    registry.register(instance)
    try:
        yield instance
    finally:
        registry.unregister(instance.file_path, pid=instance.pid)


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def _shutdown(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    # On Windows, only SIGINT and SIGBREAK are supported.
    if sys.platform == "win32":
        signal.signal(signal.SIGBREAK, _shutdown)  # type: ignore[attr-defined]
    else:
        signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)


def run_foreground(
    file: Path | str,
    base_port: int = DEFAULT_PORT,
    open_browser: bool = True,
    registry: InstanceRegistry | None = None,
    log_path: Path | None = None,
    stop_event: threading.Event | None = None,
    on_ready: Callable[[Instance], None] | None = None,
) -> Instance:
    """Serve ``file`` from this process until interrupted.

    The registry entry is acquired once the port is bound and released
    on every exit path, including SIGINT/SIGTERM.

    Args:
        file: Markdown file to serve.
        base_port: First port to try.
        open_browser: Open a browser tab once registered.
        registry: Registry to record the instance in.
        log_path: Where this process's output goes, if redirected.
        stop_event: Set it to stop serving. When omitted, SIGINT/SIGTERM
            handlers are installed that set an internal one.
        on_ready: Optional callable invoked with the Instance once it is
            registered and serving.

    Returns:
        The Instance that was served.

    Raises:
        AlreadyRegistered: Another live instance already serves the file.
        NoPortAvailable: No port in range could be bound.
        WatchLost: The file went away for good while being served.
    """
    from mdview.server import PreviewServer

    file_path = resolve_path(file)
    registry = registry or InstanceRegistry()

    existing = registry.lookup(file_path)
    if existing is not None:
        raise AlreadyRegistered(existing)

    if stop_event is None:
        stop_event = threading.Event()
        _install_stop_handlers(stop_event)

    server = PreviewServer(file_path, port=base_port)
    server.start(open_browser=False)
    try:
        instance = Instance(
            file_path=file_path,
            port=server.port,
            pid=os.getpid(),
            log_path=log_path,
        )
        with registered_instance(registry, instance):
            if open_browser:
                server.open_browser()
            if on_ready is not None:
                on_ready(instance)
            server.wait(stop_event)
    finally:
        server.stop()

    if server.watch_error is not None:
        raise server.watch_error
    return instance


def serve(
    file: Path | str,
    base_port: int = DEFAULT_PORT,
    open_browser: bool = True,
    registry: InstanceRegistry | None = None,
    timeout: float = STARTUP_TIMEOUT,
) -> ServeResult:
    """Ensure a background instance serves ``file``.

    Reuses a live instance when one exists. Otherwise spawns a detached
    ``python -m mdview.server`` whose output goes to the per-instance log
    file, and waits until it has registered itself.

    Raises:
        NoPortAvailable: The child could not bind any port.
        StartupFailed: The child exited or did not register in time.
    """
    file_path = resolve_path(file)
    registry = registry or InstanceRegistry()

    existing = registry.lookup(file_path)
    if existing is not None:
        return ServeResult(existing, started=False)

    log_path = get_log_path(file_path, registry.data_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        sys.executable,
        "-m",
        "mdview.server",
        str(file_path),
        "--port",
        str(base_port),
        "--log-file",
        str(log_path),
    ]
    if not open_browser:
        cmd.append("--no-open")

    env = dict(os.environ, MDVIEW_DATA_DIR=str(registry.data_dir))
    with open(log_path, "ab") as log_fd:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=log_fd,
            stderr=subprocess.STDOUT,
            env=env,
            **detached_popen_kwargs(),
        )
    logger.debug(f"Spawned server process pid={proc.pid} for '{file_path}'")

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        instance = registry.lookup(file_path)
        if instance is not None and instance.pid == proc.pid:
            return ServeResult(instance, started=True)

        returncode = proc.poll()
        if returncode is not None:
            # Lost a race with a concurrent serve: reuse the winner
            instance = registry.lookup(file_path)
            if instance is not None:
                return ServeResult(instance, started=False)
            if returncode == NoPortAvailable.exit_code:
                raise NoPortAvailable(base_port, base_port + MAX_ATTEMPTS - 1)
            raise StartupFailed(
                f"Server process exited with code {returncode}", log_path
            )
        time.sleep(_POLL_INTERVAL)

    terminate(proc.pid, grace=STOP_GRACE)
    registry.unregister(file_path, pid=proc.pid)
    raise StartupFailed(
        f"Server process did not confirm startup within {timeout:g}s", log_path
    )


def list_instances(registry: InstanceRegistry | None = None) -> list[Instance]:
    """All live instances, oldest first."""
    return (registry or InstanceRegistry()).list_all()


def _reap(pid: int) -> None:
    """Collect ``pid`` if it is an exited child of this process.

    An unreaped child stays a zombie, which still looks alive to
    ``is_pid_alive``.
    """
    if sys.platform == "win32":
        return
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass


def terminate(pid: int, grace: float = STOP_GRACE) -> bool:
    """Ask ``pid`` to exit, escalating to a forced kill after ``grace``.

    Returns:
        True if the process had to be force-terminated.
    """
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False

    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        _reap(pid)
        if not is_pid_alive(pid):
            return False
        time.sleep(0.05)

    logger.warning(f"Process {pid} did not exit within {grace:g}s; killing it")
    try:
        os.kill(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
    except ProcessLookupError:
        return False
    return True


def stop(
    file: Path | str,
    registry: InstanceRegistry | None = None,
    grace: float = STOP_GRACE,
) -> Instance:
    """Stop the instance serving ``file`` and drop its registry entry.

    The file itself may already have been deleted.

    Raises:
        NotRunning: If no live instance serves the file.
    """
    file_path = resolve_path(file, must_exist=False)
    registry = registry or InstanceRegistry()

    instance = registry.lookup(file_path)
    if instance is None:
        raise NotRunning(file_path)

    terminate(instance.pid, grace=grace)
    registry.unregister(file_path, pid=instance.pid)
    return instance
