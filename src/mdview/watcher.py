"""Watch one markdown file and emit debounced change signals.

The watch is placed on the file's parent directory rather than the file
itself: editors that save atomically rename a temp file over the
original, which would orphan an inode-level watch. Raw notifications are
grouped by ``watchfiles`` and every group that touches the file becomes
exactly one ChangeEvent.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterator
from pathlib import Path

from watchfiles import Change, awatch

from mdview._types import ChangeEvent, WatchLost

logger = logging.getLogger(__name__)

# Quiet gap (ms) that closes a burst of notifications
DEBOUNCE_MS = 100
# Upper bound (ms) on how long one burst may keep growing
DEBOUNCE_MAX_MS = 1000
# How long the file may stay missing before the watch is considered lost
LOST_TIMEOUT = 5.0
# Wake-up interval (ms) while idle, used to notice a missing file
_IDLE_TICK_MS = 250
_REWATCH_DELAY = 0.2


def _target_filter(file_path: Path):
    name = file_path.name

    def _filter(change: Change, path: str) -> bool:
        return Path(path).name == name

    return _filter


def _directory_identity(directory: Path) -> tuple[int, int] | None:
    try:
        st = directory.stat()
    except OSError:
        return None
    return (st.st_dev, st.st_ino)


async def watch(
    file_path: Path,
    *,
    debounce_ms: int = DEBOUNCE_MS,
    debounce_max_ms: int = DEBOUNCE_MAX_MS,
    lost_timeout: float = LOST_TIMEOUT,
    stop_event: threading.Event | None = None,
) -> AsyncIterator[ChangeEvent]:
    """Yield one ChangeEvent per burst of modifications to ``file_path``.

    The directory watch is torn down and placed again whenever the file
    was deleted, came back, or its directory was replaced, so a watch
    left on a removed directory never goes silent.

    Args:
        file_path: File to watch (should already be canonical).
        debounce_ms: Quiet gap that ends a burst.
        debounce_max_ms: Longest a single burst may be collected.
        lost_timeout: Seconds the file may be missing before giving up.
        stop_event: Set it to end the iteration cleanly.

    Raises:
        WatchLost: The file was deleted or moved away and did not
            reappear within ``lost_timeout``.
    """
    file_path = Path(file_path)
    directory = file_path.parent
    stop_event = stop_event or threading.Event()
    missing_since: float | None = None

    def _check_missing() -> None:
        nonlocal missing_since
        if missing_since is None:
            missing_since = time.monotonic()
            logger.warning(f"'{file_path}' disappeared; waiting for it to come back")
        elif time.monotonic() - missing_since >= lost_timeout:
            raise WatchLost(file_path)

    while not stop_event.is_set():
        watched = _directory_identity(directory)
        if watched is None:
            _check_missing()
            await asyncio.sleep(_IDLE_TICK_MS / 1000)
            continue
        try:
            async for changes in awatch(
                directory,
                watch_filter=_target_filter(file_path),
                stop_event=stop_event,
                debounce=debounce_max_ms,
                step=debounce_ms,
                rust_timeout=_IDLE_TICK_MS,
                yield_on_timeout=True,
                recursive=False,
            ):
                replaced = _directory_identity(directory) != watched
                if not file_path.exists():
                    _check_missing()
                    if replaced:
                        break
                    continue
                came_back = missing_since is not None
                if came_back:
                    logger.info(f"'{file_path}' is back")
                    missing_since = None
                if changes or came_back or replaced:
                    logger.debug(f"Change detected in '{file_path.name}'")
                    yield ChangeEvent()
                deleted = any(change == Change.deleted for change, _ in changes)
                if replaced or came_back or deleted:
                    logger.debug(f"Re-establishing watch on '{directory}'")
                    break
            else:
                return
        except OSError as e:
            logger.warning(f"Watch on '{directory}' failed ({e}); re-establishing")
            await asyncio.sleep(_REWATCH_DELAY)
