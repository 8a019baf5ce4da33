"""mdview: live markdown preview in the browser.

Serves one markdown file over local HTTP, pushes a reload to open
browser tabs whenever the file changes on disk, and keeps a
cross-process registry of background instances so a file is never
served twice.

Quick start::

    from mdview import serve, stop

    result = serve("notes.md")
    print(result.instance.url)
    stop("notes.md")
"""

from __future__ import annotations

from mdview._types import (
    AlreadyRegistered,
    ChangeEvent,
    Instance,
    MdviewError,
    NoPortAvailable,
    NotRunning,
    StartupFailed,
    WatchLost,
)
from mdview.registry import InstanceRegistry
from mdview.supervisor import (
    ServeResult,
    list_instances,
    run_foreground,
    serve,
    stop,
)

__version__ = "0.2.0"

__all__ = [
    "AlreadyRegistered",
    "ChangeEvent",
    "Instance",
    "InstanceRegistry",
    "MdviewError",
    "NoPortAvailable",
    "NotRunning",
    "ServeResult",
    "StartupFailed",
    "WatchLost",
    "list_instances",
    "run_foreground",
    "serve",
    "stop",
    "__version__",
]
