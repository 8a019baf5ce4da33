"""Preview server: Starlette + Server-Sent Events for one markdown file.

Runs uvicorn on a private event loop in a background thread, alongside
the file watcher. Every processed change is pushed to all open event
streams as a ``reload`` message; browsers then re-fetch the page, which
is rendered fresh from disk on each request.

Endpoints:
    GET  /                 → current document, rendered on each request
    GET  /assets/{path}    → packaged theme and reload client
    GET  /events           → event stream (``data: reload``, keepalive comments)
    GET  /api/health       → health check (file, pid, port, uptime)
    GET  /{path}           → files next to the document (images, links)
"""

from __future__ import annotations

import asyncio
import html
import logging
import os
import threading
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import (
    FileResponse,
    HTMLResponse,
    JSONResponse,
    Response,
    StreamingResponse,
)
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from mdview._types import ChangeEvent, StartupFailed, WatchLost
from mdview.ports import DEFAULT_PORT, BoundPort, allocate
from mdview.renderer import render_file
from mdview.watcher import DEBOUNCE_MS, LOST_TIMEOUT, watch

logger = logging.getLogger(__name__)

_STATIC_DIR = Path(__file__).parent / "static"
RELOAD = "reload"
KEEPALIVE_SECONDS = 15.0
# Pending messages per subscriber before it is considered dead
_SUBSCRIBER_BACKLOG = 16
_STARTUP_TIMEOUT = 5.0
_CLOSE = None


class Subscriber:
    """One open browser connection to the event stream."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[str | None] = asyncio.Queue(
            maxsize=_SUBSCRIBER_BACKLOG
        )
        self.connected_at = time.monotonic()


class PreviewServer:
    """HTTP + event-stream server for a single markdown file.

    Holds the set of live subscribers and broadcasts a reload to each of
    them whenever the watcher reports a change. Designed to run in a
    background thread via ``start()``.

    Args:
        file_path: Canonical path of the document to serve.
        host: Host to bind to (default: 127.0.0.1, localhost only).
        port: First port to try when no bound socket is supplied.
        debounce_ms: Quiet gap that closes a burst of file notifications.
        keepalive: Seconds between keepalive comments on idle streams.
        lost_timeout: Seconds the file may be missing before shutting down.
    """

    def __init__(
        self,
        file_path: Path,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        debounce_ms: int = DEBOUNCE_MS,
        keepalive: float = KEEPALIVE_SECONDS,
        lost_timeout: float = LOST_TIMEOUT,
    ) -> None:
        self.file_path = Path(file_path)
        self.base_dir = self.file_path.parent
        self.host = host
        self.port = port
        self.debounce_ms = debounce_ms
        self.keepalive = keepalive
        self.lost_timeout = lost_timeout
        self.watch_error: WatchLost | None = None

        self._subscribers: set[Subscriber] = set()
        self._lock = threading.Lock()
        self._bound: BoundPort | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_watch = threading.Event()
        self._started_at = datetime.now(timezone.utc)

        self._app = self._build_app()

    def _build_app(self) -> Starlette:
        """Build the Starlette application with all routes."""
        routes = [
            Route("/", self._index),
            Route("/events", self._events),
            Route("/api/health", self._api_health),
            Mount("/assets", app=StaticFiles(directory=str(_STATIC_DIR)), name="assets"),
            Route("/{path:path}", self._document_file),
        ]
        return Starlette(routes=routes)

    # --- HTTP Endpoints ---

    async def _index(self, request: Request) -> Response:
        """Render the document from disk on every request."""
        try:
            page = await run_in_threadpool(render_file, self.file_path)
        except OSError as e:
            logger.error(f"Error reading '{self.file_path}': {e}")
            return HTMLResponse(
                f"<h1>mdview</h1><p>Could not read {html.escape(str(self.file_path))}: "
                f"{html.escape(str(e))}</p>",
                status_code=500,
                headers={"Cache-Control": "no-cache"},
            )
        return HTMLResponse(page, headers={"Cache-Control": "no-cache"})

    async def _api_health(self, request: Request) -> JSONResponse:
        """Health check endpoint."""
        uptime_seconds = (datetime.now(timezone.utc) - self._started_at).total_seconds()
        return JSONResponse(
            {
                "status": "ok",
                "file": str(self.file_path),
                "pid": os.getpid(),
                "port": self.port,
                "uptime": round(uptime_seconds, 1),
                "subscribers": self.subscriber_count,
            }
        )

    async def _document_file(self, request: Request) -> Response:
        """Serve files that sit next to the document, e.g. relative images."""
        target = (self.base_dir / request.path_params["path"]).resolve()
        if not target.is_relative_to(self.base_dir) or not target.is_file():
            return Response("Not Found", status_code=404, media_type="text/plain")
        return FileResponse(target)

    async def _events(self, request: Request) -> Response:
        """Open a one-way reload stream for the browser."""
        subscriber = self.accept_subscriber()
        return StreamingResponse(
            self._stream(subscriber),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def _stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        """Relay queued messages to one subscriber until it goes away.

        Starlette stops iterating when the client disconnects or a write
        fails; the ``finally`` drops the subscriber either way.
        """
        try:
            yield ": connected\n\n"
            while True:
                try:
                    message = await asyncio.wait_for(
                        subscriber.queue.get(), timeout=self.keepalive
                    )
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if message is _CLOSE:
                    break
                yield f"data: {message}\n\n"
        finally:
            self.remove_subscriber(subscriber)

    # --- Subscribers ---

    def accept_subscriber(self) -> Subscriber:
        """Register a new event-stream subscriber."""
        subscriber = Subscriber()
        with self._lock:
            self._subscribers.add(subscriber)
            count = len(self._subscribers)
        logger.debug(f"Subscriber connected ({count} open)")
        return subscriber

    def remove_subscriber(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._subscribers:
                return
            self._subscribers.discard(subscriber)
            count = len(self._subscribers)
        logger.debug(f"Subscriber disconnected ({count} open)")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def on_change_event(self) -> int:
        """Broadcast a reload to every current subscriber.

        A subscriber whose backlog is full is treated as gone and dropped;
        that never affects delivery to the others.

        Returns:
            Number of subscribers the reload was queued for.
        """
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber.queue.put_nowait(RELOAD)
                delivered += 1
            except asyncio.QueueFull:
                self.remove_subscriber(subscriber)
        return delivered

    def _close_subscribers(self) -> None:
        """Ask every open stream to finish so shutdown is not held up."""
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber.queue.put_nowait(_CLOSE)
            except asyncio.QueueFull:
                self.remove_subscriber(subscriber)

    # --- Watcher ---

    async def _watch_changes(self, changes: asyncio.Queue[ChangeEvent]) -> None:
        """Feed debounced change events into the broadcast queue."""
        try:
            async for event in watch(
                self.file_path,
                debounce_ms=self.debounce_ms,
                lost_timeout=self.lost_timeout,
                stop_event=self._stop_watch,
            ):
                await changes.put(event)
        except WatchLost as e:
            logger.error(f"{e}; shutting down")
            self.watch_error = e
            self._close_subscribers()
            if self._server:
                self._server.should_exit = True

    async def _broadcast_changes(self, changes: asyncio.Queue[ChangeEvent]) -> None:
        """Deliver each change to all subscribers before taking the next."""
        while True:
            await changes.get()
            delivered = self.on_change_event()
            logger.info(f"Refreshed: {self.file_path.name} ({delivered} subscriber(s))")

    async def _serve(self) -> None:
        assert self._server is not None and self._bound is not None
        changes: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        tasks = [
            asyncio.create_task(self._watch_changes(changes)),
            asyncio.create_task(self._broadcast_changes(changes)),
        ]
        try:
            await self._server.serve(sockets=[self._bound.socket])
        finally:
            self._stop_watch.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Lifecycle ---

    def start(self, open_browser: bool = True, bound: BoundPort | None = None) -> None:
        """Start serving in a background daemon thread.

        Args:
            open_browser: Open a browser tab once the server is up.
            bound: A listening socket to adopt. If omitted, one is
                allocated starting from ``self.port``.

        Raises:
            NoPortAvailable: If no port could be bound.
            StartupFailed: If uvicorn did not come up in time.
        """
        if self._thread and self._thread.is_alive():
            return

        self._bound = bound or allocate(self.port, host=self.host)
        self.port = self._bound.port
        self._stop_watch.clear()

        config = uvicorn.Config(
            app=self._app,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=1,
        )
        self._server = uvicorn.Server(config)

        def _run() -> None:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            try:
                self._loop.run_until_complete(self._serve())
            except Exception:
                logger.exception("Preview server crashed")
            finally:
                self._loop.close()

        self._thread = threading.Thread(target=_run, name="mdview-server", daemon=True)
        self._thread.start()
        self._wait_for_server()
        logger.info(f"Serving '{self.file_path.name}' at {self.url}")

        if open_browser:
            self.open_browser()

    def _wait_for_server(self, timeout: float = _STARTUP_TIMEOUT) -> None:
        """Block until uvicorn reports it has started."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._server is not None and self._server.started:
                return
            if self._thread is None or not self._thread.is_alive():
                break
            time.sleep(0.02)
        self.stop()
        raise StartupFailed(f"Preview server on port {self.port} failed to start")

    def open_browser(self) -> None:
        try:
            import webbrowser

            webbrowser.open(self.url)
        except Exception:
            logger.warning(f"Could not open a browser; open {self.url} manually")

    def wait(self, stop_event: threading.Event, poll: float = 0.2) -> None:
        """Block until ``stop_event`` is set or the server stops by itself."""
        while not stop_event.wait(poll):
            if not self.is_running:
                return

    def stop(self) -> None:
        """Stop the watcher and the server and release the port."""
        self._stop_watch.set()
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(self._close_subscribers)
            except RuntimeError:
                pass
        if self._server:
            self._server.should_exit = True
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        if self._bound is not None:
            self._bound.close()
            self._bound = None
        self._server = None
        logger.debug("Preview server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"


def _run_standalone() -> None:
    """Entry point for ``python -m mdview.server`` (background instances).

    Output is expected to be redirected to the instance's log file by the
    spawning supervisor.
    """
    import argparse
    import sys

    from mdview._types import AlreadyRegistered, MdviewError
    from mdview.supervisor import run_foreground

    parser = argparse.ArgumentParser(description="mdview preview server")
    parser.add_argument("file", type=Path, help="Markdown file to serve")
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help="First port to try"
    )
    parser.add_argument("--no-open", action="store_true", help="Don't open browser")
    parser.add_argument("--log-file", type=Path, default=None, help="Log file path")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info(f"mdview daemon starting for '{args.file}' (pid={os.getpid()})")

    try:
        run_foreground(
            args.file,
            base_port=args.port,
            open_browser=not args.no_open,
            log_path=args.log_file,
        )
    except AlreadyRegistered as e:
        logger.info(str(e))
        sys.exit(e.exit_code)
    except MdviewError as e:
        logger.error(str(e))
        sys.exit(e.exit_code)
    except OSError as e:
        logger.error(str(e))
        sys.exit(1)
    logger.info("mdview daemon stopped")


if __name__ == "__main__":
    _run_standalone()
