"""Port allocation for preview servers.

Scans upward from a base port and hands back the first socket that
binds, still bound and listening, so the HTTP server can adopt it
directly instead of re-binding a port it only checked.
"""

from __future__ import annotations

import logging
import socket
import sys
from dataclasses import dataclass

from mdview._types import NoPortAvailable

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6914
MAX_ATTEMPTS = 100
_HIGHEST_PORT = 65535


@dataclass
class BoundPort:
    """A listening socket reserved for one preview server."""

    port: int
    socket: socket.socket

    def close(self) -> None:
        self.socket.close()


def _bind(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        # On Windows SO_REUSEADDR lets two sockets share a port
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
    except OSError:
        sock.close()
        raise
    return sock


def allocate(
    base_port: int = DEFAULT_PORT,
    host: str = "127.0.0.1",
    max_attempts: int = MAX_ATTEMPTS,
) -> BoundPort:
    """Bind the first free port in ``[base_port, base_port + max_attempts)``.

    Args:
        base_port: First port to try.
        host: Interface to bind (localhost only by default).
        max_attempts: How many consecutive ports to try.

    Returns:
        A BoundPort whose socket is bound and listening.

    Raises:
        NoPortAvailable: If every port in the range is taken.
    """
    last_port = min(base_port + max_attempts - 1, _HIGHEST_PORT)
    for port in range(base_port, last_port + 1):
        try:
            sock = _bind(host, port)
        except OSError:
            logger.debug(f"Port {port} unavailable")
            continue
        logger.debug(f"Bound {host}:{port}")
        return BoundPort(port=port, socket=sock)
    raise NoPortAvailable(base_port, last_port)
