"""Duplex byte stream boundary consumed by the relay.

// [LAW:locality-or-seam] Pumps only see DuplexStream; sockets are adapted here.
"""

from __future__ import annotations

import logging
import socket
from typing import Protocol

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class DuplexStream(Protocol):
    """An open, already-encrypted byte stream."""

    def read(self, size: int = CHUNK_SIZE) -> bytes:
        """Return up to *size* bytes. b"" means the peer closed."""
        ...

    def write(self, data: bytes) -> None:
        ...

    def close(self) -> None:
        ...


class SocketStream:
    """DuplexStream over a connected (usually ssl-wrapped) socket."""

    def __init__(self, sock: socket.socket, name: str = "") -> None:
        self._sock = sock
        self.name = name or repr(sock)

    def read(self, size: int = CHUNK_SIZE) -> bytes:
        return self._sock.recv(size)

    def write(self, data: bytes) -> None:
        self._sock.sendall(data)

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected; close() below still releases the fd.
            logger.debug("shutdown failed for %s", self.name, exc_info=True)
        self._sock.close()

    def __repr__(self) -> str:
        return f"SocketStream({self.name})"
