"""Accepts the game client's chat connection and bridges it to the real server."""

from __future__ import annotations

import logging
import socket
import ssl
import threading

from deceive_relay.app.settings import RelaySettings
from deceive_relay.pipeline.relay import PresenceRelay
from deceive_relay.pipeline.streams import SocketStream
from deceive_relay.pipeline.tls import ChatCertificateAuthority, upstream_context

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 10.0
UPSTREAM_CONNECT_TIMEOUT = 30.0


class ChatListener:
    """Local TLS endpoint the game client connects to instead of the chat server.

    One client connection at a time: a new connection replaces the old one.
    """

    def __init__(
        self,
        relay: PresenceRelay,
        settings: RelaySettings,
        authority: ChatCertificateAuthority,
        client_context: ssl.SSLContext | None = None,
        *,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ) -> None:
        self._relay = relay
        self._settings = settings
        self._server_context = authority.server_context(settings.upstream_host)
        self._client_context = client_context or upstream_context()
        self._handshake_timeout = handshake_timeout
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        if self._sock is None:
            raise RuntimeError("listener not started")
        return self._sock.getsockname()[:2]

    def start(self) -> None:
        self._sock = socket.create_server((self._settings.listen_host, self._settings.listen_port))
        self._thread = threading.Thread(
            target=self._accept_loop, args=(self._sock,), name="relay-accept", daemon=True
        )
        self._thread.start()
        host, port = self.address
        logger.info(
            "listening on %s:%s → %s:%s",
            host,
            port,
            self._settings.upstream_host,
            self._settings.upstream_port,
        )

    def stop(self) -> None:
        self._stopping.set()
        if self._sock is not None:
            self._sock.close()
        self._relay.close()

    def _accept_loop(self, server: socket.socket) -> None:
        while not self._stopping.is_set():
            try:
                raw_client, addr = server.accept()
            except OSError:
                if not self._stopping.is_set():
                    logger.exception("accept failed")
                return
            logger.info("game client connected from %s:%s", *addr[:2])
            try:
                self._bridge(raw_client)
            except (OSError, ssl.SSLError) as exc:
                logger.warning("could not establish relay connection: %s", exc)
                raw_client.close()

    def _bridge(self, raw_client: socket.socket) -> None:
        # A client that never completes the handshake must not stall the accept loop.
        raw_client.settimeout(self._handshake_timeout)
        incoming = self._server_context.wrap_socket(raw_client, server_side=True)
        host, port = self._settings.upstream_host, self._settings.upstream_port
        try:
            raw_upstream = socket.create_connection((host, port), timeout=UPSTREAM_CONNECT_TIMEOUT)
            try:
                outgoing = self._client_context.wrap_socket(raw_upstream, server_hostname=host)
            except (OSError, ssl.SSLError):
                raw_upstream.close()
                raise
        except (OSError, ssl.SSLError):
            incoming.close()
            raise
        incoming.settimeout(None)
        outgoing.settimeout(None)

        # Replace any previous connection.
        self._relay.close()
        self._relay.start(
            SocketStream(incoming, name="client"),
            SocketStream(outgoing, name=f"{host}:{port}"),
        )
