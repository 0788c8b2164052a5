"""Presence-masking relay between the game client and its chat server.

// [LAW:single-enforcer] Connection teardown and the error notification happen in _finish only.
// [LAW:one-source-of-truth] Masking config is one immutable snapshot swapped under a lock.

Two pump threads run per connection:
  incoming (client → server): presence chunks are rewritten, fake-contact chunks dropped.
  outgoing (server → client): forwarded verbatim.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from deceive_relay.core.rewriter import VersionCapture, rewrite_presence
from deceive_relay.core.stanza import MalformedStanzaError
from deceive_relay.core.visibility import MaskingConfig, Visibility
from deceive_relay.io.logging_setup import log_traffic
from deceive_relay.io.status_store import StatusStore
from deceive_relay.pipeline.pump import pump
from deceive_relay.pipeline.streams import DuplexStream

logger = logging.getLogger(__name__)

PRESENCE_MARKER = b"<presence"
# JID of the synthetic contact; nothing mentioning it may reach the real server.
FAKE_CONTACT_JID = b"41c322a1-b328-495b-a004-5ccd3e45eae8@eu1.pvp.net"


@dataclass(frozen=True)
class ConnectionErrored:
    """Fired once per connection when either pump stops."""

    side: str
    error: BaseException | None = None


ErrorListener = Callable[[ConnectionErrored], None]


class _SerializedSink:
    """Write side of a stream shared by a pump thread and control-thread resends."""

    def __init__(self, stream: DuplexStream) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def read(self, size: int) -> bytes:
        return self._stream.read(size)

    def write(self, data: bytes) -> None:
        with self._lock:
            self._stream.write(data)

    def close(self) -> None:
        self._stream.close()


class Connection:
    """State for one client connection. Lives until both pumps exit."""

    def __init__(self, incoming: DuplexStream, outgoing: DuplexStream) -> None:
        self.incoming = incoming
        self.outgoing = _SerializedSink(outgoing)
        self.last_presence: bytes | None = None
        self.version = VersionCapture()
        self.threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def disconnect(self) -> bool:
        """Flip connected to False. Returns True only for the first caller."""
        with self._lock:
            if not self._connected:
                return False
            self._connected = False
            return True

    def close_streams(self) -> None:
        for stream in (self.incoming, self.outgoing):
            try:
                stream.close()
            except Exception:
                logger.debug("error closing %r", stream, exc_info=True)


class PresenceRelay:
    """Control surface and pump owner for the masking relay."""

    def __init__(self, status_store: StatusStore, *, relay_lobby_chat: bool = True) -> None:
        self._status_store = status_store
        self._config_lock = threading.Lock()
        self._config = MaskingConfig(
            enabled=True,
            visibility=status_store.load(),
            relay_lobby_chat=relay_lobby_chat,
        )
        self._connection: Connection | None = None
        self._listeners: list[ErrorListener] = []

    # -- state --------------------------------------------------------------

    @property
    def config(self) -> MaskingConfig:
        with self._config_lock:
            return self._config

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def captured_version(self) -> str | None:
        connection = self._connection
        return connection.version.value if connection is not None else None

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def _update(self, **changes) -> MaskingConfig:
        with self._config_lock:
            self._config = self._config.with_changes(**changes)
            return self._config

    # -- control surface ----------------------------------------------------

    def set_enabled(self, enabled: bool) -> None:
        config = self._update(enabled=bool(enabled))
        logger.info("masking %s", "enabled" if config.enabled else "disabled")
        self._resend(config)

    def set_visibility(self, visibility: Visibility) -> None:
        config = self._update(visibility=visibility, enabled=True)
        logger.info("visibility set to %s", visibility.value)
        self._status_store.safe_save(visibility)
        self._resend(config)

    def set_lobby_relay(self, enabled: bool) -> None:
        # Applies to the next presence stanza; nothing is resent.
        config = self._update(relay_lobby_chat=bool(enabled))
        logger.info("lobby chat relay %s", "enabled" if config.relay_lobby_chat else "disabled")

    def start(self, incoming: DuplexStream, outgoing: DuplexStream) -> Connection:
        """Begin relaying between two open streams. Returns the new connection."""
        connection = Connection(incoming, outgoing)
        self._connection = connection
        sides = (
            ("incoming", connection.incoming, connection.outgoing, self._make_interceptor(connection)),
            ("outgoing", connection.outgoing, connection.incoming, None),
        )
        for side, source, sink, interceptor in sides:
            thread = threading.Thread(
                target=self._run_pump,
                args=(connection, side, source, sink, interceptor),
                name=f"relay-{side}",
                daemon=True,
            )
            connection.threads.append(thread)
        for thread in connection.threads:
            thread.start()
        logger.info("relay started")
        return connection

    def wait(self, timeout: float | None = None) -> bool:
        """Block until both pumps of the current connection exit. Returns True if they did."""
        connection = self._connection
        if connection is None:
            return True
        for thread in connection.threads:
            thread.join(timeout)
        return not any(thread.is_alive() for thread in connection.threads)

    def close(self) -> None:
        connection = self._connection
        if connection is not None:
            connection.close_streams()

    # -- client → server interception ---------------------------------------

    def _make_interceptor(self, connection: Connection):
        def interceptor(data: bytes) -> bool:
            config = self.config
            is_presence = PRESENCE_MARKER in data
            if is_presence:
                # Every presence is cached, masked or not.
                connection.last_presence = data
            if is_presence and config.enabled:
                log_traffic(logger, "client→server original", data)
                self.rewrite_and_send(connection, data, config)
                return True
            if FAKE_CONTACT_JID in data:
                log_traffic(logger, "client→server dropped", data)
                return True
            return False

        return interceptor

    def rewrite_and_send(self, connection: Connection, raw: bytes, config: MaskingConfig) -> None:
        """Cache *raw*, rewrite it for *config*, and write the result upstream.

        Unparseable chunks are dropped. Write errors propagate.
        """
        connection.last_presence = raw
        try:
            rewritten = rewrite_presence(
                raw,
                config.target,
                relay_lobby_chat=config.relay_lobby_chat,
                version=connection.version,
            )
        except MalformedStanzaError as exc:
            logger.warning("Error rewriting presence, chunk dropped: %s", exc)
            return
        except Exception:
            logger.exception("Error rewriting presence, chunk dropped")
            return
        if not rewritten:
            return
        connection.outgoing.write(rewritten)
        log_traffic(logger, "relay→server rewritten", rewritten)

    def _resend(self, config: MaskingConfig) -> None:
        connection = self._connection
        if connection is None or not connection.connected or not connection.last_presence:
            return
        try:
            self.rewrite_and_send(connection, connection.last_presence, config)
        except OSError:
            logger.warning("Failed to resend presence", exc_info=True)

    # -- pump threads -------------------------------------------------------

    def _run_pump(self, connection, side, source, sink, interceptor) -> None:
        error: BaseException | None = None
        try:
            pump(
                source,
                sink,
                interceptor,
                direction="client→server" if side == "incoming" else "server→client",
                is_connected=lambda: connection.connected,
            )
        except Exception as exc:
            error = exc
            if connection.connected:
                logger.warning("%s errored: %s", side.capitalize(), exc)
            else:
                logger.debug("%s errored after disconnect", side, exc_info=True)
        finally:
            logger.info("%s closed.", side.capitalize())
            self._finish(connection, side, error)

    def _finish(self, connection: Connection, side: str, error: BaseException | None) -> None:
        self._status_store.safe_save(self.config.visibility)
        if not connection.disconnect():
            return
        # Unblock the other pump.
        connection.close_streams()
        event = ConnectionErrored(side=side, error=error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("connection error listener failed")
