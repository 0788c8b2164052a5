"""Single-direction byte pump between two duplex streams."""

from __future__ import annotations

import logging
from collections.abc import Callable

from deceive_relay.io.logging_setup import log_traffic
from deceive_relay.pipeline.streams import CHUNK_SIZE, DuplexStream

logger = logging.getLogger(__name__)

# Returns True when the interceptor took ownership of the chunk (wrote it, or chose not to).
Interceptor = Callable[[bytes], bool]


def pump(
    source: DuplexStream,
    sink: DuplexStream,
    interceptor: Interceptor | None = None,
    *,
    direction: str = "",
    is_connected: Callable[[], bool] = lambda: True,
) -> None:
    """Copy chunks from *source* to *sink* until EOF or *is_connected* goes false.

    Chunks are forwarded in read order. Stream errors propagate to the caller,
    which owns teardown.
    """
    while True:
        data = source.read(CHUNK_SIZE)
        if not data:
            logger.debug("%s: peer closed", direction)
            return
        if interceptor is None or not interceptor(data):
            sink.write(data)
            log_traffic(logger, direction, data)
        if not is_connected():
            return
