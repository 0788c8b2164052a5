"""Logging bootstrap for deceive-relay.

// [LAW:single-enforcer] Logger handler wiring is enforced in this module only.
// [LAW:one-source-of-truth] Runtime log path/level/trace are derived here and returned to callers.
// [LAW:dataflow-not-control-flow] Traffic traces are marked in the record, handlers route on the mark.

Two kinds of record flow through the `deceive_relay` hierarchy:
  - operational records (connects, teardown, rewrite failures): stderr + file.
  - traffic traces (relayed chat bytes, see log_traffic): file only, and only
    when tracing is on. Traces carry chat contents and never reach the terminal.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER = "deceive_relay"
TRACE_ATTR = "relay_trace"


@dataclass(frozen=True)
class LoggingRuntime:
    """Resolved runtime logging configuration."""

    level_name: str
    level: int
    file_path: str
    trace: bool = False


_RUNTIME: LoggingRuntime | None = None


def is_trace(record: logging.LogRecord) -> bool:
    return bool(getattr(record, TRACE_ATTR, False))


def log_traffic(logger: logging.Logger, label: str, data: bytes) -> None:
    """Trace one relayed chunk under *label* (e.g. "client→server original")."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "%s: %s", label, data.decode("utf-8", errors="replace"), extra={TRACE_ATTR: True}
        )


def _parse_level(raw: str) -> tuple[str, int]:
    normalized = str(raw or "INFO").strip().upper()
    level = getattr(logging, normalized, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    return str(logging.getLevelName(level)), int(level)


def _parse_trace(raw: str | None, level: int) -> bool:
    # Unset: trace whenever the configured level is DEBUG.
    if raw is None or not raw.strip():
        return level <= logging.DEBUG
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _file_stem(upstream_host: str | None) -> str:
    host = "".join(ch for ch in (upstream_host or "") if ch.isalnum() or ch in ".-")
    return f"relay-{host}" if host else "relay"


def _default_log_path(upstream_host: str | None) -> str:
    log_dir = Path(
        os.environ.get(
            "DECEIVE_RELAY_LOG_DIR", os.path.expanduser("~/.local/share/deceive-relay/logs")
        )
    )
    log_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return str(log_dir / f"{_file_stem(upstream_host)}-{ts}-{os.getpid()}.log")


def _make_stream_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("[%(name)s] %(levelname)s %(message)s"))
    handler.addFilter(lambda record: not is_trace(record))
    return handler


def _make_file_handler(level: int, file_path: str, trace: bool) -> logging.Handler:
    handler = RotatingFileHandler(
        file_path,
        maxBytes=20 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    # Traces are DEBUG records; the level gate for everything else lives in the filter.
    handler.setLevel(logging.DEBUG if trace else level)
    handler.addFilter(
        lambda record: trace if is_trace(record) else record.levelno >= level
    )
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    return handler


def configure(upstream_host: str | None = None) -> LoggingRuntime:
    """Configure the deceive_relay logger hierarchy.

    The default log file is named after *upstream_host*, so sessions against
    different chat regions land in separate files. DECEIVE_RELAY_TRACE turns
    traffic traces on or off independently of DECEIVE_RELAY_LOG_LEVEL.

    Idempotent: repeated calls return the first configured runtime.
    """
    global _RUNTIME
    if _RUNTIME is not None:
        return _RUNTIME

    level_name, level = _parse_level(os.environ.get("DECEIVE_RELAY_LOG_LEVEL", "INFO"))
    trace = _parse_trace(os.environ.get("DECEIVE_RELAY_TRACE"), level)
    file_path = os.environ.get("DECEIVE_RELAY_LOG_FILE") or _default_log_path(upstream_host)
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if trace else level)
    logger.propagate = False
    logger.handlers.clear()
    logger.addHandler(_make_stream_handler(level))
    logger.addHandler(_make_file_handler(level, file_path, trace))

    # Keep third-party logging quiet unless it is warning+.
    root = logging.getLogger()
    if root.level > logging.WARNING:
        root.setLevel(logging.WARNING)

    logging.captureWarnings(True)

    _RUNTIME = LoggingRuntime(
        level_name=level_name, level=level, file_path=file_path, trace=trace
    )
    return _RUNTIME


def get_runtime() -> LoggingRuntime | None:
    """Return configured logging runtime, if configure() has run."""
    return _RUNTIME


def reset_for_tests() -> None:
    """Drop configured handlers so configure() runs again."""
    global _RUNTIME
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    _RUNTIME = None
