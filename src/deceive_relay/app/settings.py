"""Resolved runtime settings for the relay process.

// [LAW:one-source-of-truth] CLI args + environment are normalized into one frozen snapshot.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from deceive_relay.core.visibility import Visibility

DEFAULT_PORT = 5223
DEFAULT_UPSTREAM = "euw1.chat.si.riotgames.com"


def _normalize_bool(value: object, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    raw = str(value).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def parse_host_port(value: str, default_port: int = DEFAULT_PORT) -> tuple[str, int] | None:
    """Parse ``host`` or ``host:port``. Returns None when malformed."""
    raw = str(value or "").strip()
    if not raw:
        return None
    host, sep, port_text = raw.rpartition(":")
    if not sep:
        return raw, default_port
    if not host or not port_text.isdigit():
        return None
    port = int(port_text)
    if not 0 < port < 65536:
        return None
    return host, port


@dataclass(frozen=True)
class RelaySettings:
    listen_host: str = "127.0.0.1"
    listen_port: int = DEFAULT_PORT
    upstream_host: str = DEFAULT_UPSTREAM
    upstream_port: int = DEFAULT_PORT
    relay_lobby_chat: bool = True
    initial_status: Visibility | None = None
    ca_dir: Path | None = None
    console: bool = True


def resolve_settings(
    *,
    host: str | None = None,
    port: int | None = None,
    upstream: str | None = None,
    status: str | None = None,
    no_lobby: bool | None = None,
    ca_dir: str | None = None,
    console: bool = True,
) -> RelaySettings:
    """Merge explicit values over DECEIVE_RELAY_* environment variables.

    Raises:
        ValueError: for an unparseable upstream address or unknown status.
    """
    upstream_raw = upstream or os.environ.get("DECEIVE_RELAY_UPSTREAM", DEFAULT_UPSTREAM)
    parsed = parse_host_port(upstream_raw)
    if parsed is None:
        raise ValueError(f"invalid upstream address: {upstream_raw!r}")

    if no_lobby is None:
        relay_lobby = _normalize_bool(os.environ.get("DECEIVE_RELAY_LOBBY_CHAT"), default=True)
    else:
        relay_lobby = not no_lobby

    ca_raw = ca_dir or os.environ.get("DECEIVE_RELAY_CA_DIR")
    return RelaySettings(
        listen_host=host or os.environ.get("DECEIVE_RELAY_HOST", "127.0.0.1"),
        listen_port=port if port is not None else int(os.environ.get("DECEIVE_RELAY_PORT", DEFAULT_PORT)),
        upstream_host=parsed[0],
        upstream_port=parsed[1],
        relay_lobby_chat=relay_lobby,
        initial_status=Visibility.parse(status) if status else None,
        ca_dir=Path(ca_raw).expanduser() if ca_raw else None,
        console=console,
    )
