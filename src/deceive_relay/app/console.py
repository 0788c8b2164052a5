"""Line-oriented control console for the running relay.

// [LAW:dataflow-not-control-flow] Commands dispatch through a name → handler table.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterable

from rich.console import Console
from rich.table import Table

from deceive_relay.core.visibility import Visibility
from deceive_relay.pipeline.relay import ConnectionErrored, PresenceRelay

logger = logging.getLogger(__name__)

HELP = {
    "online": "appear online (same as chat)",
    "offline": "appear offline",
    "mobile": "appear on mobile",
    "enable": "turn masking on",
    "disable": "turn masking off",
    "toggle": "flip masking on/off",
    "lobby on|off": "relay lobby/group chat presence",
    "status": "show current state",
    "help": "show this list",
    "quit": "stop the relay",
}

_TRUTHY = {"on", "1", "true", "yes"}
_FALSY = {"off", "0", "false", "no"}


class ControlConsole:
    """Maps typed commands onto the relay's control surface."""

    def __init__(self, relay: PresenceRelay, console: Console | None = None) -> None:
        self._relay = relay
        self._console = console or Console()
        self._commands: dict[str, Callable[[list[str]], bool]] = {
            "online": lambda _args: self._visibility(Visibility.CHAT),
            "chat": lambda _args: self._visibility(Visibility.CHAT),
            "offline": lambda _args: self._visibility(Visibility.OFFLINE),
            "mobile": lambda _args: self._visibility(Visibility.MOBILE),
            "enable": lambda _args: self._enabled(True),
            "disable": lambda _args: self._enabled(False),
            "toggle": lambda _args: self._enabled(not self._relay.config.enabled),
            "lobby": self._lobby,
            "status": lambda _args: self._show_status(),
            "help": lambda _args: self._show_help(),
            "quit": lambda _args: False,
            "exit": lambda _args: False,
        }
        relay.add_error_listener(self.on_connection_errored)

    def handle(self, line: str) -> bool:
        """Run one command line. Returns False when the console should stop."""
        words = line.split()
        if not words:
            return True
        handler = self._commands.get(words[0].lower())
        if handler is None:
            self._console.print(f"[red]unknown command:[/red] {words[0]}  (try [bold]help[/bold])")
            return True
        return handler(words[1:])

    def run(self, lines: Iterable[str] | None = None) -> None:
        self._show_status()
        for line in lines if lines is not None else sys.stdin:
            if not self.handle(line):
                return

    def on_connection_errored(self, event: ConnectionErrored) -> None:
        reason = f": {event.error}" if event.error is not None else ""
        self._console.print(
            f"[yellow]Chat connection closed ({event.side}){reason}.[/yellow] "
            "Restart the game client to reconnect."
        )

    # -- handlers -----------------------------------------------------------

    def _visibility(self, visibility: Visibility) -> bool:
        self._relay.set_visibility(visibility)
        self._show_status()
        return True

    def _enabled(self, enabled: bool) -> bool:
        self._relay.set_enabled(enabled)
        self._show_status()
        return True

    def _lobby(self, args: list[str]) -> bool:
        value = args[0].lower() if args else ""
        if value in _TRUTHY or value in _FALSY:
            self._relay.set_lobby_relay(value in _TRUTHY)
            self._show_status()
        else:
            self._console.print("usage: lobby on|off")
        return True

    def _show_status(self) -> bool:
        config = self._relay.config
        connection = self._relay.connection
        table = Table(show_header=False, box=None)
        table.add_row("masking", "[green]enabled[/green]" if config.enabled else "[red]disabled[/red]")
        table.add_row("status", config.visibility.value)
        table.add_row("effective", config.target.value)
        table.add_row("lobby chat", "on" if config.relay_lobby_chat else "off")
        table.add_row(
            "connection",
            "connected" if connection is not None and connection.connected else "waiting",
        )
        if self._relay.captured_version:
            table.add_row("VALORANT version", self._relay.captured_version)
        self._console.print(table)
        return True

    def _show_help(self) -> bool:
        table = Table(show_header=False, box=None)
        for command, text in HELP.items():
            table.add_row(f"[bold]{command}[/bold]", text)
        self._console.print(table)
        return True
