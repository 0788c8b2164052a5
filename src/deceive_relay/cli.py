"""CLI entry point for deceive-relay."""

import argparse
import logging
import signal
import sys
import threading

import deceive_relay.io.logging_setup
from deceive_relay.app.console import ControlConsole
from deceive_relay.app.settings import DEFAULT_PORT, resolve_settings
from deceive_relay.io.status_store import StatusStore
from deceive_relay.pipeline.listener import ChatListener
from deceive_relay.pipeline.relay import PresenceRelay
from deceive_relay.pipeline.tls import ChatCertificateAuthority

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat presence masking relay")
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Bind address (default: 127.0.0.1). Env: DECEIVE_RELAY_HOST",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"Bind port (default: {DEFAULT_PORT}). Env: DECEIVE_RELAY_PORT",
    )
    parser.add_argument(
        "--upstream",
        type=str,
        default=None,
        help="Real chat server as HOST[:PORT]. Env: DECEIVE_RELAY_UPSTREAM",
    )
    parser.add_argument(
        "--status",
        choices=["offline", "mobile", "online", "chat"],
        default=None,
        help="Status to start with (default: last saved status)",
    )
    parser.add_argument(
        "--no-lobby",
        action="store_true",
        default=None,
        help="Do not relay lobby/group chat presence",
    )
    parser.add_argument(
        "--ca-dir",
        type=str,
        default=None,
        help="Directory for the local CA key/cert (default: ~/.deceive-relay/ca/)",
    )
    parser.add_argument(
        "--no-console",
        action="store_true",
        default=False,
        help="Run without the interactive control console",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        settings = resolve_settings(
            host=args.host,
            port=args.port,
            upstream=args.upstream,
            status=args.status,
            no_lobby=args.no_lobby,
            ca_dir=args.ca_dir,
            console=not args.no_console,
        )
    except ValueError as exc:
        print(f"deceive-relay: {exc}", file=sys.stderr)
        return 2

    # [LAW:single-enforcer] Runtime logger configuration is centralized in io.logging_setup.
    log_runtime = deceive_relay.io.logging_setup.configure(upstream_host=settings.upstream_host)
    logger.info(
        "logging configured level=%s trace=%s file=%s",
        log_runtime.level_name,
        log_runtime.trace,
        log_runtime.file_path,
    )

    relay = PresenceRelay(StatusStore(), relay_lobby_chat=settings.relay_lobby_chat)
    if settings.initial_status is not None:
        relay.set_visibility(settings.initial_status)

    authority = ChatCertificateAuthority(settings.ca_dir)
    logger.info("game client must trust %s", authority.ca_cert_path)
    listener = ChatListener(relay, settings, authority)
    listener.start()

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    try:
        if settings.console:
            console = ControlConsole(relay)

            def run_console() -> None:
                console.run()
                stop.set()

            threading.Thread(target=run_console, name="control-console", daemon=True).start()
        stop.wait()
    finally:
        listener.stop()
        relay.wait(timeout=2)
        logger.info("relay stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
