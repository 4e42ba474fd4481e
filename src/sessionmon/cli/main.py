"""Command-line interface for sessionmon.

Provides a headless watcher that streams session events from servers and
a validator for configuration files.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import signal
import sys
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import click
import structlog

from sessionmon import __version__
from sessionmon.client.manager import ConnectionManager
from sessionmon.core.config import MonitorConfig
from sessionmon.core.state import ConnectionState
from sessionmon.protocol.events import SessionEvent

log = structlog.get_logger()


def _configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure structlog with appropriate log level filtering."""
    import logging

    if quiet:
        min_level = logging.WARNING
    elif verbose:
        min_level = logging.DEBUG
    else:
        min_level = logging.INFO

    def _filter_by_level(
        _logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        if getattr(logging, method_name.upper(), 0) < min_level:
            raise structlog.DropEvent
        return event_dict

    structlog.configure(
        processors=[
            _filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        # Keep stdout for event output
        logger_factory=lambda *_args: structlog.PrintLogger(sys.stderr),
    )


def _load_config(config_path: Path | None) -> MonitorConfig:
    config = MonitorConfig.from_yaml(config_path) if config_path else MonitorConfig()
    return config.with_env()


@click.group()
@click.version_option(version=__version__, prog_name="sessionmon")
def cli() -> None:
    """sessionmon - Live session monitoring client.

    Stream session events from one or more servers.
    """


@cli.command()
@click.argument("urls", nargs=-1)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML configuration file",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Reconnect attempts before giving up (overrides config)",
)
@click.option(
    "--duration",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Stop after this many seconds (default: run until interrupted)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress progress output",
)
def watch(
    urls: tuple[str, ...],
    config_path: Path | None,
    max_attempts: int | None,
    duration: float | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Stream session events from servers.

    URLS: Server base URLs (http(s):// for SSE, ws(s):// for WebSocket)

    Each event is printed to stdout as one JSON line.
    """
    _configure_logging(verbose=verbose, quiet=quiet)

    try:
        config = _load_config(config_path)
        if max_attempts is not None:
            reconnect = config.reconnect.model_copy(update={"max_attempts": max_attempts})
            config = config.model_copy(update={"reconnect": reconnect})
    except Exception as e:
        log.error("Failed to load configuration", error=str(e))
        raise SystemExit(1) from e

    servers = list(dict.fromkeys([*config.servers, *urls]))
    if not servers:
        log.error("No servers given (pass URLs or list them in the config)")
        raise SystemExit(1)

    def print_event(server_url: str, event: SessionEvent) -> None:
        click.echo(json.dumps({"server": server_url, **event.to_dict()}))

    def log_state(state: ConnectionState) -> None:
        log.info(
            "Connection state",
            server=state.server_url,
            status=state.status.value,
            attempts=state.reconnect_attempts,
        )

    async def main() -> None:
        # Must be inside async context to get the running loop
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def handle_signal(signum: int, _frame: object) -> None:
            log.info("Received signal, stopping", signal=signum)
            loop.call_soon_threadsafe(shutdown_event.set)

        previous = {
            sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
        }

        try:
            async with ConnectionManager(config) as manager:
                manager.subscribe(print_event)
                manager.subscribe_state(log_state)
                for url in servers:
                    manager.connect(url)

                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(shutdown_event.wait(), timeout=duration)

                states = manager.get_all_connection_states()
                log.info(
                    "Stopping",
                    connected=sum(1 for url in states if manager.is_connected(url)),
                    servers=len(states),
                )
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Interrupted by user")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def validate(config_path: Path) -> None:
    """Validate configuration file.

    CONFIG_PATH: Path to YAML configuration file

    Exits with code 0 if valid, 1 if invalid.
    """
    try:
        config = MonitorConfig.from_yaml(config_path)
    except Exception as e:
        log.error("Configuration invalid", error=str(e))
        raise SystemExit(1) from e

    log.info(
        "Configuration valid",
        servers=len(config.servers),
        max_attempts=config.reconnect.max_attempts,
    )
    for url in config.servers:
        click.echo(f"  Server: {url}")
    click.echo(
        f"  Reconnect: base {config.reconnect.base_delay}s, "
        f"max {config.reconnect.max_delay}s, {config.reconnect.max_attempts} attempts"
    )


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
