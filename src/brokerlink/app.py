from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import load_settings
from .di import AppContainer, build_container
from .logging import configure_logging
from .runtime import run

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point supporting both the runtime and CLI commands.

    - `brokerlink` or `brokerlink run`: connect configured brokers and stream
      market data until SIGINT/SIGTERM
    - `brokerlink <typer-subcommand>`: run CLI mode (e.g. `brokerlink balances main`)
    """
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        return _run_service_mode([])

    if argv[0] == "run":
        return _run_service_mode(argv[1:])

    return _run_cli_mode(argv)


def install_signal_handlers(container: AppContainer) -> None:
    """Set the container's shutdown event on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, container.shutdown.set)
        except NotImplementedError:
            # Proactor loops on Windows; Ctrl+C still raises KeyboardInterrupt.
            logger.debug("signal handler for %s not supported on this loop", sig.name)


async def _serve(container: AppContainer) -> None:
    install_signal_handlers(container)
    await run(container)


def _run_service_mode(argv: list[str]) -> int:
    """Run the broker runtime until shutdown."""
    parser = argparse.ArgumentParser(
        prog="brokerlink run", description="Connect configured brokers and stream market data"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file (default: BROKERLINK_CONFIG or ./config.yml)",
    )

    args = parser.parse_args(argv)
    configure_logging(Path("logs"))

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        logger.error("%s", e)
        return 2

    container = build_container(settings)

    logger.info("brokerlink booting")
    try:
        asyncio.run(_serve(container))
    except KeyboardInterrupt:
        logger.info("interrupted")
    logger.info("brokerlink exit")

    return 0


def _run_cli_mode(argv: list[str]) -> int:
    """Run in CLI mode using Typer."""
    try:
        configure_logging(Path("logs"))

        from .cli import run_cli
        run_cli(argv)
        return 0
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
