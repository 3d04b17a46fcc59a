"""Main entry point for the Claude Island daemon."""

import argparse
import asyncio
import logging
import signal
import sys

from logging.handlers import RotatingFileHandler
from typing import List, Optional

import structlog

from claude_island import __version__
from claude_island.config import load_config
from claude_island.config.settings import Settings
from claude_island.exceptions import ConfigurationError
from claude_island.session.monitor import SessionMonitor
from claude_island.utils.constants import APP_DESCRIPTION, APP_NAME


def setup_logging(
    debug: bool = False, log_file: str = "claude-island.log", level_name: str = "INFO"
) -> None:
    """Configure structured logging with both console and file output."""
    level = logging.DEBUG if debug else getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            filename=log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)

    # watchdog is chatty at debug level
    logging.getLogger("watchdog").setLevel(max(level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if not debug
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="claude-island",
        description=APP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version", action="version", version=f"{APP_NAME} {__version__}"
    )

    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    parser.add_argument(
        "--socket-path", help="Unix socket the hook script connects to"
    )

    return parser.parse_args(argv)


async def run_application(config: Settings) -> int:
    """Run the session monitor until a shutdown signal arrives."""
    logger = structlog.get_logger()
    monitor = SessionMonitor(config)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum: int) -> None:
        logger.info("Shutdown signal received", signal=signum)
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        listening = await monitor.start()
        if not listening:
            logger.warning(
                "Hook socket not bound yet, retrying in background",
                socket_path=config.socket_path,
            )

        await shutdown_event.wait()

    except Exception as e:
        logger.error("Application error", error=str(e))
        raise
    finally:
        logger.info("Shutting down application")
        for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
            loop.remove_signal_handler(signum)
        await monitor.stop()
        logger.info("Application shutdown complete")

    return 0


async def main(argv: Optional[List[str]] = None) -> None:
    """Main application entry point."""
    args = parse_args(argv)

    try:
        config = load_config(
            socket_path=args.socket_path, debug=True if args.debug else None
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        debug=config.debug, log_file=config.log_file, level_name=config.log_level
    )

    logger = structlog.get_logger()
    logger.info(
        f"Starting {APP_NAME}",
        version=__version__,
        socket_path=config.socket_path,
        environment="production" if config.is_production else "development",
    )

    try:
        exit_code = await run_application(config)
        if exit_code != 0:
            sys.exit(exit_code)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


def run() -> None:
    """Synchronous entry point for the console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
