"""CLI entry point for the bot notifier service.

Usage:
    python -m bot_notifier [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from typing import NoReturn

from pydantic import ValidationError

from bot_notifier import __version__
from bot_notifier.config import Settings, clear_settings_cache, get_settings
from bot_notifier.server import NotifierServer
from bot_notifier.shutdown import GracefulShutdown

APP_NAME = "Bot Notifier"

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="bot-notifier",
        description="Chat bot webhook receiver and notification dispatcher.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bot_notifier                       Run the HTTP server
  python -m bot_notifier --config-check        Validate config and exit
  python -m bot_notifier --port 9000           Listen on another port
  python -m bot_notifier --log-level DEBUG     Enable debug logging
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit without starting the server",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )
    parser.add_argument("--host", default=None, help="Override HTTP bind host")
    parser.add_argument("--port", type=int, default=None, help="Override HTTP port")
    return parser


def configure_logging(level: str) -> None:
    """Configure console logging for the application."""
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
            "redis": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_config_summary(settings: Settings) -> None:
    print("Configuration:")
    for key, value in settings.redacted_summary().items():
        print(f"  {key}: {value}")
    print()


def validate_config() -> Settings | None:
    """Load configuration, printing field errors on failure."""
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  {field}: {error['msg']}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    print("Configuration is valid!")
    print()
    print_config_summary(settings)
    if settings.telegram.enabled:
        print("  Telegram: configured")
    else:
        print("  Telegram: not configured (notifications will be recorded as failures)")
    print()
    return EXIT_SUCCESS


async def run_server(settings: Settings) -> int:
    """Run the HTTP server until a shutdown signal arrives."""
    logger = logging.getLogger(__name__)
    server = NotifierServer(settings)

    try:
        async with GracefulShutdown() as shutdown:
            shutdown.register_cleanup(server.stop)
            await server.start()
            logger.info("%s v%s running. Press Ctrl+C to stop.", APP_NAME, __version__)
            await shutdown.wait()
            logger.info("Shutdown signal received, stopping server...")
        return EXIT_SUCCESS
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Server failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI."""
    args = create_parser().parse_args(argv)

    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    overrides = {}
    if args.host:
        overrides["http_host"] = args.host
    if args.port is not None:
        overrides["http_port"] = args.port
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(args.log_level or settings.log_level)

    if args.config_check:
        sys.exit(run_config_check(settings))

    print_config_summary(settings)
    sys.exit(asyncio.run(run_server(settings)))


if __name__ == "__main__":
    main()
