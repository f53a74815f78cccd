"""CLI entry point for the OctaneShift gas monitor.

Usage:
    python -m octaneshift_monitor [options]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import logging.config
import sys
from typing import NoReturn

from pydantic import ValidationError

from octaneshift_monitor import __version__
from octaneshift_monitor.config import Settings, clear_settings_cache, get_settings
from octaneshift_monitor.errors import MonitorError
from octaneshift_monitor.pipeline import Pipeline
from octaneshift_monitor.shutdown import GracefulShutdown

APP_NAME = "OctaneShift Gas Monitor"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="octaneshift-monitor",
        description="Watch wallet gas balances and send top-up alerts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m octaneshift_monitor                   Run the monitor
  python -m octaneshift_monitor --config-check    Validate config and exit
  python -m octaneshift_monitor --once            Run a single pass and print the report
  python -m octaneshift_monitor --test-alert      Print a synthetic alert and exit
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )
    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log alerts instead of delivering them",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Override HTTP port (default: from settings)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run one watchlist pass, print the pass report and exit",
    )
    mode.add_argument(
        "--test-alert",
        action="store_true",
        help="Generate a synthetic low-balance alert and exit",
    )
    return parser


def configure_logging(level: str) -> None:
    """Configure logging with redaction of addresses and secrets.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "redact": {"()": "octaneshift_monitor.redaction.RedactingFilter"},
        },
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
                "filters": ["redact"],
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "web3": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_config_summary(settings: Settings, dry_run: bool) -> None:
    """Print the configuration with secrets redacted."""
    summary = settings.redacted_summary()
    print(f"{APP_NAME} v{APP_VERSION}")
    print("Configuration:")
    print(f"  Alert Store: {summary['alert_store']} ({summary['redis_url']})")
    print(f"  Frontend: {summary['frontend_origin']}")
    print(f"  Deep Link Signing: {summary['deeplink_signing']}")
    print(f"  Poll Interval: {summary['poll_interval_seconds']}s")
    print(f"  Cool-down: {summary['cooldown_seconds']}s")
    print(f"  Log Level: {summary['log_level']}")
    print(f"  Health Port: {summary['health_port']}")
    print(f"  Dry Run: {dry_run}")
    print(f"  Discord: {'enabled' if summary['discord_enabled'] == 'True' else 'disabled'}")
    print(f"  Telegram: {'enabled' if summary['telegram_enabled'] == 'True' else 'disabled'}")
    print(f"  QR Codes: {'attached' if summary['include_qr'] == 'True' else 'off'}")
    print()


def validate_config() -> Settings | None:
    """Load configuration, printing validation errors.

    Returns:
        Settings instance if valid, None if invalid.
    """
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
    """Print the validated configuration."""
    print("Configuration is valid!")
    print()
    print_config_summary(settings, dry_run=settings.dry_run)

    print("Balance sources:")
    for alias, source in settings.chain_sources().items():
        print(f"  {alias}: {source} RPC")
    print()
    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


async def run_once(settings: Settings, dry_run: bool) -> int:
    """Run a single pass and print its report."""
    logger = logging.getLogger(__name__)
    pipeline = Pipeline(settings, dry_run=dry_run)
    try:
        summary = await pipeline.run_once()
    except MonitorError as e:
        logger.error("Pass failed: %s", e)
        return EXIT_ERROR
    finally:
        await pipeline.stop()

    print(json.dumps(summary.to_dict(), indent=2))
    return EXIT_ERROR if summary.errors else EXIT_SUCCESS


async def run_test_alert(settings: Settings) -> int:
    """Generate the synthetic alert and print it."""
    logger = logging.getLogger(__name__)
    pipeline = Pipeline(settings, dry_run=True)
    try:
        test_alert = await pipeline.test_alert()
    except MonitorError as e:
        logger.error("Test alert failed: %s", e)
        return EXIT_ERROR
    finally:
        await pipeline.stop()

    print(test_alert.message.rendered_text)
    return EXIT_SUCCESS


async def run_pipeline(
    settings: Settings,
    dry_run: bool,
    shutdown_timeout: float = 30.0,
) -> int:
    """Run the monitor until a shutdown signal arrives.

    Returns:
        Exit code.
    """
    logger = logging.getLogger(__name__)
    shutdown = GracefulShutdown(timeout=shutdown_timeout)

    try:
        async with shutdown:
            pipeline = Pipeline(settings, dry_run=dry_run)
            shutdown.register_cleanup(pipeline.stop)

            logger.info("Starting monitor...")
            await pipeline.start()
            logger.info("Monitor running. Press Ctrl+C to stop.")

            await shutdown.wait()
            logger.info("Shutdown signal received, stopping monitor...")

        return EXIT_SUCCESS
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Monitor failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    if args.health_port is not None:
        settings = settings.model_copy(update={"health_port": args.health_port})

    configure_logging(args.log_level or settings.log_level)

    if args.config_check:
        sys.exit(run_config_check(settings))

    dry_run = args.dry_run or settings.dry_run

    if args.test_alert:
        sys.exit(asyncio.run(run_test_alert(settings)))

    if args.once:
        sys.exit(asyncio.run(run_once(settings, dry_run)))

    print_config_summary(settings, dry_run)
    sys.exit(asyncio.run(run_pipeline(settings, dry_run)))


if __name__ == "__main__":
    main()
