"""Entry point for running the probe CLI as a module."""

import argparse
import asyncio
import sys
from datetime import timedelta

from pacer.configs.config import AppConfig, get_app_config
from pacer.infra.logging import setup_logging
from pacer.infra.telemetry import init_telemetry

from .probe import main


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Fire GET requests at an API through the pacer scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "path",
        type=str,
        help="Request path, joined to --base-url",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="API base URL (default: client.base_url from config)",
    )
    parser.add_argument(
        "-n",
        "--count",
        type=int,
        default=20,
        help="Number of requests to send (default: 20)",
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Override scheduler.max_concurrent",
    )
    parser.add_argument(
        "--min-delay-ms",
        type=float,
        default=None,
        help="Override scheduler.min_delay, in milliseconds",
    )
    parser.add_argument(
        "--priority",
        type=int,
        default=0,
        help="Priority for every request (default: 0)",
    )
    parser.add_argument(
        "--unique",
        action="store_true",
        help="Add a distinct query parameter so requests are not deduplicated",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AppConfig:
    """Apply command-line overrides on top of the loaded configuration."""
    config = get_app_config()

    scheduler_updates: dict = {}
    if args.max_concurrent is not None:
        scheduler_updates["max_concurrent"] = args.max_concurrent
    if args.min_delay_ms is not None:
        scheduler_updates["min_delay"] = timedelta(milliseconds=args.min_delay_ms)

    client_updates: dict = {}
    if args.base_url is not None:
        client_updates["base_url"] = args.base_url

    logging_updates: dict = {}
    if args.debug:
        logging_updates["level"] = "DEBUG"

    return config.model_copy(
        update={
            "scheduler": config.scheduler.model_copy(update=scheduler_updates),
            "client": config.client.model_copy(update=client_updates),
            "logging": config.logging.model_copy(update=logging_updates),
        }
    )


def cli_entry() -> None:
    """CLI entry point."""
    args = parse_args()
    config = build_config(args)
    setup_logging(config.logging)
    init_telemetry(config.tracing)

    try:
        report = asyncio.run(
            main(
                config,
                path=args.path,
                count=args.count,
                priority=args.priority,
                unique=args.unique,
            )
        )
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(1 if report.failed else 0)


if __name__ == "__main__":
    cli_entry()
