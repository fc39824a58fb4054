"""Command-line entry point for push-dispatch.

Loads configuration, sets up logging, opens the database and runs one
service operation, printing the JSON response envelope on stdout.

Exit codes:
    0: Operation succeeded (status 200 or 201)
    1: Configuration error, request error or total failure
    2: Partial success (status 207)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import NoReturn, TextIO

from push_dispatch.core.config import (
    ConfigurationError,
    EnvironmentVariableError,
    MainConfig,
    load_main_config,
)
from push_dispatch.core.service import PushService, create_push_service
from push_dispatch.exceptions import PushDispatchError
from push_dispatch.storage.database import Database
from push_dispatch.storage.logs import LogFilter
from push_dispatch.types.models import ServiceResponse
from push_dispatch.utils.logging import configure_logging

__all__ = ["main"]

DEFAULT_CONFIG_PATH: Path = Path("config/push-dispatch.yaml")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="push-dispatch",
        description="Manage push subscriptions and dispatch batch web push notifications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  push-dispatch subscribe subscription.json
  push-dispatch notify - < notification.json
  push-dispatch unsubscribe kitchen-tablet office-laptop
  push-dispatch --dry-run --log-level DEBUG notify notification.json
  push-dispatch logs --level error --limit 20
        """,
    )

    _ = parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
        metavar="PATH",
    )
    _ = parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Record notifications without contacting push services (overrides config)",
    )
    _ = parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
        metavar="LEVEL",
    )
    _ = parser.add_argument(
        "--no-syslog",
        action="store_true",
        help="Disable syslog integration (useful for development)",
    )

    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    subscribe = commands.add_parser("subscribe", help="Store a device's push subscription")
    _ = subscribe.add_argument("file", help="JSON request body, or - for stdin")

    unsubscribe = commands.add_parser("unsubscribe", help="Remove all subscriptions of devices")
    _ = unsubscribe.add_argument("device_ids", nargs="+", metavar="DEVICE_ID")

    notify = commands.add_parser("notify", help="Send a notification to many devices")
    _ = notify.add_argument("file", help="JSON request body, or - for stdin")

    _ = commands.add_parser("purge-expired", help="Remove subscriptions past their expiration time")

    subscriptions = commands.add_parser("subscriptions", help="List stored subscriptions")
    _ = subscriptions.add_argument(
        "--filter",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Only list subscriptions whose metadata KEY equals VALUE (repeatable)",
    )

    logs = commands.add_parser("logs", help="Show recorded dispatch events")
    _ = logs.add_argument("--level", choices=["debug", "info", "warn", "error", "critical"])
    _ = logs.add_argument("--source")
    _ = logs.add_argument("--search", help="Only events whose message contains this text")
    _ = logs.add_argument("--hours", type=float, help="Only events from the last N hours")
    _ = logs.add_argument("--limit", type=int, default=100)

    return parser


def read_body(source: str, stdin: TextIO | None = None) -> object:
    """Read a JSON request body from a file path, or stdin for ``-``.

    Raises:
        ConfigurationError: If the file cannot be read or is not JSON
    """
    try:
        if source == "-":
            return json.load(stdin or sys.stdin)
        with Path(source).open("r") as f:
            return json.load(f)
    except OSError as exc:
        msg = f"Failed to read request body from {source}: {exc}"
        raise ConfigurationError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"Request body in {source} is not valid JSON: {exc}"
        raise ConfigurationError(msg) from exc


def parse_filters(pairs: Sequence[str]) -> dict[str, object]:
    """Turn ``KEY=VALUE`` arguments into a metadata filter.

    Values that parse as JSON (numbers, booleans, null) are compared as such.

    Example:
        >>> parse_filters(["room=kitchen", "floor=2"])
        {'room': 'kitchen', 'floor': 2}
    """
    result: dict[str, object] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            msg = f"Invalid filter {pair!r}, expected KEY=VALUE"
            raise ConfigurationError(msg)
        try:
            result[key] = json.loads(raw)
        except json.JSONDecodeError:
            result[key] = raw
    return result


def exit_code_for(status_code: int) -> int:
    if status_code in (200, 201):
        return EXIT_SUCCESS
    if status_code == 207:
        return EXIT_PARTIAL
    return EXIT_FAILURE


async def run_command(service: PushService, args: argparse.Namespace) -> ServiceResponse:
    command: str = args.command  # pyright: ignore[reportAny]  # argparse boundary
    match command:
        case "subscribe":
            return await service.subscribe(read_body(args.file))  # pyright: ignore[reportArgumentType, reportAny]
        case "unsubscribe":
            return await service.unsubscribe({"device_ids": args.device_ids})  # pyright: ignore[reportAny]
        case "notify":
            return await service.notify(read_body(args.file))  # pyright: ignore[reportArgumentType, reportAny]
        case "purge-expired":
            return await service.purge_expired()
        case "subscriptions":
            return await service.list_subscriptions(parse_filters(args.filter) or None)  # pyright: ignore[reportAny]
        case "logs":
            hours: float | None = args.hours  # pyright: ignore[reportAny]  # argparse boundary
            return await service.get_logs(
                LogFilter(
                    level=args.level,  # pyright: ignore[reportAny]
                    source=args.source,  # pyright: ignore[reportAny]
                    search=args.search,  # pyright: ignore[reportAny]
                    since=datetime.now(UTC) - timedelta(hours=hours) if hours else None,
                    limit=args.limit,  # pyright: ignore[reportAny]
                )
            )
        case _:
            msg = f"Unknown command: {command}"
            raise ConfigurationError(msg)


async def async_main(config: MainConfig, args: argparse.Namespace) -> ServiceResponse:
    """Open the database, run one command and release the service and database again."""
    logger = logging.getLogger(__name__)

    with Database(config.database.path) as database:
        service = create_push_service(config, database)
        try:
            logger.debug("Running command", extra={"command": args.command})  # pyright: ignore[reportAny]
            return await run_command(service, args)
        finally:
            service.close()


def load_config(args: argparse.Namespace) -> MainConfig:
    """Load configuration and apply command-line overrides."""
    config_path: Path = args.config  # pyright: ignore[reportAny]  # argparse boundary
    dry_run: bool = args.dry_run  # pyright: ignore[reportAny]  # argparse boundary
    config = load_main_config(config_path, dry_run=dry_run)

    log_level: str | None = args.log_level  # pyright: ignore[reportAny]  # argparse boundary
    if log_level is not None:
        config.application.log_level = log_level
    if args.no_syslog:  # pyright: ignore[reportAny]
        config.application.syslog_enabled = False

    return config


def emit(payload: dict[str, object], stream: TextIO | None = None) -> None:
    print(json.dumps(payload, indent=2, default=str), file=stream or sys.stdout)


def main(argv: Sequence[str] | None = None) -> NoReturn:
    """Run the CLI and exit with a code derived from the response status."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
        configure_logging(
            log_level=config.application.log_level,
            enable_syslog=config.application.syslog_enabled,
            enable_console=True,
        )
        response = asyncio.run(async_main(config, args))

    except ConfigurationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    except EnvironmentVariableError as exc:
        print(f"Environment variable error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    except PushDispatchError as exc:
        emit(exc.to_dict())
        sys.exit(EXIT_FAILURE)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    emit(response.to_dict())
    sys.exit(exit_code_for(response.status_code))


if __name__ == "__main__":
    main()
