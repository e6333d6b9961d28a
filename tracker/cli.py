"""Command line entry point for the manga tracker."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from . import operations
from .config import ProxyConfig, TrackerConfig
from .operations import OperationResult, open_service

LOGGER = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track manga chapters across MangaDex and WeebCentral")
    parser.add_argument("--db-url", type=str, help="SQLAlchemy database URL (default: $TRACKER_DATABASE_URL)")
    parser.add_argument("--proxy", type=str, help="Proxy endpoint in host:port[:user:password] format")
    parser.add_argument("--proxy-scheme", type=str, default="http", help="Proxy scheme (default: http)")
    parser.add_argument(
        "--selectors-file",
        type=Path,
        help="JSON file overriding the WeebCentral CSS selectors",
    )
    parser.add_argument("--user-agent", type=str, help="Override the User-Agent header")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--max-retries", type=int, help="Retries after the first failed request")
    parser.add_argument("--search-limit", type=int, help="Maximum search results per source")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sources", help="List registered sources")

    search_parser = subparsers.add_parser("search", help="Search one source or all of them")
    search_parser.add_argument("query", help="Title to search for")
    search_parser.add_argument("--source", type=str, help="Restrict the search to one source")

    import_parser = subparsers.add_parser("import", help="Import a manga and all of its chapters")
    import_parser.add_argument("source", help="Source name, e.g. mangadex")
    import_parser.add_argument("source_id", help="Identifier of the manga on that source")

    update_parser = subparsers.add_parser("update", help="Refresh chapters of a tracked manga")
    update_parser.add_argument("work_id", help="Tracked manga id")

    sync_parser = subparsers.add_parser("sync", help="Import or update recently updated manga of a source")
    sync_parser.add_argument("source", help="Source name")
    sync_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum recent entries to process (default: $TRACKER_SYNC_LIMIT or 20)",
    )

    list_parser = subparsers.add_parser("list", help="List tracked manga, most recently updated first")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.add_argument("--skip", type=int, default=0)

    show_parser = subparsers.add_parser("show", help="Show a tracked manga with its chapters")
    show_parser.add_argument("work_id", help="Tracked manga id")

    return parser


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> TrackerConfig:
    config = TrackerConfig.from_env()
    if args.db_url:
        config.db_url = args.db_url
    if args.proxy:
        config.proxy = ProxyConfig.from_endpoint(args.proxy, scheme=args.proxy_scheme)
    if args.selectors_file:
        config.weebcentral_selectors_file = args.selectors_file.expanduser()
    if args.user_agent:
        config.user_agent = args.user_agent
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ValueError("--timeout must be positive")
        config.timeout.request_timeout = args.timeout
    if args.max_retries is not None:
        if args.max_retries < 0:
            raise ValueError("--max-retries must not be negative")
        config.retry.max_retries = args.max_retries
    if args.search_limit is not None:
        if args.search_limit < 1:
            raise ValueError("--search-limit must be positive")
        config.search_limit = args.search_limit
    if args.command == "sync":
        if args.limit is not None:
            if args.limit < 1:
                raise ValueError("--limit must be positive")
            config.sync_limit = args.limit
        args.limit = config.sync_limit
    return config


def run_command(args: argparse.Namespace, service) -> OperationResult:
    command = args.command
    if command == "sources":
        return operations.list_sources(service)
    if command == "search":
        return operations.search(service, args.query, args.source)
    if command == "import":
        return operations.import_work(service, args.source, args.source_id)
    if command == "update":
        return operations.update_work(service, args.work_id)
    if command == "sync":
        return operations.sync(service, args.source, args.limit)
    if command == "list":
        return operations.list_works(service, args.limit, args.skip)
    if command == "show":
        return operations.get_work_with_units(service, args.work_id)
    raise ValueError(f"Unknown command {command!r}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    if not config.db_url:
        parser.error("--db-url is required (or set TRACKER_DATABASE_URL)")

    with open_service(config) as service:
        result = run_command(args, service)

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    if not result.success:
        LOGGER.error("%s failed: %s", args.command, result.error)
    return 0 if result.success else 1


__all__ = ["build_arg_parser", "build_config", "configure_logging", "main", "run_command"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
