from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from linksync.adapters.event_stream import open_event_stream
from linksync.app import check_linkages, list_linkages, run_service
from linksync.config import configure_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from linksync.app import CheckReport, ServiceReport

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep secondary resources in step with primaries")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Root log level (default: %(default)s)",
    )
    parser.add_argument(
        "--database-uri",
        type=str,
        help="SQLAlchemy database URI (defaults to DATABASE_URI or the data dir)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser(
        "serve", help="Recover linkages and run the reconciliation service"
    )
    serve.add_argument(
        "--events",
        type=str,
        metavar="PATH",
        help="Read JSON-lines resource events from PATH ('-' for stdin)",
    )
    subparsers.add_parser("check", help="Validate every persisted linkage once and clean up")

    listing = subparsers.add_parser("list", help="Print persisted linkages")
    listing.add_argument(
        "--health",
        type=str,
        choices=("healthy", "error"),
        help="Only show linkages with this health",
    )

    return parser.parse_args(list(argv))


async def _serve(events_target: str | None = None) -> ServiceReport:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError):
            log.debug("Signal handler for %s not supported here", signum)
    events = await open_event_stream(events_target) if events_target else None
    return await run_service(events=events, stop=stop, stop_when_exhausted=False)


def _print_check(report: CheckReport) -> None:
    recovery = report.recovery
    log.info(
        "Check finished: loaded=%s, restored=%s, removed=%s, unverified=%s, deferred=%s",
        recovery.loaded,
        recovery.restored,
        recovery.removed,
        recovery.unverified,
        recovery.deferred,
    )
    log.info(
        "Sweep: checked=%s, healthy=%s, invalid=%s, unknown=%s, removed=%s",
        report.sweep.checked,
        report.sweep.healthy,
        report.sweep.invalid,
        report.sweep.unknown,
        report.sweep.removed,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=getattr(logging, parsed_args.log_level))

    try:
        if parsed_args.database_uri:
            from linksync.adapters.sqlalchemy import startup  # noqa: PLC0415

            startup(database_uri=parsed_args.database_uri, force=True)

        if parsed_args.command == "serve":
            report = asyncio.run(_serve(parsed_args.events))
            log.info(
                "Handled %s events; %s linkages tracked",
                report.handled_events,
                report.stats.total,
            )
        elif parsed_args.command == "check":
            check = asyncio.run(check_linkages())
            _print_check(check)
            if not check.recovery.success:
                sys.exit(1)
        elif parsed_args.command == "list":
            linkages = asyncio.run(list_linkages())
            for linkage in linkages:
                if parsed_args.health and linkage.health != parsed_args.health:
                    continue
                print(  # noqa: T201
                    f"{linkage.primary_id}\t{linkage.secondary_id}\t"
                    f"{linkage.last_known_count}\t{linkage.health}"
                )
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    signal.signal(signal.SIGINT, sigint_handler)
    main()
