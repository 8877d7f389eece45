"""Command-line entry for dashcal.

Runs one refresh cycle and prints the aggregated events or a layout as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn, Optional

from dateutil import parser as date_parser

from . import _init_logging
from .config_loader import Config, load_config
from .dash_datetime_utils import now_local, resolve_timezone
from .dash_event_merger import source_display_name
from .dash_fetcher import DashICSFetcher, DashICSFetchError
from .dash_layout import build_month_grid, build_week_timeline, layout_day_timeline
from .dash_logging import configure_dash_logging
from .dash_models import CalendarSourceConfig
from .fetch_orchestrator import CalendarRefresher

logger = logging.getLogger(__name__)

COMMANDS = ("events", "month", "week", "day")


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for dashcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="dashcal",
        description="dashcal - ICS calendar aggregation and layout engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m dashcal events                         # Events of the current month
  python -m dashcal month --date 2025-11-01        # Month grid for November 2025
  python -m dashcal week --ics family.ics          # Week timeline from a local file
        """,
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=COMMANDS,
        default="events",
        help="What to print (default: events)",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to YAML/JSON config file (default: ./dashcal.yaml)",
    )
    parser.add_argument(
        "--ics",
        action="append",
        metavar="FILE",
        default=[],
        help="Read a local ICS file instead of the configured URLs (repeatable)",
    )
    parser.add_argument(
        "--date",
        metavar="DATE",
        help="Anchor date (default: today, or DASHCAL_TEST_TIME)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    return parser


async def _read_local_file(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise DashICSFetchError(f"Cannot read {path}: {e}") from e


def _with_local_sources(config: Config, paths: list[str]) -> Config:
    """Replace configured sources with local files, keeping per-index colours and names."""
    sources = []
    for index, path in enumerate(paths):
        configured = config.sources[index] if index < len(config.sources) else None
        sources.append(
            CalendarSourceConfig(
                url=path,
                name=source_display_name(configured, index) if configured else Path(path).stem,
                color=configured.color if configured else None,
            )
        )
    config.sources = sources
    return config


def _resolve_anchor(raw: Optional[str], config: Config) -> datetime:
    if raw:
        return date_parser.parse(raw).replace(tzinfo=None)
    return now_local(resolve_timezone(config.timezone))


async def _run(args: argparse.Namespace, config: Config, anchor: datetime) -> Any:
    if args.ics:
        refresher = CalendarRefresher(_with_local_sources(config, args.ics), _read_local_file)
        await refresher.refresh_once(anchor)
    else:
        async with DashICSFetcher(config) as fetcher:
            refresher = CalendarRefresher(config, fetcher.fetch_text)
            await refresher.refresh_once(anchor)
    refresher.close()

    events = list(refresher.events)
    if args.command == "month":
        return build_month_grid(events, anchor.year, anchor.month).model_dump(mode="json")
    if args.command == "week":
        return [day.model_dump(mode="json") for day in build_week_timeline(events, anchor)]
    if args.command == "day":
        return layout_day_timeline(events, anchor).model_dump(mode="json")
    return [event.model_dump(mode="json") for event in events]


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the dashcal CLI."""
    _init_logging(os.environ.get("DASHCAL_LOG_LEVEL"))

    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ValueError, RuntimeError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    configure_dash_logging(debug_mode=args.debug, level_name=config.log_level)

    if not config.sources and not args.ics:
        logger.error("No calendar sources: set DASHCAL_CALENDAR_URLS, a config file, or --ics")
        sys.exit(1)

    try:
        anchor = _resolve_anchor(args.date, config)
    except (ValueError, OverflowError) as exc:
        logger.error("Invalid --date %r: %s", args.date, exc)
        sys.exit(2)

    payload = asyncio.run(_run(args, config, anchor))
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")
    sys.exit(0)


if __name__ == "__main__":
    main()
