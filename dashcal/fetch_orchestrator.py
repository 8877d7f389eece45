"""Fetch orchestration and refresh loop management for dashcal."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Optional

from .config_loader import Config
from .dash_datetime_utils import now_local, resolve_timezone
from .dash_event_merger import (
    DashEventMerger,
    build_palette,
    source_display_name,
    visible_month_window,
)
from .dash_fetcher import DashICSFetchError
from .dash_models import CalendarEvent, CalendarSourceConfig
from .dash_rrule_expander import RRuleExpanderConfig

logger = logging.getLogger(__name__)

FetchText = Callable[[str], Awaitable[str]]
AnchorProvider = Callable[[], datetime]


class CalendarRefresher:
    """Runs refresh cycles and publishes the aggregated event list.

    Each cycle fetches every source in configuration order, then parses,
    expands and merges synchronously and replaces ``events`` in one step.
    A cycle that is overtaken by a newer one, or that finishes after
    ``close()``, discards its result.
    """

    def __init__(self, config: Config, fetch_text: FetchText):
        """Initialize refresher.

        Args:
            config: Application configuration (sources, timezone, expansion settings)
            fetch_text: Coroutine function returning the ICS text of a URL
        """
        self.config = config
        self.fetch_text = fetch_text
        self.tz = resolve_timezone(config.timezone)
        self.expander_config = RRuleExpanderConfig.from_settings(config)
        self.palette = build_palette(config.sources)

        self._events: tuple[CalendarEvent, ...] = ()
        self._window: Optional[tuple[datetime, datetime]] = None
        self._generation = 0
        self._closed = False
        self._stop = asyncio.Event()

    @property
    def events(self) -> tuple[CalendarEvent, ...]:
        """Last published events."""
        return self._events

    @property
    def window(self) -> Optional[tuple[datetime, datetime]]:
        """Window the last published events were expanded for."""
        return self._window

    @property
    def closed(self) -> bool:
        return self._closed

    async def _fetch_source(self, index: int, source: CalendarSourceConfig) -> Optional[str]:
        name = source_display_name(source, index)
        try:
            return await self.fetch_text(source.url)
        except DashICSFetchError as e:
            logger.warning("Failed to fetch calendar %r from %s: %s", name, source.url, e)
        except Exception:
            logger.exception("Unexpected error fetching calendar %r from %s", name, source.url)
        return None

    async def refresh_once(self, anchor: Optional[datetime] = None) -> bool:
        """Perform a single refresh cycle for the month containing ``anchor``.

        Args:
            anchor: Date whose month is loaded; defaults to the current local time

        Returns:
            True if this cycle published its result
        """
        self._generation += 1
        generation = self._generation

        if anchor is None:
            anchor = now_local(self.tz)
        range_start, range_end = visible_month_window(anchor)

        sources = self.config.sources
        if not sources:
            logger.warning("No calendar sources configured")

        logger.debug(
            "Refresh cycle %d: %d sources, window %s .. %s",
            generation,
            len(sources),
            range_start,
            range_end,
        )

        texts: list[Optional[str]] = []
        for index, source in enumerate(sources):
            texts.append(await self._fetch_source(index, source))

        if self._closed:
            logger.debug("Refresher closed; discarding cycle %d", generation)
            return False
        if generation != self._generation:
            logger.debug(
                "Cycle %d superseded by cycle %d; discarding result",
                generation,
                self._generation,
            )
            return False

        merger = DashEventMerger(self.tz, self.expander_config)
        events = merger.aggregate(texts, range_start, range_end, self.palette)

        self._events = tuple(events)
        self._window = (range_start, range_end)

        failed = sum(1 for text in texts if text is None)
        logger.info(
            "Calendar refresh complete - %d events from %d/%d sources",
            len(events),
            len(sources) - failed,
            len(sources),
        )
        return True

    async def run_forever(self, anchor_provider: Optional[AnchorProvider] = None) -> None:
        """Refresh immediately, then every refresh_interval_seconds until close().

        Args:
            anchor_provider: Returns the date whose month is shown; current time when None
        """
        interval = self.config.refresh_interval_seconds
        logger.debug("Refresh loop starting with interval %d seconds", interval)

        while not self._closed:
            try:
                anchor = anchor_provider() if anchor_provider else None
                await self.refresh_once(anchor)
            except Exception:
                logger.exception("Refresh loop unexpected error")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        logger.debug("Refresh loop stopped")

    def close(self) -> None:
        """Stop the refresh loop and discard results of in-flight cycles."""
        self._closed = True
        self._stop.set()
