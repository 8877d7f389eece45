"""Multi-source aggregation and deduplication for ICS calendar processing - dashcal.

This module turns the raw ICS text of every configured source into one flat,
deduplicated list of render-ready CalendarEvents for a visible window.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, tzinfo
from typing import Optional

from .dash_datetime_utils import days_spanned, to_epoch_ms
from .dash_ics_parser import DashICSParser
from .dash_models import CalendarEvent, CalendarSourceConfig, Occurrence
from .dash_rrule_expander import DashRRuleExpander, RRuleExpanderConfig

logger = logging.getLogger(__name__)

DEFAULT_COLORS = ["#FF6B6B", "#4ECDC4", "#45B7D1", "#FFA07A", "#98D8C8", "#F7DC6F"]


def build_palette(sources: Sequence[CalendarSourceConfig]) -> list[str]:
    """Return the configured source colours in order, or the default palette.

    Sources without a colour are skipped, so the palette can be shorter than
    the source list and colours are then assigned cyclically.
    """
    colors = [s.color.strip() for s in sources if s.color and s.color.strip()]
    return colors or list(DEFAULT_COLORS)


def source_display_name(source: CalendarSourceConfig, index: int) -> str:
    """Display name of the source at 0-based ``index``."""
    if source.name and source.name.strip():
        return source.name.strip()
    return f"Calendar {index + 1}"


def visible_month_window(anchor: datetime) -> tuple[datetime, datetime]:
    """Return ``[first of month, first of next month)`` for the anchor date."""
    start = datetime(anchor.year, anchor.month, 1)
    if anchor.month == 12:
        return start, datetime(anchor.year + 1, 1, 1)
    return start, datetime(anchor.year, anchor.month + 1, 1)


class DashEventMerger:
    """Builds the aggregated event list for one refresh cycle.

    A merger instance carries the id counter of a single cycle; create a new
    one for each cycle.
    """

    def __init__(
        self,
        tz: Optional[tzinfo] = None,
        expander_config: Optional[RRuleExpanderConfig] = None,
    ) -> None:
        """Initialize merger.

        Args:
            tz: Display timezone for UTC conversion and epoch ids (system local when None)
            expander_config: RRULE expansion settings
        """
        self.tz = tz
        self.parser = DashICSParser(tz)
        self.expander = DashRRuleExpander(expander_config, tz)
        self._counter = 0

    def aggregate(
        self,
        source_texts: Sequence[Optional[str]],
        range_start: datetime,
        range_end: datetime,
        palette: Sequence[str],
    ) -> list[CalendarEvent]:
        """Parse, expand and merge every source for the window.

        Args:
            source_texts: ICS text per source in configuration order; None for a failed fetch
            range_start: Inclusive window start
            range_end: Exclusive window end
            palette: Colours assigned by source index modulo palette length

        Returns:
            Deduplicated events, in source order then occurrence order
        """
        colors = list(palette) or list(DEFAULT_COLORS)
        all_events: list[CalendarEvent] = []

        for index, text in enumerate(source_texts):
            if text is None:
                logger.debug("Source %d has no content this cycle", index)
                continue

            result = self.parser.parse_ics_content(text)
            color = colors[index % len(colors)]
            source_count = 0
            for parsed in result.events:
                for occurrence in self.expander.expand_event(parsed, range_start, range_end):
                    all_events.append(self._to_calendar_event(occurrence, index, color))
                    source_count += 1

            logger.debug(
                "Source %d: %d VEVENTs (%d recurring) -> %d occurrences in window",
                index,
                result.event_count,
                result.recurring_event_count,
                source_count,
            )

        return self.deduplicate_events(all_events)

    def _to_calendar_event(self, occurrence: Occurrence, index: int, color: str) -> CalendarEvent:
        start_ms = to_epoch_ms(occurrence.start, self.tz)
        event_id = f"{index}-{occurrence.title}-{start_ms}-{self._counter}"
        self._counter += 1
        return CalendarEvent(
            id=event_id,
            title=occurrence.title,
            start=occurrence.start,
            end=occurrence.end,
            location=occurrence.location,
            color=color,
            calendar_index=index,
            days_spanned=days_spanned(occurrence.start, occurrence.end),
            all_day=occurrence.all_day,
        )

    def deduplicate_events(self, events: list[CalendarEvent]) -> list[CalendarEvent]:
        """Remove duplicate events based on title and start time.

        The first event seen for a (title, start) pair wins, so an event
        shared by two calendars keeps the colour of the earlier source.

        Args:
            events: Events in aggregation order

        Returns:
            Deduplicated list of events
        """
        seen: set[tuple[str, datetime]] = set()
        deduplicated = []

        for event in events:
            key = (event.title, event.start)
            if key not in seen:
                seen.add(key)
                deduplicated.append(event)

        if len(events) != len(deduplicated):
            logger.debug("Removed %d duplicate events", len(events) - len(deduplicated))

        return deduplicated
