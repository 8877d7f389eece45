"""RRULE expansion logic for dashcal.

Expansion is window driven: each frequency walks only as far as needed to
emit the occurrences that start inside ``[range_start, range_end)``. All
arithmetic is done on naive local wall-clock datetimes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Optional

from .dash_datetime_utils import (
    add_days,
    build_overflowing_date,
    get_nth_weekday_of_month,
    js_weekday,
    month_index,
    with_time_of,
)
from .dash_models import Frequency, Occurrence, ParsedEvent, RecurrenceRule
from .dash_rrule_parser import parse_rrule

logger = logging.getLogger(__name__)

_ONE_WEEK = timedelta(days=7)


@dataclass
class RRuleExpanderConfig:
    """Configuration for RRULE expansion.

    ``enforce_weekly_count`` makes WEEKLY rules honour COUNT by walking from
    the first occurrence; by default WEEKLY rules ignore COUNT.
    """

    max_occurrences_per_rule: int = 1000
    enforce_weekly_count: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleExpanderConfig":
        """Extract RRULE configuration from settings object.

        Args:
            settings: Configuration object with RRULE settings

        Returns:
            RRuleExpanderConfig with values from settings or defaults
        """
        return cls(
            max_occurrences_per_rule=getattr(settings, "max_occurrences_per_rule", 1000),
            enforce_weekly_count=getattr(settings, "enforce_weekly_count", False),
        )


def event_in_range(event: ParsedEvent, range_start: datetime, range_end: datetime) -> bool:
    """Half-open overlap test used for non-recurring events."""
    return event.start < range_end and event.end > range_start


class _Emitter:
    """Collects occurrences of one master event, enforcing COUNT and the safety cap."""

    def __init__(self, event: ParsedEvent, count: Optional[int], max_occurrences: int) -> None:
        self.event = event
        self.duration = event.end - event.start
        self.count = count
        self.max_occurrences = max_occurrences
        self.emitted = 0
        self.capped = False
        self.occurrences: list[Occurrence] = []

    def emit(self, start: datetime) -> None:
        self.occurrences.append(
            Occurrence(
                title=self.event.title,
                start=start,
                end=start + self.duration,
                location=self.event.location,
                all_day=bool(self.event.all_day),
            )
        )
        self.emitted += 1
        if len(self.occurrences) >= self.max_occurrences:
            self.capped = True

    @property
    def done(self) -> bool:
        """True once COUNT or the safety cap has been reached."""
        if self.capped:
            return True
        return bool(self.count) and self.emitted >= self.count


class DashRRuleExpander:
    """Expands recurring ParsedEvents into concrete occurrences."""

    def __init__(
        self, config: Optional[RRuleExpanderConfig] = None, tz: Optional[tzinfo] = None
    ) -> None:
        """Initialize expander.

        Args:
            config: Expansion settings (defaults when None)
            tz: Display timezone used to convert a UTC UNTIL value
        """
        self.config = config or RRuleExpanderConfig()
        self.tz = tz

    def expand_event(
        self, event: ParsedEvent, range_start: datetime, range_end: datetime
    ) -> list[Occurrence]:
        """Expand one event into the occurrences that start inside the window.

        Events without a usable RRULE are returned as a single occurrence when
        they overlap ``[range_start, range_end)``.

        Args:
            event: Parsed master event
            range_start: Inclusive window start (naive local)
            range_end: Exclusive window end (naive local)

        Returns:
            Occurrences sorted per frequency walk; empty on any failure
        """
        try:
            return self._expand(event, range_start, range_end)
        except Exception:
            logger.exception("Failed to expand event %r (rrule=%r)", event.title, event.rrule)
            return []

    def _expand(
        self, event: ParsedEvent, range_start: datetime, range_end: datetime
    ) -> list[Occurrence]:
        rule = parse_rrule(event.rrule, self.tz) if event.rrule else None
        if rule is None or rule.is_inert:
            if event_in_range(event, range_start, range_end):
                return [self._single(event)]
            return []

        emitter = _Emitter(event, rule.count, self.config.max_occurrences_per_rule)

        if rule.freq == Frequency.DAILY:
            self._expand_daily(event, rule, range_start, range_end, emitter)
        elif rule.freq == Frequency.WEEKLY:
            if self.config.enforce_weekly_count and rule.count:
                self._expand_weekly_counted(event, rule, range_start, range_end, emitter)
            else:
                emitter.count = None
                self._expand_weekly(event, rule, range_start, range_end, emitter)
        elif rule.freq == Frequency.MONTHLY:
            self._expand_monthly(event, rule, range_start, range_end, emitter)
        elif rule.freq == Frequency.YEARLY:
            self._expand_yearly(event, rule, range_start, range_end, emitter)

        if emitter.capped:
            logger.warning(
                "Event %r hit max_occurrences_per_rule=%d; remaining occurrences dropped",
                event.title,
                self.config.max_occurrences_per_rule,
            )
        return emitter.occurrences

    @staticmethod
    def _single(event: ParsedEvent) -> Occurrence:
        return Occurrence(
            title=event.title,
            start=event.start,
            end=event.end,
            location=event.location,
            all_day=bool(event.all_day),
        )

    def _expand_daily(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        # Every stride step counts toward COUNT, emitted or not
        cursor = event.start
        steps = 0
        while cursor < range_end:
            if rule.until and cursor > rule.until:
                break
            if cursor >= range_start:
                emitter.emit(cursor)
                if emitter.capped:
                    break
            steps += 1
            if rule.count and steps >= rule.count:
                break
            cursor = add_days(cursor, rule.interval)

    @staticmethod
    def _weekly_days(event: ParsedEvent, rule: RecurrenceRule) -> set[int]:
        if rule.byday_given:
            return {entry.weekday.day_index for entry in rule.byday}
        return {js_weekday(event.start)}

    @staticmethod
    def _on_weekly_stride(event: ParsedEvent, rule: RecurrenceRule, candidate: datetime) -> bool:
        weeks_diff = (candidate - event.start) // _ONE_WEEK
        return weeks_diff >= 0 and weeks_diff % rule.interval == 0

    def _expand_weekly(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        weekdays = self._weekly_days(event, rule)
        cursor = with_time_of(range_start, event.start)
        while cursor < range_end:
            if rule.until and cursor > rule.until:
                break
            if (
                self._on_weekly_stride(event, rule, cursor)
                and js_weekday(cursor) in weekdays
                and cursor >= event.start
            ):
                emitter.emit(cursor)
                if emitter.done:
                    break
            cursor = add_days(cursor, 1)

    def _expand_weekly_counted(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        weekdays = self._weekly_days(event, rule)
        cursor = event.start
        matched = 0
        while cursor < range_end:
            if rule.until and cursor > rule.until:
                break
            if self._on_weekly_stride(event, rule, cursor) and js_weekday(cursor) in weekdays:
                matched += 1
                if cursor >= range_start:
                    emitter.emit(cursor)
                    if emitter.capped:
                        break
                if rule.count and matched >= rule.count:
                    break
            cursor = add_days(cursor, 1)

    def _emit_if_eligible(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        candidate: datetime,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        if candidate < event.start:
            return
        if rule.until and candidate > rule.until:
            return
        if range_start <= candidate < range_end:
            emitter.emit(candidate)

    def _emit_nth_weekdays(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        year: int,
        month0: int,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        for entry in rule.byday:
            day = get_nth_weekday_of_month(year, month0, entry.weekday.day_index, entry.ordinal)
            if day is None:
                continue
            candidate = with_time_of(day, event.start)
            self._emit_if_eligible(event, rule, candidate, range_start, range_end, emitter)
            if emitter.done:
                return

    def _expand_monthly(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        # COUNT here only counts emissions inside the window
        start_index = month_index(event.start)
        for index in range(month_index(range_start), month_index(range_end) + 1):
            if (index - start_index) % rule.interval != 0:
                continue
            year, month0 = divmod(index, 12)

            if rule.byday_given:
                self._emit_nth_weekdays(
                    event, rule, year, month0, range_start, range_end, emitter
                )
            else:
                candidate = with_time_of(
                    build_overflowing_date(year, month0, event.start.day), event.start
                )
                self._emit_if_eligible(event, rule, candidate, range_start, range_end, emitter)

            if emitter.done:
                return

    def _expand_yearly(
        self,
        event: ParsedEvent,
        rule: RecurrenceRule,
        range_start: datetime,
        range_end: datetime,
        emitter: _Emitter,
    ) -> None:
        for year in range(range_start.year, range_end.year + 1):
            if (year - event.start.year) % rule.interval != 0:
                continue

            if rule.byday_given and rule.bymonth:
                # Only the first BYMONTH value is used
                self._emit_nth_weekdays(
                    event, rule, year, rule.bymonth[0] - 1, range_start, range_end, emitter
                )
            else:
                candidate = with_time_of(
                    build_overflowing_date(year, event.start.month - 1, event.start.day),
                    event.start,
                )
                self._emit_if_eligible(event, rule, candidate, range_start, range_end, emitter)

            if emitter.done:
                return


def expand_event(
    event: ParsedEvent,
    range_start: datetime,
    range_end: datetime,
    config: Optional[RRuleExpanderConfig] = None,
    tz: Optional[tzinfo] = None,
) -> list[Occurrence]:
    """Expand a single event with a throwaway expander."""
    return DashRRuleExpander(config, tz).expand_event(event, range_start, range_end)

