"""Layout engine for the month grid and the hour timeline - dashcal.

Turns aggregated CalendarEvents into render-ready structures:

* month view: multi-day segments split per week row, packed into lanes, and
  the inline (single-day, timed) events of each day cell;
* day/week view: all-day row plus timed events positioned on an hour scale
  and packed side by side into columns.

Nothing here renders; views consume the pydantic models directly.
"""

import logging
import math
from collections.abc import Collection, Iterable
from datetime import datetime, time, timedelta
from typing import Optional

from .dash_datetime_utils import add_days, days_in_month, js_weekday, start_of_day
from .dash_models import (
    CalendarEvent,
    DayCell,
    MonthGrid,
    MonthWeek,
    MultiDaySegment,
    TimelineDay,
    TimelinePlacement,
    TimelinePosition,
)

logger = logging.getLogger(__name__)

MAX_VISIBLE_LANES = 2
MAX_INLINE_EVENTS = 3
HOUR_HEIGHT_PX = 60
MIN_EVENT_HEIGHT_PX = 30

_END_OF_DAY = time(23, 59, 59, 999000)


def _visible(
    events: Iterable[CalendarEvent], hidden_calendars: Collection[int]
) -> list[CalendarEvent]:
    return [e for e in events if e.calendar_index not in hidden_calendars]


def adjusted_end(end: datetime) -> datetime:
    """Treat an end at exactly midnight as belonging to the previous day."""
    if end.time() == time(0, 0):
        return add_days(end, -1)
    return end


def is_all_day_event(event: CalendarEvent) -> bool:
    """Check if an event is shown as all-day.

    Either flagged all-day at the source, or starting and ending on local
    midnight (hours and minutes both zero).
    """
    if event.all_day:
        return True
    return (
        event.start.hour == 0
        and event.start.minute == 0
        and event.end.hour == 0
        and event.end.minute == 0
        and event.days_spanned >= 1
    )


def _is_same_adjusted_day(event: CalendarEvent) -> bool:
    return event.start.date() == adjusted_end(event.end).date()


def is_multi_day_event(event: CalendarEvent) -> bool:
    """Events drawn as spanning bars in the month grid."""
    return not _is_same_adjusted_day(event) or event.days_spanned > 1 or is_all_day_event(event)


# Month grid


def build_multi_day_segments(
    events: Iterable[CalendarEvent], year: int, month: int, first_day_offset: int
) -> list[MultiDaySegment]:
    """Split spanning events into one segment per week row of the month.

    Args:
        events: Visible events
        year: Calendar year
        month: 1-based month
        first_day_offset: Weekday of the 1st (Sunday=0)

    Returns:
        Segments in event order, each confined to a single week row
    """
    last_day = days_in_month(year, month - 1)
    month_start = datetime(year, month, 1)
    month_end = datetime.combine(datetime(year, month, last_day).date(), _END_OF_DAY)

    segments: list[MultiDaySegment] = []
    for event in events:
        if not is_multi_day_event(event):
            continue

        event_end = adjusted_end(event.end)
        if event_end < month_start or event.start > month_end:
            continue

        start_day = 1 if event.start < month_start else event.start.day
        end_day = last_day if event_end > month_end else event_end.day
        if end_day < start_day:
            continue

        day = start_day
        while day <= end_day:
            week_index = (first_day_offset + day - 1) // 7
            week_end_day = week_index * 7 - first_day_offset + 7
            segment_end = min(end_day, week_end_day)
            segments.append(
                MultiDaySegment(
                    id=f"{event.id}-{day}",
                    event_id=event.id,
                    title=event.title,
                    color=event.color,
                    week_index=week_index,
                    start_col=(first_day_offset + day - 1) % 7,
                    span=segment_end - day + 1,
                )
            )
            day = segment_end + 1

    return segments


def build_week_lanes(segments: Iterable[MultiDaySegment]) -> list[list[MultiDaySegment]]:
    """Pack the segments of one week row into lanes.

    Segments are taken by start column, longest first, and placed in the
    first lane whose last occupied column is strictly before their start.

    Args:
        segments: Segments of a single week row

    Returns:
        All lanes; callers keep the first MAX_VISIBLE_LANES
    """
    ordered = sorted(segments, key=lambda s: (s.start_col, -s.span))
    lanes: list[list[MultiDaySegment]] = []
    lane_ends: list[int] = []

    for segment in ordered:
        for lane_index, lane_end in enumerate(lane_ends):
            if segment.start_col > lane_end:
                lanes[lane_index].append(segment)
                lane_ends[lane_index] = segment.end_col
                break
        else:
            lanes.append([segment])
            lane_ends.append(segment.end_col)

    return lanes


def events_for_day(events: Iterable[CalendarEvent], target: datetime) -> list[CalendarEvent]:
    """Inline events of one month-grid cell, sorted by start.

    All-day and multi-day events are excluded since they are drawn as
    spanning bars.
    """
    target_day = start_of_day(target)
    selected = []
    for event in events:
        if is_all_day_event(event) or is_multi_day_event(event):
            continue
        event_start_day = start_of_day(event.start)
        event_end_day = start_of_day(event.end)
        if event_start_day == event_end_day:
            if target_day == event_start_day:
                selected.append(event)
        elif event_start_day <= target_day < event_end_day:
            selected.append(event)
    return sorted(selected, key=lambda e: e.start)


def build_month_grid(
    events: Iterable[CalendarEvent],
    year: int,
    month: int,
    hidden_calendars: Collection[int] = (),
) -> MonthGrid:
    """Compute the month view layout.

    Args:
        events: Aggregated events
        year: Calendar year
        month: 1-based month
        hidden_calendars: Source indexes to leave out

    Returns:
        MonthGrid with week rows, visible lanes and per-day inline events
    """
    visible = _visible(events, hidden_calendars)
    first_day_offset = js_weekday(datetime(year, month, 1))
    total_days = days_in_month(year, month - 1)
    week_count = math.ceil((first_day_offset + total_days) / 7)

    segments_by_week: dict[int, list[MultiDaySegment]] = {}
    for segment in build_multi_day_segments(visible, year, month, first_day_offset):
        segments_by_week.setdefault(segment.week_index, []).append(segment)

    weeks = []
    for week_index in range(week_count):
        days: list[Optional[int]] = []
        for col in range(7):
            day = week_index * 7 + col - first_day_offset + 1
            days.append(day if 1 <= day <= total_days else None)

        lanes = build_week_lanes(segments_by_week.get(week_index, []))
        hidden = sum(len(lane) for lane in lanes[MAX_VISIBLE_LANES:])
        weeks.append(
            MonthWeek(
                week_index=week_index,
                days=days,
                lanes=lanes[:MAX_VISIBLE_LANES],
                hidden_segment_count=hidden,
            )
        )

    cells = {}
    for day in range(1, total_days + 1):
        day_events = events_for_day(visible, datetime(year, month, day))
        cells[day] = DayCell(
            day=day, events=day_events, scrollable=len(day_events) > MAX_INLINE_EVENTS
        )

    logger.debug(
        "Month grid %04d-%02d: %d weeks, %d visible events",
        year,
        month,
        week_count,
        len(visible),
    )
    return MonthGrid(
        year=year,
        month=month,
        first_day_offset=first_day_offset,
        days_in_month=total_days,
        weeks=weeks,
        cells=cells,
    )


# Timeline


def events_for_date(
    events: Iterable[CalendarEvent], day: datetime, hidden_calendars: Collection[int] = ()
) -> list[CalendarEvent]:
    """Events overlapping ``[day 00:00, next day 00:00)``, sorted by start."""
    day_start = start_of_day(day)
    next_day = add_days(day_start, 1)
    selected = [
        e
        for e in _visible(events, hidden_calendars)
        if e.start < next_day and e.end > day_start
    ]
    return sorted(selected, key=lambda e: e.start)


def timeline_position(event: CalendarEvent, day: datetime) -> TimelinePosition:
    """Vertical position of an event on the day's hour scale.

    The event is clamped to the day; minutes are counted from local midnight
    (seconds ignored).
    """
    day_start = start_of_day(day)
    day_end = datetime.combine(day_start.date(), _END_OF_DAY)
    display_start = max(event.start, day_start)
    display_end = min(event.end, day_end)

    start_minutes = display_start.hour * 60 + display_start.minute
    end_minutes = display_end.hour * 60 + display_end.minute
    duration = end_minutes - start_minutes

    return TimelinePosition(
        top=start_minutes / 60 * HOUR_HEIGHT_PX,
        height=max(duration / 60 * HOUR_HEIGHT_PX, MIN_EVENT_HEIGHT_PX),
        start_minutes=start_minutes,
        end_minutes=end_minutes,
    )


def _overlaps(a: TimelinePosition, b: TimelinePosition) -> bool:
    return a.start_minutes < b.end_minutes and b.start_minutes < a.end_minutes


def layout_events_in_columns(
    events: Iterable[CalendarEvent], day: datetime
) -> list[TimelinePlacement]:
    """Assign timed events to side-by-side columns so none overlap in a column.

    Args:
        events: Timed events of one day
        day: The day being laid out

    Returns:
        Placements ordered by start minute then duration (longer first)
    """
    positioned = [(event, timeline_position(event, day)) for event in events]
    if not positioned:
        return []
    positioned.sort(key=lambda item: (item[1].start_minutes, -item[1].duration_minutes))

    columns: list[list[TimelinePosition]] = []
    assigned: list[int] = []
    for _, position in positioned:
        for col_index, column in enumerate(columns):
            if not any(_overlaps(other, position) for other in column):
                column.append(position)
                assigned.append(col_index)
                break
        else:
            columns.append([position])
            assigned.append(len(columns) - 1)

    total = len(columns)
    return [
        TimelinePlacement(event=event, position=position, column=column, total_columns=total)
        for (event, position), column in zip(positioned, assigned)
    ]


def layout_day_timeline(
    events: Iterable[CalendarEvent], day: datetime, hidden_calendars: Collection[int] = ()
) -> TimelineDay:
    """Build the timeline of a single day: all-day row plus packed timed events."""
    day_start = start_of_day(day)
    day_events = events_for_date(events, day_start, hidden_calendars)
    all_day = [e for e in day_events if is_all_day_event(e)]
    timed = [e for e in day_events if not is_all_day_event(e)]
    return TimelineDay(
        date=day_start,
        all_day_events=all_day,
        placements=layout_events_in_columns(timed, day_start),
    )


def week_days(anchor: datetime) -> list[datetime]:
    """The seven days, Sunday to Saturday, of the week containing ``anchor``."""
    week_start = start_of_day(anchor) - timedelta(days=js_weekday(anchor))
    return [add_days(week_start, i) for i in range(7)]


def build_week_timeline(
    events: Iterable[CalendarEvent], anchor: datetime, hidden_calendars: Collection[int] = ()
) -> list[TimelineDay]:
    """Build the timelines of the week containing ``anchor``."""
    event_list = list(events)
    return [layout_day_timeline(event_list, day, hidden_calendars) for day in week_days(anchor)]
