"""Date/time and duration codec for ICS calendar processing - dashcal.

All instants handled by the engine are naive datetimes carrying local
wall-clock fields. UTC values (``...Z``) are converted into the display
timezone on the way in; floating values are taken verbatim.
"""

import calendar
import logging
import math
import os
import re
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000

_ICS_DATE_RE = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})"
    r"(?:T(?P<hour>\d{2})(?P<minute>\d{2})(?P<second>\d{2})?)?$"
)

# Supports P1D, PT2H, PT30M, P1DT2H30M. Weeks, months and years are not supported.
_DURATION_RE = re.compile(r"P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?")


def parse_ics_date(raw: str, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Parse an ICS DATE or DATE-TIME value.

    Args:
        raw: Value such as ``20250615``, ``20250615T140000`` or ``20250615T140000Z``
        tz: Display timezone for converting UTC values (system local when None)

    Returns:
        Naive local datetime, or None if the value is not a recognised shape
    """
    if not raw:
        return None

    value = raw.strip()
    is_utc = value.endswith("Z")
    normalized = value[:-1] if is_utc else value

    match = _ICS_DATE_RE.match(normalized)
    if not match:
        logger.debug("Unrecognised ICS date value: %r", raw)
        return None

    try:
        year = int(match.group("year"))
        month = int(match.group("month"))
        day = int(match.group("day"))
        if match.group("hour") is None:
            # Date-only values are always floating, even with a stray Z
            return datetime(year, month, day)

        hour = int(match.group("hour"))
        minute = int(match.group("minute"))
        second = int(match.group("second") or 0)
        parsed = datetime(year, month, day, hour, minute, second)
    except ValueError:
        logger.debug("Out-of-range ICS date value: %r", raw)
        return None

    if is_utc:
        aware = parsed.replace(tzinfo=UTC)
        local = aware.astimezone(tz) if tz else aware.astimezone()
        return local.replace(tzinfo=None)
    return parsed


def parse_duration_ms(raw: str) -> int:
    """Parse an ICS DURATION value into milliseconds.

    Absent components count as zero; a value that does not match yields 0.
    """
    match = _DURATION_RE.search(raw or "")
    if not match:
        return 0
    days, hours, minutes, seconds = (int(group or 0) for group in match.groups())
    return (((days * 24 + hours) * 60 + minutes) * 60 + seconds) * 1000


def add_days(dt: datetime, days: int) -> datetime:
    """Move by whole calendar days, keeping the wall-clock time."""
    return dt + timedelta(days=days)


def with_time_of(target: datetime, source: datetime) -> datetime:
    """Return ``target`` with the time-of-day of ``source``."""
    return target.replace(
        hour=source.hour,
        minute=source.minute,
        second=source.second,
        microsecond=source.microsecond,
    )


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def days_in_month(year: int, month0: int) -> int:
    """Number of days in a month given as a 0-based index."""
    year, month0 = _normalize_month(year, month0)
    return calendar.monthrange(year, month0 + 1)[1]


def build_overflowing_date(year: int, month0: int, day: int) -> datetime:
    """Build day ``day`` of a 0-based month, rolling out-of-range days over.

    Day 31 of a 30-day month becomes the 1st of the next month, day 0 the
    last day of the previous month; days are never clamped.
    """
    year, month0 = _normalize_month(year, month0)
    return datetime(year, month0 + 1, 1) + timedelta(days=day - 1)


def _normalize_month(year: int, month0: int) -> tuple[int, int]:
    return year + month0 // 12, month0 % 12


def js_weekday(dt: datetime) -> int:
    """Weekday index with Sunday=0 .. Saturday=6."""
    return (dt.weekday() + 1) % 7


def month_index(dt: datetime) -> int:
    """Absolute month number ``year * 12 + month0``."""
    return dt.year * 12 + (dt.month - 1)


def get_nth_weekday_of_month(
    year: int, month0: int, weekday_index: int, ordinal: Optional[int] = None
) -> Optional[datetime]:
    """Find the Nth (or Nth-from-last) weekday of a month.

    Args:
        year: Calendar year
        month0: 0-based month (0=January)
        weekday_index: Sunday=0 .. Saturday=6
        ordinal: 1 for first, 2 for second, -1 for last ...; zero or None means 1

    Returns:
        Midnight of the matching day, or None when the month has no such day
        (a 5th Monday in a month with four Mondays does not wrap around)

    Examples:
        >>> get_nth_weekday_of_month(2025, 10, 0, 2)
        datetime.datetime(2025, 11, 9, 0, 0)
        >>> get_nth_weekday_of_month(2025, 10, 5, -1)
        datetime.datetime(2025, 11, 28, 0, 0)
    """
    if weekday_index < 0 or weekday_index > 6:
        return None
    if not ordinal:
        ordinal = 1

    last_day = days_in_month(year, month0)

    if ordinal > 0:
        first_of_month = datetime(year, month0 + 1, 1)
        first_offset = (weekday_index - js_weekday(first_of_month) + 7) % 7
        day = 1 + first_offset + (ordinal - 1) * 7
    else:
        last_of_month = datetime(year, month0 + 1, last_day)
        last_offset = (js_weekday(last_of_month) - weekday_index + 7) % 7
        day = last_day - last_offset + (ordinal + 1) * 7

    if day < 1 or day > last_day:
        return None
    return datetime(year, month0 + 1, day)


def to_epoch_ms(dt: datetime, tz: Optional[tzinfo] = None) -> int:
    """Epoch milliseconds of a naive local datetime in ``tz`` (system local if None)."""
    if dt.tzinfo is None and tz is not None:
        dt = dt.replace(tzinfo=tz)
    return round(dt.timestamp() * 1000)


def days_spanned(start: datetime, end: datetime) -> int:
    """Whole days covered by an interval, never less than one."""
    span_ms = (end - start) / timedelta(milliseconds=1)
    return max(1, math.ceil(span_ms / MS_PER_DAY))


def resolve_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    """Resolve an IANA timezone name, returning None (system local) when unset or invalid."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to system local time", name)
        return None


def now_local(tz: Optional[tzinfo] = None) -> datetime:
    """Return the current naive local time.

    Can be overridden for testing via the DASHCAL_TEST_TIME environment variable
    (ISO 8601, e.g. "2025-06-10T09:00:00" or "2025-06-10T16:00:00+00:00").
    """
    test_time = os.environ.get("DASHCAL_TEST_TIME")
    if test_time:
        try:
            from dateutil import parser as date_parser

            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                dt = dt.astimezone(tz) if tz else dt.astimezone()
            return dt.replace(tzinfo=None)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse DASHCAL_TEST_TIME=%r: %s", test_time, e)

    if tz is not None:
        return datetime.now(tz).replace(tzinfo=None)
    return datetime.now()
