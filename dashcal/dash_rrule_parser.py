"""RRULE string parsing for dashcal."""

import logging
import re
from datetime import tzinfo
from typing import Optional

from .dash_datetime_utils import parse_ics_date
from .dash_models import ByDayEntry, Frequency, RecurrenceRule, Weekday

logger = logging.getLogger(__name__)

_BYDAY_RE = re.compile(r"^([+-]?\d+)?(SU|MO|TU|WE|TH|FR|SA)$")


def parse_byday_entry(entry: str) -> Optional[ByDayEntry]:
    """Parse one BYDAY entry such as ``MO``, ``2SU`` or ``-1FR``."""
    match = _BYDAY_RE.match(entry.strip().upper())
    if not match:
        return None
    ordinal = int(match.group(1)) if match.group(1) else None
    return ByDayEntry(ordinal=ordinal, weekday=Weekday(match.group(2)))


def _positive_int(key: str, value: str) -> Optional[int]:
    try:
        parsed = int(value)
    except ValueError:
        logger.debug("Ignoring non-integer RRULE %s=%r", key, value)
        return None
    if parsed <= 0:
        logger.debug("Ignoring non-positive RRULE %s=%r", key, value)
        return None
    return parsed


def parse_rrule(rrule_string: str, tz: Optional[tzinfo] = None) -> RecurrenceRule:
    """Parse an RRULE value into a RecurrenceRule.

    Unknown keys and malformed values are ignored. A missing or unsupported
    FREQ leaves the rule inert (``rule.is_inert``) so the event is treated
    as a single occurrence.

    Args:
        rrule_string: RRULE value, e.g. "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE"
        tz: Display timezone for converting a UTC UNTIL value

    Returns:
        RecurrenceRule, never raises
    """
    rule = RecurrenceRule()
    if not rrule_string:
        return rule

    value_text = rrule_string.strip()
    if value_text.upper().startswith("RRULE:"):
        value_text = value_text[len("RRULE:") :]

    for part in value_text.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().upper()
        value = value.strip()
        if not key or not value:
            continue

        if key == "FREQ":
            try:
                rule.freq = Frequency(value.upper())
            except ValueError:
                logger.debug("Unsupported RRULE FREQ=%s; rule is inert", value)
                rule.freq = None
        elif key == "INTERVAL":
            interval = _positive_int(key, value)
            if interval is not None:
                rule.interval = interval
        elif key == "COUNT":
            rule.count = _positive_int(key, value)
        elif key == "UNTIL":
            rule.until = parse_ics_date(value, tz)
        elif key == "BYDAY":
            entries = [parse_byday_entry(entry) for entry in value.split(",")]
            rule.byday = [entry for entry in entries if entry is not None]
            rule.byday_given = True
        elif key == "BYMONTH":
            months = []
            for raw_month in value.split(","):
                month = _positive_int(key, raw_month.strip())
                if month is not None and month <= 12:
                    months.append(month)
            rule.bymonth = months

    return rule
