"""Best-effort iCalendar (RFC 5545 subset) parser - dashcal.

Content lines are classified into an explicit set of property kinds, each
with its own handler. Anything unrecognised is ignored: the parser never
raises on malformed input and simply drops VEVENT blocks that lack a
SUMMARY or DTSTART.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Callable, Optional

from .dash_datetime_utils import add_days, parse_duration_ms, parse_ics_date
from .dash_models import ICSParseResult, ParsedEvent

logger = logging.getLogger(__name__)

CANCELLED_STATUS = "CANCELLED"

_FOLD_RE = re.compile(r"\r?\n[ \t]")
_LINE_BREAK_RE = re.compile(r"\r?\n")
_PARAM_RE = re.compile(r';([^=;:"]+)=("[^"]*"|[^;:]*)')
_TEXT_ESCAPE_RE = re.compile(r"\\([\\;,nN])")


class PropertyKind(str, Enum):
    """Content line kinds recognised inside a VEVENT."""

    BEGIN_VEVENT = "BEGIN_VEVENT"
    END_VEVENT = "END_VEVENT"
    BEGIN_COMPONENT = "BEGIN_COMPONENT"
    END_COMPONENT = "END_COMPONENT"
    SUMMARY = "SUMMARY"
    DTSTART = "DTSTART"
    DTEND = "DTEND"
    RRULE = "RRULE"
    DURATION = "DURATION"
    LOCATION = "LOCATION"
    UID = "UID"
    STATUS = "STATUS"
    UNKNOWN = "UNKNOWN"


_PROPERTY_KINDS = {
    kind.value: kind
    for kind in (
        PropertyKind.SUMMARY,
        PropertyKind.DTSTART,
        PropertyKind.DTEND,
        PropertyKind.RRULE,
        PropertyKind.DURATION,
        PropertyKind.LOCATION,
        PropertyKind.UID,
        PropertyKind.STATUS,
    )
}


@dataclass
class ContentLine:
    """A classified logical line: ``NAME;PARAM=VALUE:value``."""

    kind: PropertyKind
    name: str
    value: str = ""
    params: dict[str, str] = field(default_factory=dict)

    @property
    def is_date_value(self) -> bool:
        """True when the line carries a ``VALUE=DATE`` parameter."""
        return self.params.get("VALUE", "").upper() == "DATE"


def unfold_ics(text: str) -> str:
    """Undo RFC 5545 line folding (line break followed by space or tab)."""
    return _FOLD_RE.sub("", text)


def split_logical_lines(text: str) -> list[str]:
    """Unfold and split ICS text into trimmed logical lines."""
    return [line.strip() for line in _LINE_BREAK_RE.split(unfold_ics(text))]


def unescape_text(raw: str) -> str:
    """Unescape an ICS TEXT value.

    ``\\n`` becomes ", " so that multi-line addresses read on one line.
    """
    replacements = {"\\": "\\", ";": ";", ",": ",", "n": ", ", "N": ", "}
    return _TEXT_ESCAPE_RE.sub(lambda m: replacements[m.group(1)], raw).strip()


def _split_name_and_value(line: str) -> Optional[tuple[str, str, str]]:
    """Split a content line into (name, raw params, value) honouring quoted params."""
    in_quotes = False
    name_end: Optional[int] = None
    for i, ch in enumerate(line):
        if ch == '"':
            in_quotes = not in_quotes
            continue
        if in_quotes:
            continue
        if ch in ";:" and name_end is None:
            name_end = i
        if ch == ":":
            return line[:name_end], line[name_end:i], line[i + 1 :]
    return None


def classify_line(line: str) -> ContentLine:
    """Classify one logical line into a ContentLine."""
    parts = _split_name_and_value(line)
    if parts is None:
        return ContentLine(kind=PropertyKind.UNKNOWN, name="", value=line)

    raw_name, raw_params, value = parts
    name = raw_name.strip().upper()

    if name in ("BEGIN", "END"):
        is_event = value.strip().upper() == "VEVENT"
        if name == "BEGIN":
            kind = PropertyKind.BEGIN_VEVENT if is_event else PropertyKind.BEGIN_COMPONENT
        else:
            kind = PropertyKind.END_VEVENT if is_event else PropertyKind.END_COMPONENT
        return ContentLine(kind=kind, name=name, value=value.strip().upper())

    params = {
        key.strip().upper(): val.strip('"') for key, val in _PARAM_RE.findall(raw_params)
    }
    kind = _PROPERTY_KINDS.get(name, PropertyKind.UNKNOWN)
    return ContentLine(kind=kind, name=name, value=value, params=params)


@dataclass
class _EventBuilder:
    """Accumulates the properties of one VEVENT block."""

    title: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    rrule: Optional[str] = None
    all_day: Optional[bool] = None
    duration_ms: int = 0
    location: Optional[str] = None
    uid: Optional[str] = None
    status: Optional[str] = None


def _handle_summary(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.title = unescape_text(line.value)


def _handle_dtstart(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.all_day = line.is_date_value
    builder.start = parse_ics_date(line.value, tz)


def _handle_dtend(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    # DTSTART decides the all-day flag when it has already been seen
    if builder.all_day is None:
        builder.all_day = line.is_date_value
    builder.end = parse_ics_date(line.value, tz)


def _handle_rrule(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.rrule = line.value.strip() or None


def _handle_duration(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.duration_ms = parse_duration_ms(line.value.strip())


def _handle_location(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.location = unescape_text(line.value)


def _handle_uid(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.uid = line.value.strip() or None


def _handle_status(builder: _EventBuilder, line: ContentLine, tz: Optional[tzinfo]) -> None:
    builder.status = line.value.strip().upper()


_Handler = Callable[[_EventBuilder, ContentLine, Optional[tzinfo]], None]

PROPERTY_HANDLERS: dict[PropertyKind, _Handler] = {
    PropertyKind.SUMMARY: _handle_summary,
    PropertyKind.DTSTART: _handle_dtstart,
    PropertyKind.DTEND: _handle_dtend,
    PropertyKind.RRULE: _handle_rrule,
    PropertyKind.DURATION: _handle_duration,
    PropertyKind.LOCATION: _handle_location,
    PropertyKind.UID: _handle_uid,
    PropertyKind.STATUS: _handle_status,
}


class DashICSParser:
    """iCalendar VEVENT parser - dashcal version."""

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        """Initialize ICS parser.

        Args:
            tz: Display timezone used to convert UTC date-times (system local when None)
        """
        self.tz = tz

    def parse_ics_content(self, ics_content: str) -> ICSParseResult:
        """Parse ICS text into ParsedEvents.

        Cancellation is resolved across the whole document: a VEVENT with
        STATUS:CANCELLED suppresses every VEVENT sharing its UID, whichever
        block comes first.

        Args:
            ics_content: Full ICS text of one calendar source

        Returns:
            ICSParseResult, possibly with no events
        """
        if not ics_content:
            return ICSParseResult()

        blocks = self._collect_blocks(split_logical_lines(ics_content))
        builders = [self._build(block) for block in blocks]

        cancelled_uids = {
            b.uid for b in builders if b.uid and b.status == CANCELLED_STATUS
        }

        events: list[ParsedEvent] = []
        for builder in builders:
            event = self._to_parsed_event(builder, cancelled_uids)
            if event is not None:
                events.append(event)

        dropped = len(builders) - len(events)
        if dropped:
            logger.debug(
                "Dropped %d of %d VEVENT blocks (missing fields or cancelled)",
                dropped,
                len(builders),
            )

        return ICSParseResult(
            events=events,
            total_components=len(builders),
            event_count=len(events),
            recurring_event_count=sum(1 for e in events if e.is_recurring),
            dropped_count=dropped,
            cancelled_uids=cancelled_uids,
        )

    def _collect_blocks(self, lines: list[str]) -> list[list[ContentLine]]:
        """Group the classified lines of every top-level VEVENT block.

        Properties of nested components (e.g. VALARM) are skipped so that an
        alarm's SUMMARY cannot replace the event title.
        """
        blocks: list[list[ContentLine]] = []
        current: Optional[list[ContentLine]] = None
        nested_depth = 0

        for raw_line in lines:
            if not raw_line:
                continue
            line = classify_line(raw_line)

            if line.kind == PropertyKind.BEGIN_VEVENT:
                current = []
                nested_depth = 0
            elif line.kind == PropertyKind.END_VEVENT:
                if current is not None:
                    blocks.append(current)
                current = None
            elif current is None:
                continue
            elif line.kind == PropertyKind.BEGIN_COMPONENT:
                nested_depth += 1
            elif line.kind == PropertyKind.END_COMPONENT:
                nested_depth = max(0, nested_depth - 1)
            elif nested_depth == 0 and line.kind != PropertyKind.UNKNOWN:
                current.append(line)

        if current is not None:
            logger.debug("Ignoring unterminated VEVENT block at end of document")
        return blocks

    def _build(self, block: list[ContentLine]) -> _EventBuilder:
        builder = _EventBuilder()
        for line in block:
            PROPERTY_HANDLERS[line.kind](builder, line, self.tz)
        return builder

    def _to_parsed_event(
        self, builder: _EventBuilder, cancelled_uids: set[str]
    ) -> Optional[ParsedEvent]:
        if not builder.title or builder.start is None:
            return None
        if builder.uid and builder.uid in cancelled_uids:
            return None
        if builder.status == CANCELLED_STATUS:
            return None

        end = builder.end
        if end is None:
            if builder.duration_ms:
                end = builder.start + timedelta(milliseconds=builder.duration_ms)
            elif builder.all_day:
                end = add_days(builder.start, 1)
            else:
                end = builder.start + timedelta(hours=1)

        return ParsedEvent(
            title=builder.title,
            start=builder.start,
            end=end,
            rrule=builder.rrule,
            all_day=builder.all_day,
            location=builder.location,
        )


def parse_ics(ics_content: str, tz: Optional[tzinfo] = None) -> list[ParsedEvent]:
    """Parse ICS text and return only the events."""
    return DashICSParser(tz).parse_ics_content(ics_content).events
