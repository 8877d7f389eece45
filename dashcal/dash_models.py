"""Data models for ICS calendar ingestion and layout - dashcal."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer


class Frequency(str, Enum):
    """Supported RRULE frequencies."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Weekday(str, Enum):
    """RRULE weekday codes, ordered Sunday first."""

    SU = "SU"
    MO = "MO"
    TU = "TU"
    WE = "WE"
    TH = "TH"
    FR = "FR"
    SA = "SA"

    @property
    def day_index(self) -> int:
        """Weekday index with Sunday=0 .. Saturday=6."""
        return _WEEKDAY_ORDER.index(self)


_WEEKDAY_ORDER = list(Weekday)


class ParsedEvent(BaseModel):
    """One VEVENT before recurrence expansion."""

    title: str = Field(..., description="SUMMARY text")
    start: datetime = Field(..., description="DTSTART as naive local wall-clock time")
    end: datetime = Field(..., description="Resolved end time")
    rrule: Optional[str] = Field(default=None, description="Raw RRULE value")
    all_day: Optional[bool] = Field(default=None, description="VALUE=DATE flag")
    location: Optional[str] = Field(default=None, description="Unescaped LOCATION text")

    @property
    def is_recurring(self) -> bool:
        """Check if the event carries a recurrence rule."""
        return bool(self.rrule)


class ByDayEntry(BaseModel):
    """A BYDAY entry such as ``2SU`` or ``-1FR``."""

    ordinal: Optional[int] = None
    weekday: Weekday

    model_config = ConfigDict(frozen=True)


class RecurrenceRule(BaseModel):
    """Structured form of an RRULE value."""

    freq: Optional[Frequency] = None
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    byday: list[ByDayEntry] = Field(default_factory=list)
    byday_given: bool = False
    bymonth: list[int] = Field(default_factory=list)

    @property
    def is_inert(self) -> bool:
        """A rule without a recognised FREQ does not recur."""
        return self.freq is None


class Occurrence(BaseModel):
    """A concrete instance of an event inside a window."""

    title: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    all_day: bool = False


class CalendarEvent(BaseModel):
    """Aggregated, render-ready event."""

    id: str = Field(..., description="Synthesized unique id")
    title: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    color: str = Field(..., description="Source palette colour")
    calendar_index: int = Field(..., ge=0, description="Index of the configured source")
    days_spanned: int = Field(default=1, ge=1)
    all_day: bool = False

    @field_serializer("start", "end")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()


class ICSParseResult(BaseModel):
    """Result of parsing one ICS document.

    Parsing is best effort, so there is no failure variant: a document that
    yields nothing produces an empty ``events`` list.
    """

    events: list[ParsedEvent] = Field(default_factory=list)
    total_components: int = 0
    event_count: int = 0
    recurring_event_count: int = 0
    dropped_count: int = 0
    cancelled_uids: set[str] = Field(default_factory=set)


class CalendarSourceConfig(BaseModel):
    """Configuration for one ICS calendar source."""

    url: str = Field(..., description="ICS calendar URL")
    name: Optional[str] = Field(default=None, description="Display name override")
    color: Optional[str] = Field(default=None, description="Hex colour override")


# Layout models


class MultiDaySegment(BaseModel):
    """Slice of a spanning event inside one week row of the month grid."""

    id: str
    event_id: str
    title: str
    color: str
    week_index: int
    start_col: int = Field(..., ge=0, le=6)
    span: int = Field(..., ge=1, le=7)

    @property
    def end_col(self) -> int:
        """Last column occupied by the segment."""
        return self.start_col + self.span - 1


class DayCell(BaseModel):
    """Inline (single-day, timed) events of one day cell."""

    day: int
    events: list[CalendarEvent] = Field(default_factory=list)
    scrollable: bool = False


class MonthWeek(BaseModel):
    """One week row of the month grid."""

    week_index: int
    days: list[Optional[int]]
    lanes: list[list[MultiDaySegment]] = Field(default_factory=list)
    hidden_segment_count: int = 0


class MonthGrid(BaseModel):
    """Month view layout."""

    year: int
    month: int
    first_day_offset: int
    days_in_month: int
    weeks: list[MonthWeek] = Field(default_factory=list)
    cells: dict[int, DayCell] = Field(default_factory=dict)


class TimelinePosition(BaseModel):
    """Vertical placement of an event on an hour-scaled day column."""

    top: float
    height: float
    start_minutes: int
    end_minutes: int

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


class TimelinePlacement(BaseModel):
    """Column-packed position of a timed event."""

    event: CalendarEvent
    position: TimelinePosition
    column: int
    total_columns: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def width_percent(self) -> float:
        return 100 / self.total_columns

    @computed_field  # type: ignore[prop-decorator]
    @property
    def left_percent(self) -> float:
        return self.column * self.width_percent


class TimelineDay(BaseModel):
    """Timeline layout of one day."""

    date: datetime
    all_day_events: list[CalendarEvent] = Field(default_factory=list)
    placements: list[TimelinePlacement] = Field(default_factory=list)

    @property
    def total_columns(self) -> int:
        return max((p.total_columns for p in self.placements), default=0)

    @field_serializer("date")
    def serialize_date(self, dt: datetime) -> str:
        """Serialize the day to an ISO date."""
        return dt.date().isoformat()
