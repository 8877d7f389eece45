"""Unit tests for dashcal.dash_ics_parser."""

from datetime import datetime

import pytest

from dashcal.dash_ics_parser import (
    DashICSParser,
    PropertyKind,
    classify_line,
    parse_ics,
    split_logical_lines,
    unescape_text,
)

pytestmark = pytest.mark.unit


class TestContentLines:
    """Tests for unfolding, classification and text unescaping."""

    def test_split_logical_lines_when_folded_then_joined(self) -> None:
        """A line break followed by a space continues the previous line."""
        lines = split_logical_lines("SUMMARY:Weekly planning an\r\n d review\r\nUID:1\r\n")
        assert lines[:2] == ["SUMMARY:Weekly planning and review", "UID:1"]

    def test_classify_line_when_value_date_param_then_date_value(self) -> None:
        """VALUE=DATE marks an all-day property."""
        line = classify_line("DTSTART;VALUE=DATE:20250615")

        assert line.kind == PropertyKind.DTSTART
        assert line.value == "20250615"
        assert line.is_date_value is True

    def test_classify_line_when_quoted_param_contains_colon_then_value_intact(self) -> None:
        """Colons inside quoted parameters do not end the name part."""
        line = classify_line('LOCATION;ALTREP="http://example.com/x":Room 4')

        assert line.kind == PropertyKind.LOCATION
        assert line.value == "Room 4"
        assert line.params["ALTREP"] == "http://example.com/x"

    def test_classify_line_when_value_has_colons_then_split_on_first(self) -> None:
        """Only the first colon separates name and value."""
        line = classify_line("SUMMARY:Review: Q3 plan")
        assert line.value == "Review: Q3 plan"

    def test_classify_line_when_unknown_property_then_unknown_kind(self) -> None:
        """Unrecognised properties are classified as UNKNOWN."""
        assert classify_line("X-WR-CALNAME:Family").kind == PropertyKind.UNKNOWN
        assert classify_line("no colon here").kind == PropertyKind.UNKNOWN

    def test_unescape_text_when_escapes_then_single_pass(self) -> None:
        """Escaped newlines read as comma separators and backslashes collapse once."""
        assert unescape_text("1 Main St\\nSpringfield\\, IL") == "1 Main St, Springfield, IL"
        assert unescape_text("a\\;b") == "a;b"
        assert unescape_text("C:\\\\n") == "C:\\n"


class TestDashICSParser:
    """Tests for VEVENT extraction."""

    def test_parse_ics_content_when_basic_event_then_parsed(self, make_ics) -> None:
        """SUMMARY, DTSTART, DTEND and LOCATION are extracted."""
        ics = make_ics(
            [
                "UID:evt-1",
                "SUMMARY:Dentist",
                "DTSTART:20250610T100000",
                "DTEND:20250610T110000",
                "LOCATION:Suite 200\\, Oak Plaza",
            ]
        )

        result = DashICSParser().parse_ics_content(ics)

        assert result.event_count == 1
        event = result.events[0]
        assert event.title == "Dentist"
        assert event.start == datetime(2025, 6, 10, 10, 0)
        assert event.end == datetime(2025, 6, 10, 11, 0)
        assert event.location == "Suite 200, Oak Plaza"
        assert event.all_day is False
        assert event.is_recurring is False

    def test_parse_ics_content_when_utc_then_converted(self, make_ics, new_york) -> None:
        """UTC values are shown in the display zone; floating values are not shifted."""
        ics = make_ics(
            ["SUMMARY:Utc", "DTSTART:20250610T160000Z", "DTEND:20250610T170000Z"],
            ["SUMMARY:Floating", "DTSTART:20250610T160000", "DTEND:20250610T170000"],
        )

        utc_event, floating_event = DashICSParser(new_york).parse_ics_content(ics).events

        assert utc_event.start == datetime(2025, 6, 10, 12, 0)
        assert floating_event.start == datetime(2025, 6, 10, 16, 0)

    def test_parse_ics_content_when_duration_then_end_derived(self, make_ics) -> None:
        """DURATION supplies the end when DTEND is absent."""
        ics = make_ics(["SUMMARY:Call", "DTSTART:20250610T100000", "DURATION:PT30M"])
        event = parse_ics(ics)[0]
        assert event.end == datetime(2025, 6, 10, 10, 30)

    def test_parse_ics_content_when_all_day_without_end_then_one_day(self, make_ics) -> None:
        """An all-day event without DTEND lasts one day."""
        ics = make_ics(["SUMMARY:Holiday", "DTSTART;VALUE=DATE:20251127"])

        event = parse_ics(ics)[0]

        assert event.all_day is True
        assert event.start == datetime(2025, 11, 27)
        assert event.end == datetime(2025, 11, 28)

    def test_parse_ics_content_when_timed_without_end_then_one_hour(self, make_ics) -> None:
        """A timed event without DTEND or DURATION lasts one hour."""
        ics = make_ics(["SUMMARY:Standup", "DTSTART:20250610T090000"])
        assert parse_ics(ics)[0].end == datetime(2025, 6, 10, 10, 0)

    def test_parse_ics_content_when_tzid_param_then_wall_clock_kept(self, make_ics) -> None:
        """TZID-qualified values are read as wall-clock time."""
        ics = make_ics(
            [
                "SUMMARY:Board meeting",
                'DTSTART;TZID="America/New_York":20250610T090000',
                "DTEND;TZID=America/New_York:20250610T100000",
            ]
        )

        event = parse_ics(ics)[0]

        assert event.start == datetime(2025, 6, 10, 9, 0)
        assert event.end == datetime(2025, 6, 10, 10, 0)

    def test_parse_ics_content_when_required_fields_missing_then_dropped(self, make_ics) -> None:
        """Events without SUMMARY or a parseable DTSTART are dropped."""
        ics = make_ics(
            ["DTSTART:20250610T090000"],
            ["SUMMARY:No start"],
            ["SUMMARY:Bad start", "DTSTART:tomorrow"],
            ["SUMMARY:Kept", "DTSTART:20250610T090000"],
        )

        result = DashICSParser().parse_ics_content(ics)

        assert [e.title for e in result.events] == ["Kept"]
        assert result.total_components == 4
        assert result.dropped_count == 3

    def test_parse_ics_content_when_cancelled_uid_then_all_instances_dropped(
        self, make_ics
    ) -> None:
        """A cancelled VEVENT suppresses every VEVENT sharing its UID, in any order."""
        ics = make_ics(
            ["UID:shared", "SUMMARY:Offsite", "DTSTART:20250610T090000"],
            ["UID:other", "SUMMARY:Kept", "DTSTART:20250611T090000"],
            ["UID:shared", "SUMMARY:Offsite", "DTSTART:20250610T090000", "STATUS:CANCELLED"],
        )

        result = DashICSParser().parse_ics_content(ics)

        assert [e.title for e in result.events] == ["Kept"]
        assert result.cancelled_uids == {"shared"}

    def test_parse_ics_content_when_cancelled_without_uid_then_only_itself(self, make_ics) -> None:
        """A cancelled event with no UID removes only itself."""
        ics = make_ics(
            ["SUMMARY:Gone", "DTSTART:20250610T090000", "STATUS:cancelled"],
            ["SUMMARY:Stays", "DTSTART:20250610T090000"],
        )
        assert [e.title for e in parse_ics(ics)] == ["Stays"]

    def test_parse_ics_content_when_valarm_then_alarm_summary_ignored(self, make_ics) -> None:
        """Properties of nested components never reach the event."""
        ics = make_ics(
            [
                "SUMMARY:Flight",
                "DTSTART:20250610T060000",
                "BEGIN:VALARM",
                "ACTION:DISPLAY",
                "SUMMARY:Reminder",
                "TRIGGER:-PT1H",
                "END:VALARM",
            ]
        )
        assert parse_ics(ics)[0].title == "Flight"

    def test_parse_ics_content_when_rrule_then_recurring_counted(self, make_ics) -> None:
        """RRULE values are kept raw and counted."""
        ics = make_ics(
            ["SUMMARY:Gym", "DTSTART:20250610T070000", "RRULE:FREQ=WEEKLY;BYDAY=TU,TH"],
            ["SUMMARY:Once", "DTSTART:20250610T070000"],
        )

        result = DashICSParser().parse_ics_content(ics)

        assert result.recurring_event_count == 1
        assert result.events[0].rrule == "FREQ=WEEKLY;BYDAY=TU,TH"

    def test_parse_ics_content_when_unterminated_block_then_ignored(self) -> None:
        """A VEVENT without END:VEVENT is not emitted."""
        ics = "BEGIN:VCALENDAR\nBEGIN:VEVENT\nSUMMARY:Half\nDTSTART:20250610T070000\n"
        assert parse_ics(ics) == []

    def test_parse_ics_content_when_empty_then_empty_result(self) -> None:
        """Empty input never raises."""
        result = DashICSParser().parse_ics_content("")
        assert result.events == []
        assert result.total_components == 0
