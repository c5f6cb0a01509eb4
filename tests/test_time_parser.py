"""
Tests for clock string parsing.
"""

import pendulum
import pytest

from parkledger.domain.exceptions import ParseError
from parkledger.domain.time_parser import format_clock_time, parse_clock_time

REFERENCE = pendulum.parse("2024-11-25 15:45:12", tz="Europe/Berlin")


class TestParseClockTime:
    """Tests for parse_clock_time."""

    def test_morning_time(self):
        """A plain AM time keeps its hour."""
        result = parse_clock_time("9:30 AM", REFERENCE)
        assert (result.hour, result.minute, result.second) == (9, 30, 0)

    def test_afternoon_time(self):
        """PM adds twelve hours."""
        result = parse_clock_time("1:05 PM", REFERENCE)
        assert (result.hour, result.minute) == (13, 5)

    def test_twelve_am_is_midnight(self):
        assert parse_clock_time("12:00 AM", REFERENCE).hour == 0

    def test_twelve_pm_is_noon(self):
        assert parse_clock_time("12:00 PM", REFERENCE).hour == 12

    def test_leading_zero_and_lowercase_accepted(self):
        result = parse_clock_time(" 09:07 pm ", REFERENCE)
        assert (result.hour, result.minute) == (21, 7)

    def test_anchored_to_reference_day_and_zone(self):
        """The clock string takes date and timezone from the reference."""
        result = parse_clock_time("8:00 AM", REFERENCE)
        assert result.to_date_string() == "2024-11-25"
        assert result.timezone_name == "Europe/Berlin"
        assert result.microsecond == 0

    @pytest.mark.parametrize(
        "text",
        ["", "9:30", "930 AM", "9:3 AM", "13:00 PM", "0:15 AM", "9:60 AM", "9:30AM", "nine thirty"],
    )
    def test_malformed_input_raises(self, text):
        with pytest.raises(ParseError):
            parse_clock_time(text, REFERENCE)

    def test_distinct_strings_give_distinct_instants(self):
        """Every valid clock string maps to its own minute of the day."""
        seen = set()
        for period in ("AM", "PM"):
            for hour in range(1, 13):
                for minute in (0, 15, 30, 59):
                    seen.add(parse_clock_time(f"{hour}:{minute:02d} {period}", REFERENCE))
        assert len(seen) == 2 * 12 * 4


class TestFormatClockTime:
    """Tests for format_clock_time."""

    def test_formats_without_leading_zero(self):
        moment = pendulum.parse("2024-11-25 09:05", tz="UTC")
        assert format_clock_time(moment) == "9:05 AM"

    def test_midnight_and_noon(self):
        assert format_clock_time(pendulum.parse("2024-11-25 00:10", tz="UTC")) == "12:10 AM"
        assert format_clock_time(pendulum.parse("2024-11-25 12:00", tz="UTC")) == "12:00 PM"

    def test_output_parses_back_to_the_same_minute(self):
        moment = pendulum.parse("2024-11-25 17:42:31", tz="UTC")
        parsed = parse_clock_time(format_clock_time(moment), moment)
        assert parsed == moment.set(second=0, microsecond=0)
