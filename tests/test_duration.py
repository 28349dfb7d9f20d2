"""Tests for duration parsing and formatting."""

import pytest

from tt_tracker.errors import ParseError, ParseErrorCode
from tt_tracker.parser.duration import format_duration, parse_duration


@pytest.mark.parametrize(
    "text,minutes",
    [("2h", 120), ("45m", 45), ("1h30m", 90), ("0h5m", 5), (" 3h ", 180)],
)
def test_parse_valid_durations(text, minutes):
    assert parse_duration(text) == minutes


@pytest.mark.parametrize("text", ["", "90m", "1h60m", "0m", "0h", "1.5h", "30", "h", "1m30h"])
def test_parse_invalid_durations(text):
    with pytest.raises(ParseError) as exc_info:
        parse_duration(text)
    assert exc_info.value.code == ParseErrorCode.INVALID_DURATION


def test_minutes_over_an_hour_need_hours():
    with pytest.raises(ParseError, match="less than 60"):
        parse_duration("75m")


def test_format_duration():
    assert format_duration(90) == "1h30m"
    assert format_duration(120) == "2h"
    assert format_duration(45) == "45m"
    assert format_duration(0) == "0m"


def test_format_negative_duration_fails():
    with pytest.raises(ValueError):
        format_duration(-5)
