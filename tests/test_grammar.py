"""Tests for LogParser and inline command parsing."""

from datetime import date, datetime

from tt_tracker.errors import ParseErrorCode
from tt_tracker.models.session import SessionState
from tt_tracker.parser.grammar import TOKEN_HANDLERS, LogParser, parse_inline
from tt_tracker.parser.tokenizer import TokenKind

DAY = date(2025, 1, 6)


def parse(text, initial_date=DAY, **kwargs):
    return LogParser(initial_date=initial_date, **kwargs).parse(text)


def test_simple_entry():
    result = parse("09:30 Fix bug")

    assert not result.errors
    assert len(result.entries) == 1
    entry = result.entries[0]
    assert entry.timestamp == datetime(2025, 1, 6, 9, 30)
    assert entry.description == "Fix bug"
    assert entry.project is None
    assert entry.tags == []
    assert entry.estimate_minutes is None


def test_markers_become_fields():
    result = parse("09:00 Review PR @web +code +review ~1h30m (45m) # done early ->completed")
    entry = result.entries[0]

    assert entry.project == "web"
    assert entry.tags == ["code", "review"]
    assert entry.estimate_minutes == 90
    assert entry.explicit_duration_minutes == 45
    assert entry.remark == "done early"
    assert entry.state_suffix == SessionState.COMPLETED


def test_date_prefix_sets_context():
    result = parse("2025-12-30 07:02 Emails\n08:00 Planning")
    assert [e.timestamp for e in result.entries] == [
        datetime(2025, 12, 30, 7, 2),
        datetime(2025, 12, 30, 8, 0),
    ]


def test_seconds_are_kept():
    result = parse("09:00:15 Standup")
    assert result.entries[0].timestamp == datetime(2025, 1, 6, 9, 0, 15)


def test_time_going_backward_rolls_to_next_day():
    result = parse("2025-12-30 23:00 Late work\n00:30 Still going")

    assert result.entries[1].timestamp == datetime(2025, 12, 31, 0, 30)
    assert len(result.warnings) == 1
    assert "Time went backward" in result.warnings[0].message
    assert result.warnings[0].line == 2


def test_large_gap_warns():
    result = parse("08:00 Morning\n18:00 Evening")
    assert any("Large time gap detected (10 hours)" in w.message for w in result.warnings)

    quiet = parse("08:00 Morning\n18:00 Evening", large_gap_hours=12)
    assert not quiet.warnings


def test_out_of_range_times_are_errors():
    for text in ("25:00 Too late", "09:75 Odd minutes", "99:99 Invalid time"):
        result = parse(text)
        assert not result.entries
        assert result.errors[0].code == ParseErrorCode.INVALID_TIMESTAMP


def test_invalid_date_is_an_error():
    result = parse("2025-13-40 09:00 Nope")
    assert result.errors[0].code == ParseErrorCode.INVALID_TIMESTAMP


def test_tags_only_line_uses_first_tag():
    entry = parse("12:00 +lunch +break").entries[0]
    assert entry.description == "lunch"
    assert entry.tags == ["lunch", "break"]
    assert entry.is_tags_only


def test_missing_description():
    result = parse("12:00 @proj")
    assert result.errors[0].code == ParseErrorCode.MISSING_DESCRIPTION


def test_duplicate_project_is_an_error():
    result = parse("09:00 Work @one @two")
    assert result.errors[0].code == ParseErrorCode.UNEXPECTED_CHARACTER


def test_invalid_estimate_value():
    result = parse("09:00 Work ~90m")
    assert result.errors[0].code == ParseErrorCode.INVALID_ESTIMATE_FORMAT

    result = parse("09:00 Work (0m)")
    assert result.errors[0].code == ParseErrorCode.INVALID_DURATION_FORMAT


def test_repeated_tags_are_deduplicated():
    entry = parse("09:00 Work +x +x +y").entries[0]
    assert entry.tags == ["x", "y"]


def test_errors_are_collected_across_lines():
    result = parse("not a line\n09:00 Work ~0m\n10:00 Fine")

    assert [e.line for e in result.errors] == [1, 2]
    assert [e.description for e in result.entries] == ["Fine"]


def test_line_index_follows_the_original_lines():
    entry = parse("# header\n\n09:00 Work").entries[0]
    assert entry.line_index == 2
    assert entry.line_number == 3


def test_control_marker_placeholder():
    result = parse("09:00 Work\n10:00 @end # wrapped up")
    marker = result.entries[1]

    assert marker.control_marker == "end"
    assert marker.description == "__END__"
    assert marker.remark == "wrapped up"
    assert marker.is_control_marker


def test_resume_marker_has_no_description():
    entry = parse("09:00 Work\n10:00 @prev").entries[1]
    assert entry.resume_marker == "prev"
    assert entry.description is None


class TestInlineParsing:
    now = datetime(2025, 1, 6, 10, 0)

    def test_plain_text(self):
        parsed = parse_inline("Write the report", self.now)
        assert parsed.description == "Write the report"
        assert not parsed.parsed_as_notation

    def test_leading_number_is_description(self):
        parsed = parse_inline("123 Main Street analysis", self.now)
        assert parsed.description == "123 Main Street analysis"
        assert parsed.timestamp is None

    def test_invalid_time_is_description(self):
        parsed = parse_inline("99:99 Invalid time", self.now)
        assert parsed.description == "99:99 Invalid time"
        assert parsed.timestamp is None

    def test_markers_without_timestamp(self):
        parsed = parse_inline("Review PR @web +code ~1h", self.now)
        assert parsed.description == "Review PR"
        assert parsed.project == "web"
        assert parsed.tags == ["code"]
        assert parsed.estimate_minutes == 60
        assert parsed.timestamp is None
        assert parsed.parsed_as_notation

    def test_timestamp_today(self):
        parsed = parse_inline("09:30 Standup", self.now)
        assert parsed.timestamp == datetime(2025, 1, 6, 9, 30)
        assert parsed.description == "Standup"

    def test_future_time_means_yesterday(self):
        parsed = parse_inline("23:00 Late fix", self.now)
        assert parsed.timestamp == datetime(2025, 1, 5, 23, 0)

    def test_resume_marker(self):
        parsed = parse_inline("@prev", self.now)
        assert parsed.resume_marker == "prev"
        assert parsed.description is None

    def test_control_marker_is_plain_text(self):
        parsed = parse_inline("10:00 @end", self.now)
        assert parsed.description == "10:00 @end"
        assert not parsed.parsed_as_notation

    def test_email_address(self):
        parsed = parse_inline("Reply to foo@bar.com", self.now)
        assert parsed.description == "Reply to foo@bar.com"


def test_timestamps_have_no_token_handler():
    assert TokenKind.TIMESTAMP not in TOKEN_HANDLERS

    result = parse("2025-01-07 09:30 Fix bug @web")
    assert result.entries[0].timestamp == datetime(2025, 1, 7, 9, 30)
    assert result.entries[0].project == "web"
