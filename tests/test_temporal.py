"""Tests for end-time inference and interruption nesting."""

from datetime import date, datetime

import pytest

from tt_tracker.core.temporal import (
    TemporalResolver,
    build_parent_map,
    filter_markers,
    resolve,
    top_level_entries,
)
from tt_tracker.errors import ParseError, ParseErrorCode
from tt_tracker.models.session import SessionState
from tt_tracker.parser.grammar import LogParser

EXAMPLE = (
    "2025-12-30 07:02 In, reading emails. @admin\n"
    "  07:31 Planning Churn. @churn +plan (1h12m)\n"
    "  09:57 Walking the dog @break (27m)\n"
    "11:02 Plan the day @admin +plan ~20m"
)


def raw_entries(text, day=date(2025, 1, 6)):
    result = LogParser(initial_date=day).parse(text)
    assert not result.errors
    return result.entries


def at(hour, minute, day=6, month=1, year=2025):
    return datetime(year, month, day, hour, minute)


def test_interruptions_inside_a_session():
    entries = resolve(raw_entries(EXAMPLE))

    assert len(entries) == 4
    emails, planning, walking, plan = entries
    assert planning.parent_line_index == emails.line_index == 0
    assert walking.parent_line_index == 0
    assert plan.parent_line_index is None

    # Children do not end their parent
    assert emails.end_time == datetime(2025, 12, 30, 11, 2)
    assert planning.end_time == datetime(2025, 12, 30, 8, 43)
    assert walking.end_time == datetime(2025, 12, 30, 10, 24)
    assert plan.end_time is None
    assert plan.state == SessionState.WORKING
    assert emails.state == SessionState.COMPLETED


def test_end_time_is_next_entry_at_same_or_lower_depth():
    entries = resolve(raw_entries("09:00 A\n  09:30 B\n  09:45 C\n10:00 D"))
    a, b, c, d = entries

    assert a.end_time == at(10, 0)
    assert b.end_time == at(9, 45)
    assert c.end_time == at(10, 0)
    assert d.end_time is None


def test_explicit_duration_wins():
    a, b = resolve(raw_entries("09:00 A (30m)\n10:00 B"))
    assert a.end_time == at(9, 30)
    assert a.state == SessionState.COMPLETED


def test_control_markers_set_state_and_end():
    entries = resolve(raw_entries("09:00 A\n10:00 @pause\n10:30 B\n11:00 @end\n11:30 C\n12:00 @abandon"))
    kept = filter_markers(entries)

    assert [e.description for e in kept] == ["A", "B", "C"]
    a, b, c = kept
    assert (a.end_time, a.state) == (at(10, 0), SessionState.PAUSED)
    assert (b.end_time, b.state) == (at(11, 0), SessionState.COMPLETED)
    assert (c.end_time, c.state) == (at(12, 0), SessionState.ABANDONED)


def test_state_suffix_overrides_inferred_state():
    a, _ = resolve(raw_entries("09:00 A ->abandoned\n10:00 B"))
    assert a.state == SessionState.ABANDONED
    assert a.end_time == at(10, 0)


def test_open_task_with_open_interruption_is_paused():
    a, b = resolve(raw_entries("09:00 A\n  09:30 B"))
    assert a.end_time is None
    assert a.state == SessionState.PAUSED
    assert b.state == SessionState.WORKING
    assert b.parent_line_index == 0


def test_indented_entry_without_parent_is_top_level():
    resolver = TemporalResolver()
    (entry,) = resolver.resolve(raw_entries("  09:00 A"))

    assert entry.parent_line_index is None
    assert len(resolver.warnings) == 1


def test_end_not_after_start_is_an_error():
    resolver = TemporalResolver()
    entries = resolver.resolve(raw_entries("09:00 A\n09:00 B"))

    assert entries[0].end_time is None
    assert resolver.errors[0].code == ParseErrorCode.NON_POSITIVE_DURATION
    with pytest.raises(ParseError):
        resolve(raw_entries("09:00 A\n09:00 B"))


def test_markers_close_interruptions_but_are_never_parents():
    text = "09:00 A\n  09:10 B\n  09:20 @end\n  09:30 C\n10:00 D"
    entries = resolve(raw_entries(text))
    by_line = {e.line_index: e for e in entries}

    assert by_line[1].end_time == at(9, 20)
    assert by_line[3].parent_line_index == 0
    assert by_line[3].end_time == at(10, 0)


def test_parents_survive_marker_filtering():
    text = "09:00 A\n  09:10 B\n  09:20 @pause\n    09:25 deep\n  09:30 C\n10:00 @end"
    entries = resolve(raw_entries(text))
    kept = filter_markers(entries)
    kept_by_line = {e.line_index: e for e in kept}

    for entry in kept:
        if entry.parent_line_index is not None:
            parent = kept_by_line[entry.parent_line_index]
            assert parent.indent_depth < entry.indent_depth
    assert [e.description for e in top_level_entries(kept)] == ["A"]


def test_parent_map_is_acyclic():
    entries = raw_entries("09:00 A\n  09:10 B\n    09:20 C\n  09:30 D\n10:00 E")
    parents = build_parent_map(entries)

    for child in parents:
        seen = {child}
        current = child
        while current in parents:
            current = parents[current]
            assert current not in seen
            seen.add(current)


def test_inferred_end_times_follow_the_closing_rule():
    text = "08:00 A\n  08:15 B\n    08:20 C\n  08:40 D\n09:00 E (20m)\n09:30 F"
    raw = raw_entries(text)
    resolved = resolve(raw)

    for position, entry in enumerate(resolved):
        if entry.explicit_duration_minutes:
            continue
        later = [e for e in raw[position + 1 :] if e.indent_depth <= entry.indent_depth]
        expected = later[0].timestamp if later else None
        assert entry.end_time == expected
        if entry.end_time is not None:
            assert entry.end_time > entry.timestamp
