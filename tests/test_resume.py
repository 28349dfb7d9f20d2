"""Tests for @prev, @N and @resume resolution."""

from datetime import date, datetime

import pytest

from tt_tracker.core.resume import (
    BufferContext,
    ResumeResolver,
    StoreContext,
    link_deferred_references,
)
from tt_tracker.core.store import SessionStore
from tt_tracker.core.temporal import resolve
from tt_tracker.errors import ParseErrorCode
from tt_tracker.models.entry import LogEntry
from tt_tracker.models.session import Session, SessionState
from tt_tracker.parser.grammar import LogParser


def resolved_entries(text):
    result = LogParser(initial_date=date(2025, 1, 6)).parse(text)
    assert not result.errors
    return resolve(result.entries)


def resume_in_buffer(text, defer_unmatched=False):
    resolver = ResumeResolver(BufferContext(), defer_unmatched=defer_unmatched)
    return resolver, resolver.resolve(resolved_entries(text))


def test_resume_copies_only_the_description():
    text = "08:00 Task A @project +code ~2h ->paused\n09:00 Break +break\n09:15 @resume\n10:00 Done"
    resolver, entries = resume_in_buffer(text)

    task_a, _, resumed, _ = entries
    assert resumed.description == "Task A"
    assert resumed.project is None
    assert resumed.tags == []
    assert resumed.estimate_minutes is None
    assert resumed.continues_line_index == task_a.line_index
    assert not resolver.errors


def test_resumed_entry_keeps_its_state():
    text = "08:00 Task A ->paused\n09:00 Other\n09:15 @resume\n10:00 Done"
    _, entries = resume_in_buffer(text)
    assert entries[0].state == SessionState.PAUSED
    assert entries[2].state == SessionState.COMPLETED


def test_resume_skips_chains_continued_since_the_pause():
    text = "08:00 A ->paused\n09:00 @1\n10:00 B\n10:30 @resume\n11:00 Done"
    resolver, entries = resume_in_buffer(text)

    assert entries[1].continues_line_index == 0
    assert entries[3].description == "@resume"
    assert not entries[3].is_continuation
    assert len(resolver.warnings) == 1


def test_resume_picks_the_latest_paused_link():
    text = "08:00 A ->paused\n09:00 B\n09:30 @resume ->paused\n10:00 C\n10:30 @resume\n11:00 Done"
    _, entries = resume_in_buffer(text)

    assert entries[2].continues_line_index == 0
    assert entries[4].description == "A"
    assert entries[4].continues_line_index == 0


def test_numbered_marker():
    _, entries = resume_in_buffer("09:00 A\n10:00 B\n11:00 @1")
    assert entries[2].description == "A"
    assert entries[2].continues_line_index == 0


def test_prev_skips_tags_only_entries():
    _, entries = resume_in_buffer("09:00 Write docs\n10:00 +break\n10:15 @prev")
    assert entries[2].description == "Write docs"
    assert entries[2].continues_line_index == 0


def test_prev_ignores_interruptions():
    _, entries = resume_in_buffer("09:00 Main\n  09:30 Phone call\n10:00 Other\n11:00 @prev")
    assert entries[3].description == "Other"


def test_links_point_at_the_chain_root():
    text = "09:00 A ->paused\n10:00 B\n11:00 @1 ->paused\n12:00 C\n13:00 @3"
    _, entries = resume_in_buffer(text)

    assert entries[2].continues_line_index == 0
    assert entries[4].description == "A"
    assert entries[4].continues_line_index == 0


def test_continuation_drops_its_estimate():
    resolver, entries = resume_in_buffer("09:00 A ~1h\n10:00 B\n11:00 @1 ~30m")

    assert entries[2].estimate_minutes is None
    assert entries[0].estimate_minutes == 60
    assert len(resolver.warnings) == 1


@pytest.mark.parametrize("text", ["09:00 A\n10:00 @5", "09:00 @prev", "09:00 @1"])
def test_unresolvable_markers_are_errors(text):
    resolver, _ = resume_in_buffer(text)
    assert resolver.errors[0].code == ParseErrorCode.RESUME_TARGET_NOT_FOUND


def test_qualified_resume_matches_every_given_field():
    text = (
        "08:00 Task A @p ->paused\n"
        "08:30 Task A @q ->paused\n"
        "09:00 Other\n"
        "09:30 @resume Task A @p"
    )
    _, entries = resume_in_buffer(text)
    assert entries[3].continues_line_index == 0


def test_qualified_resume_without_match_is_a_fresh_entry():
    resolver, entries = resume_in_buffer("08:00 Task A @p ->paused\n09:00 @resume Task A @q")

    assert entries[1].description == "Task A"
    assert not entries[1].is_continuation
    assert len(resolver.warnings) == 1
    assert not resolver.errors


def test_bare_resume_without_match():
    resolver, entries = resume_in_buffer("08:00 Task A\n09:00 @resume")

    assert entries[1].description == "@resume"
    assert not entries[1].is_continuation
    assert len(resolver.warnings) == 1


def test_deferred_resume_is_left_untouched():
    resolver, entries = resume_in_buffer("08:00 Task A\n09:00 @resume", defer_unmatched=True)

    assert entries[1].description is None
    assert entries[1].resume_marker == "resume"
    assert not resolver.warnings


@pytest.fixture
def store():
    store = SessionStore()
    store.insert(
        Session(
            start_time=datetime(2025, 1, 6, 8, 0),
            end_time=datetime(2025, 1, 6, 9, 0),
            description="Write report",
            project="docs",
            tags=["writing"],
            estimate_minutes=120,
            state=SessionState.PAUSED,
        )
    )
    store.insert(
        Session(
            start_time=datetime(2025, 1, 6, 9, 0),
            end_time=datetime(2025, 1, 6, 10, 0),
            description="Code review",
            state=SessionState.COMPLETED,
        )
    )
    return store


def live_entry(marker, description=None, **fields):
    return LogEntry(
        line_index=0,
        line_number=1,
        timestamp=datetime(2025, 1, 6, 11, 0),
        description=description,
        resume_marker=marker,
        **fields,
    )


def test_store_numbered_marker_counts_sessions_of_the_day(store):
    resolver = ResumeResolver(StoreContext(store))
    (entry,) = resolver.resolve([live_entry("2")])

    assert entry.description == "Code review"
    assert entry.continues_session_id == 2


def test_store_prev(store):
    (entry,) = ResumeResolver(StoreContext(store)).resolve([live_entry("prev")])
    assert entry.description == "Code review"


def test_store_resume_finds_paused_session(store):
    resolver = ResumeResolver(StoreContext(store))
    (entry,) = resolver.resolve([live_entry("resume")])

    assert entry.description == "Write report"
    assert entry.continues_session_id == 1
    assert entry.project is None
    assert store.get_by_id(1).state == SessionState.PAUSED


def test_store_qualified_resume_compares_tags_as_sets(store):
    resolver = ResumeResolver(StoreContext(store))
    (entry,) = resolver.resolve([live_entry("resume", "Write report", tags=["writing"])])
    assert entry.continues_session_id == 1

    (miss,) = ResumeResolver(StoreContext(store)).resolve(
        [live_entry("resume", "Write report", project="other")]
    )
    assert not miss.is_continuation


def test_store_links_to_chain_root(store):
    store.insert(
        Session(
            start_time=datetime(2025, 1, 6, 10, 0),
            end_time=datetime(2025, 1, 6, 10, 30),
            description="Write report",
            state=SessionState.PAUSED,
            continues_session_id=1,
        )
    )

    (entry,) = ResumeResolver(StoreContext(store)).resolve([live_entry("resume")])
    assert entry.continues_session_id == 1


def test_store_resume_ignores_finished_chains(store):
    store.insert(
        Session(
            start_time=datetime(2025, 1, 6, 10, 0),
            end_time=datetime(2025, 1, 6, 10, 30),
            description="Write report",
            state=SessionState.COMPLETED,
            continues_session_id=1,
        )
    )

    resolver = ResumeResolver(StoreContext(store))
    (entry,) = resolver.resolve([live_entry("resume")])
    assert not entry.is_continuation
    assert entry.description == "@resume"


def test_reference_to_deferred_resume_waits_for_its_description():
    text = "09:00 @resume\n10:00 @prev\n11:00 @end"
    _, entries = resume_in_buffer(text, defer_unmatched=True)

    assert entries[1].description is None
    assert entries[1].continues_line_index == 0


def test_link_deferred_references():
    entries = [
        live_entry("resume", "Write report").model_copy(update={"continues_session_id": 1}),
        live_entry("prev").model_copy(
            update={
                "line_index": 1,
                "line_number": 2,
                "timestamp": datetime(2025, 1, 6, 12, 0),
                "continues_line_index": 0,
            }
        ),
    ]

    linked = link_deferred_references(entries)
    assert linked[0] is entries[0]
    assert linked[1].description == "Write report"
    assert linked[1].continues_line_index is None
    assert linked[1].continues_session_id == 1
