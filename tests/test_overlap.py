"""Tests for overlap detection and start-time adjustment."""

from datetime import datetime, timedelta

import pytest

from tt_tracker.core.overlap import OverlapValidator, overlap_seconds, ranges_overlap
from tt_tracker.core.store import SessionStore
from tt_tracker.errors import OverlapsActiveSession, OverlapsExistingSession
from tt_tracker.models.session import Session, SessionState


def t(hour, minute, second=0):
    return datetime(2025, 1, 6, hour, minute, second)


def add_session(store, start, end=None, description="Existing", **fields):
    state = SessionState.COMPLETED if end else SessionState.WORKING
    return store.insert(
        Session(start_time=start, end_time=end, description=description, state=state, **fields)
    )


@pytest.fixture
def store():
    return SessionStore()


def test_ranges_overlap():
    assert ranges_overlap(t(9, 0), t(10, 0), t(9, 30), t(11, 0))
    assert not ranges_overlap(t(9, 0), t(10, 0), t(10, 0), t(11, 0))
    assert ranges_overlap(t(9, 0), None, t(12, 0), t(13, 0))
    assert ranges_overlap(t(12, 0), t(13, 0), t(9, 0), None)
    assert not ranges_overlap(t(8, 0), t(9, 0), t(9, 0), None)


def test_overlap_seconds():
    assert overlap_seconds(t(14, 30), None, t(14, 0), t(14, 30, 30)) == 30
    assert overlap_seconds(t(9, 0), None, t(10, 0), None) == float("inf")


def test_small_overlap_is_adjusted(store):
    add_session(store, t(14, 0), t(14, 30, 30), "Previous task")
    result = OverlapValidator(store).validate_and_adjust(t(14, 30))

    assert result.accepted_start == t(14, 30, 31)
    assert result.adjusted
    assert "Adjusted start time from 14:30:00 to 14:30:31" in result.warning
    assert '"Previous task"' in result.warning


def test_start_after_closed_session_is_accepted(store):
    add_session(store, t(14, 0), t(14, 30, 30))
    result = OverlapValidator(store).validate_and_adjust(t(14, 31))

    assert result.accepted_start == t(14, 31)
    assert not result.adjusted


def test_large_overlap_is_rejected(store):
    existing = add_session(store, t(14, 0), t(14, 32))

    with pytest.raises(OverlapsExistingSession) as exc_info:
        OverlapValidator(store).validate_and_adjust(t(14, 30))
    assert exc_info.value.session.id == existing.id


def test_tolerance_boundary(store):
    add_session(store, t(14, 0), t(14, 31))
    validator = OverlapValidator(store, tolerance_seconds=60)

    with pytest.raises(OverlapsExistingSession):
        validator.validate_and_adjust(t(14, 30))

    assert validator.validate_and_adjust(t(14, 30, 1)).accepted_start == t(14, 31, 1)


def test_active_session_always_blocks(store):
    add_session(store, t(9, 0))
    validator = OverlapValidator(store)

    for proposed in (t(8, 0), t(9, 0), t(9, 0, 30), t(17, 0)):
        with pytest.raises(OverlapsActiveSession):
            validator.validate_and_adjust(proposed)


def test_conflict_starting_later_is_rejected(store):
    add_session(store, t(14, 0, 30), t(15, 0))

    with pytest.raises(OverlapsExistingSession):
        OverlapValidator(store).validate_and_adjust(t(14, 0))


def test_closed_range_before_existing_session_is_accepted(store):
    add_session(store, t(14, 0), t(15, 0))
    result = OverlapValidator(store).validate_and_adjust(t(13, 0), t(14, 0))
    assert result.accepted_start == t(13, 0)


def test_later_session_blocks_adjustment(store):
    add_session(store, t(14, 0), t(14, 30, 30), "First")
    add_session(store, t(14, 30, 31), t(15, 0), "Second")

    with pytest.raises(OverlapsExistingSession):
        OverlapValidator(store).validate_and_adjust(t(14, 30))


def test_excluded_session_is_ignored(store):
    active = add_session(store, t(9, 0))
    result = OverlapValidator(store).validate_and_adjust(
        t(10, 0), exclude_session_id=active.id
    )
    assert result.accepted_start == t(10, 0)


def test_interruptions_do_not_count(store):
    parent = add_session(store, t(9, 0), t(12, 0))
    add_session(store, t(10, 0), t(10, 30), parent_session_id=parent.id)
    validator = OverlapValidator(store)

    assert validator.find_overlap(t(12, 0)) is None
    assert validator.find_overlap(t(11, 0), t(11, 30)).id == parent.id


def test_active_conflict_is_preferred(store):
    add_session(store, t(8, 0), t(9, 0))
    active = add_session(store, t(9, 0))
    conflict = OverlapValidator(store).find_overlap(t(8, 30))
    assert conflict.id == active.id


def test_tolerance_from_config(store):
    add_session(store, t(14, 0), t(14, 32))
    validator = OverlapValidator(store, tolerance_seconds=300)
    result = validator.validate_and_adjust(t(14, 30))
    assert result.accepted_start == t(14, 32) + timedelta(seconds=1)


def test_raise_conflict_matches_the_conflict(store):
    closed = add_session(store, t(8, 0), t(9, 0))
    active = add_session(store, t(10, 0))
    validator = OverlapValidator(store)

    with pytest.raises(OverlapsExistingSession) as excinfo:
        validator.raise_conflict(t(8, 30), t(9, 30), closed)
    assert excinfo.value.session.id == closed.id

    with pytest.raises(OverlapsActiveSession):
        validator.raise_conflict(t(10, 30), None, active)
