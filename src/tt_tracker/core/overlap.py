"""Overlap detection between a proposed time range and stored sessions."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from tt_tracker.errors import OverlapsActiveSession, OverlapsExistingSession
from tt_tracker.models.session import Session

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 60


def ranges_overlap(
    a_start: datetime,
    a_end: Optional[datetime],
    b_start: datetime,
    b_end: Optional[datetime],
) -> bool:
    """Half-open ranges overlap iff ``a1 < b2 and b1 < a2``; open ends are infinite."""
    return (b_end is None or a_start < b_end) and (a_end is None or b_start < a_end)


def overlap_seconds(
    a_start: datetime,
    a_end: Optional[datetime],
    b_start: datetime,
    b_end: Optional[datetime],
) -> float:
    """Length of the intersection of two ranges, infinite when both are open."""
    start = max(a_start, b_start)
    ends = [end for end in (a_end, b_end) if end is not None]
    if not ends:
        return float("inf")
    return max((min(ends) - start).total_seconds(), 0.0)


@dataclass
class AdjustResult:
    accepted_start: datetime
    warning: Optional[str] = None
    conflict: Optional[Session] = None

    @property
    def adjusted(self) -> bool:
        return self.warning is not None


class OverlapValidator:
    """Checks proposed ranges against top-level sessions in a store.

    Small overlaps with a closed session (below ``tolerance_seconds``) are
    absorbed by moving the start just past the conflicting session's end.
    """

    def __init__(self, store, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS):
        self.store = store
        self.tolerance_seconds = tolerance_seconds

    def find_overlap(
        self,
        proposed_start: datetime,
        proposed_end: Optional[datetime] = None,
        exclude_session_id: Optional[int] = None,
    ) -> Optional[Session]:
        """Return the session conflicting with the range, active ones first."""
        conflicts = self.store.get_overlapping(
            proposed_start, proposed_end, exclude_session_id
        )
        if not conflicts:
            return None

        open_conflicts = [s for s in conflicts if s.end_time is None]
        if open_conflicts:
            return max(open_conflicts, key=lambda s: s.start_time)
        return max(conflicts, key=lambda s: s.end_time)

    def raise_conflict(self, start, end, conflict: Session):
        """Raise the error matching an open or a closed conflicting session."""
        if conflict.end_time is None:
            raise OverlapsActiveSession(start, conflict)
        raise OverlapsExistingSession(start, end, conflict)

    def validate_and_adjust(
        self,
        proposed_start: datetime,
        proposed_end: Optional[datetime] = None,
        exclude_session_id: Optional[int] = None,
    ) -> AdjustResult:
        """Accept, shift or reject a proposed start time."""
        conflict = self.find_overlap(proposed_start, proposed_end, exclude_session_id)
        if conflict is None:
            return AdjustResult(proposed_start)

        if conflict.end_time is None:
            self.raise_conflict(proposed_start, proposed_end, conflict)

        overlap = overlap_seconds(
            proposed_start, proposed_end, conflict.start_time, conflict.end_time
        )
        if conflict.start_time > proposed_start or overlap >= self.tolerance_seconds:
            self.raise_conflict(proposed_start, proposed_end, conflict)

        adjusted = conflict.end_time + timedelta(seconds=1)
        if proposed_end is not None and adjusted >= proposed_end:
            self.raise_conflict(proposed_start, proposed_end, conflict)

        second = self.find_overlap(adjusted, proposed_end, exclude_session_id)
        if second is not None:
            self.raise_conflict(adjusted, proposed_end, second)

        warning = (
            f"Adjusted start time from {proposed_start:%H:%M:%S} to {adjusted:%H:%M:%S} "
            f'to avoid overlap with "{conflict.description}"'
        )
        logger.debug(warning)
        return AdjustResult(adjusted, warning, conflict)
