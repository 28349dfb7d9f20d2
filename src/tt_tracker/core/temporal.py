"""End-time inference and interruption nesting for parsed entries.

Every pass here is keyed by ``line_index``, the entry's position in the
original file. Control markers (``@end``, ``@pause``, ``@abandon``) take part
in end-time inference and close open interruptions, and are only dropped by
:func:`filter_markers` once resolution is complete.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from tt_tracker.errors import ParseError, ParseErrorCode
from tt_tracker.models.entry import CONTROL_STATES, LogEntry, ParseWarning, RawEntry
from tt_tracker.models.session import SessionState

logger = logging.getLogger(__name__)


def find_closing_entry(entries: Sequence[RawEntry], position: int) -> Optional[RawEntry]:
    """Find the next entry at the same or a shallower depth.

    Deeper entries in between are interruptions of this one and do not end it.
    """
    depth = entries[position].indent_depth
    for later in entries[position + 1 :]:
        if later.indent_depth <= depth:
            return later
    return None


def build_parent_map(
    entries: Sequence[RawEntry], warnings: Optional[List[ParseWarning]] = None
) -> Dict[int, int]:
    """Map each entry's line index to the line index of its parent.

    The parent is the nearest preceding task with a smaller indentation.
    Control markers close deeper entries but never become parents.
    """
    parents: Dict[int, int] = {}
    stack: List[RawEntry] = []

    for entry in entries:
        while stack and stack[-1].indent_depth >= entry.indent_depth:
            stack.pop()

        if entry.is_control_marker:
            continue

        if stack:
            parents[entry.line_index] = stack[-1].line_index
        elif entry.indent_depth > 0 and warnings is not None:
            warnings.append(
                ParseWarning(
                    line=entry.line_number,
                    message="Indented entry has no parent task, treating it as top-level",
                )
            )

        stack.append(entry)

    return parents


class TemporalResolver:
    """Resolves end times, parents and states of raw entries."""

    def __init__(self):
        self.errors: List[ParseError] = []
        self.warnings: List[ParseWarning] = []

    def _end_time(self, entries: Sequence[RawEntry], position: int):
        entry = entries[position]
        if entry.explicit_duration_minutes:
            return entry.timestamp + timedelta(minutes=entry.explicit_duration_minutes), None

        closing = find_closing_entry(entries, position)
        if closing is None:
            return None, None

        if closing.timestamp <= entry.timestamp:
            self.errors.append(
                ParseError(
                    f'"{entry.description}" ends at {closing.timestamp:%H:%M} '
                    "which is not after its start",
                    entry.line_number,
                    ParseErrorCode.NON_POSITIVE_DURATION,
                )
            )
            return None, closing
        return closing.timestamp, closing

    def resolve(self, entries: Sequence[RawEntry]) -> List[LogEntry]:
        """Resolve entries in file order; the output keeps that order."""
        entries = sorted(entries, key=lambda e: e.line_index)
        parents = build_parent_map(entries, self.warnings)

        resolved: List[LogEntry] = []
        for position, entry in enumerate(entries):
            if entry.is_control_marker:
                resolved.append(LogEntry(**entry.model_dump()))
                continue

            end_time, closing = self._end_time(entries, position)

            state = None
            if entry.state_suffix:
                state = entry.state_suffix
            elif (
                closing is not None
                and closing.is_control_marker
                and closing.indent_depth == entry.indent_depth
                and not entry.explicit_duration_minutes
            ):
                state = CONTROL_STATES[closing.control_marker]
            elif end_time is not None:
                state = SessionState.COMPLETED

            resolved.append(
                LogEntry(
                    **entry.model_dump(),
                    end_time=end_time,
                    parent_line_index=parents.get(entry.line_index),
                    state=state or SessionState.WORKING,
                )
            )

        # An open task with an open interruption is paused, not working
        open_parents = {
            e.parent_line_index
            for e in resolved
            if e.end_time is None and e.parent_line_index is not None
        }
        for index, entry in enumerate(resolved):
            if (
                entry.line_index in open_parents
                and entry.end_time is None
                and entry.state == SessionState.WORKING
            ):
                resolved[index] = entry.model_copy(update={"state": SessionState.PAUSED})

        logger.debug("Resolved %d entries, %d interruptions", len(resolved), len(parents))
        return resolved


def resolve(entries: Sequence[RawEntry]) -> List[LogEntry]:
    """Resolve end times and parents; raises the first temporal error."""
    resolver = TemporalResolver()
    resolved = resolver.resolve(entries)
    if resolver.errors:
        raise resolver.errors[0]
    return resolved


def filter_markers(entries: Sequence[LogEntry]) -> List[LogEntry]:
    """Drop control marker placeholders after resolution."""
    return [entry for entry in entries if not entry.is_control_marker]


def top_level_entries(entries: Sequence[LogEntry]) -> List[LogEntry]:
    return [
        e for e in entries if e.parent_line_index is None and not e.is_control_marker
    ]
