"""Log file import: parse a whole file and persist it as sessions."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from tt_tracker.core.overlap import ranges_overlap
from tt_tracker.core.resume import (
    BufferContext,
    ResumeResolver,
    StoreContext,
    link_deferred_references,
)
from tt_tracker.core.temporal import TemporalResolver, filter_markers, top_level_entries
from tt_tracker.errors import ImportConflictError
from tt_tracker.models.entry import LogEntry, ParseResult, ParseWarning
from tt_tracker.models.session import Session
from tt_tracker.parser.grammar import DEFAULT_LARGE_GAP_HOURS, LogParser

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    sessions: int = 0
    interruptions: int = 0
    deleted_ids: List[int] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)
    session_ids: Dict[int, int] = field(default_factory=dict)


def parse_file(
    text: str,
    initial_date: Optional[date] = None,
    large_gap_hours: int = DEFAULT_LARGE_GAP_HOURS,
) -> ParseResult:
    """Parse log file content into resolved entries.

    Syntax errors stop the pipeline before end times are inferred, since a
    missing line would shift every later end time.
    """
    grammar = LogParser(initial_date, large_gap_hours).parse(text)
    warnings = list(grammar.warnings)
    if grammar.errors:
        return ParseResult([], grammar.errors, warnings)

    temporal = TemporalResolver()
    entries = temporal.resolve(grammar.entries)
    warnings.extend(temporal.warnings)

    # Unmatched @resume may still match a paused session in the store
    resumer = ResumeResolver(BufferContext(), defer_unmatched=True)
    entries = resumer.resolve(entries)
    warnings.extend(resumer.warnings)

    errors = sorted(temporal.errors + resumer.errors, key=lambda e: e.line or 0)
    warnings.sort(key=lambda w: w.line or 0)
    if errors:
        return ParseResult([], errors, warnings)
    return ParseResult(filter_markers(entries), [], warnings)


def validate_no_self_overlaps(entries: Sequence[LogEntry]) -> List[str]:
    """Describe every pair of top-level entries whose ranges intersect."""
    errors = []
    top_level = top_level_entries(entries)
    for i, first in enumerate(top_level):
        for second in top_level[i + 1 :]:
            if ranges_overlap(
                first.timestamp, first.end_time, second.timestamp, second.end_time
            ):
                errors.append(
                    f'Sessions overlap: "{first.description}" (line {first.line_number}) '
                    f'and "{second.description}" (line {second.line_number})'
                )
    return errors


def find_conflicts(entries: Sequence[LogEntry], store) -> List[Session]:
    """Stored top-level sessions overlapping any imported top-level entry."""
    conflicts: Dict[int, Session] = {}
    for entry in top_level_entries(entries):
        for session in store.get_overlapping(entry.timestamp, entry.end_time):
            conflicts[session.id] = session
    return sorted(conflicts.values(), key=lambda s: s.start_time)


def _to_session(entry: LogEntry, ids: Dict[int, int]) -> Session:
    parent_id = None
    if entry.parent_line_index is not None:
        parent_id = ids[entry.parent_line_index]

    continues_id = entry.continues_session_id
    if entry.continues_line_index is not None:
        continues_id = ids[entry.continues_line_index]

    return Session(
        start_time=entry.timestamp,
        end_time=entry.end_time,
        description=entry.description,
        project=entry.project,
        tags=entry.tags,
        estimate_minutes=entry.estimate_minutes,
        explicit_duration_minutes=entry.explicit_duration_minutes,
        remark=entry.remark,
        state=entry.state,
        parent_session_id=parent_id,
        continues_session_id=continues_id,
    )


def resolve_and_import(
    entries: Sequence[LogEntry], store, overwrite: bool = False
) -> ImportSummary:
    """Persist parsed entries, all or nothing.

    Raises :class:`ImportConflictError` when entries overlap each other, or
    overlap stored sessions and ``overwrite`` is off. With ``overwrite`` the
    conflicting sessions (and their interruptions) are deleted first.
    """
    entries = filter_markers(entries)
    summary = ImportSummary()

    self_overlaps = validate_no_self_overlaps(entries)
    if self_overlaps:
        raise ImportConflictError(
            "Found overlapping sessions in import file", self_overlaps
        )

    conflicts = find_conflicts(entries, store)
    if conflicts and not overwrite:
        raise ImportConflictError(
            "Cannot import: sessions would overlap with existing sessions. "
            "Use --overwrite to replace them.",
            conflicts,
        )

    with store.transaction():
        for session in conflicts:
            summary.deleted_ids.extend(store.delete(session.id))

        resumer = ResumeResolver(StoreContext(store))
        entries = resumer.resolve(entries)
        if resumer.errors:
            raise resumer.errors[0]
        entries = link_deferred_references(entries)
        summary.warnings.extend(resumer.warnings)

        ids = summary.session_ids
        for entry in entries:
            stored = store.insert(_to_session(entry, ids))
            ids[entry.line_index] = stored.id
            if stored.is_interruption:
                summary.interruptions += 1
            else:
                summary.sessions += 1

    logger.debug(
        "Imported %d sessions and %d interruptions, deleted %d",
        summary.sessions,
        summary.interruptions,
        len(summary.deleted_ids),
    )
    return summary
