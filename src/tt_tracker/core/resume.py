"""Resolution of ``@prev``, ``@N`` and ``@resume`` markers.

A resume marker names an earlier task instead of describing a new one. Only
the description is copied from the referent; project, tags and estimate are
not inherited. The resolved entry links to the root of the referent's
continuation chain, never to an intermediate link.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from tt_tracker.errors import ParseError, ParseErrorCode
from tt_tracker.models.entry import LogEntry, ParseWarning
from tt_tracker.models.session import Session, SessionState

logger = logging.getLogger(__name__)

UNMATCHED_RESUME_DESCRIPTION = "@resume"


@dataclass
class ResumeTarget:
    """Chain root a resume marker resolved to.

    ``description`` is None while the root is itself an unresolved
    ``@resume`` waiting for the store pass.
    """

    description: Optional[str]
    root_line_index: Optional[int] = None
    root_session_id: Optional[int] = None


def _chain_key(entry: LogEntry) -> int:
    return entry.line_index if entry.continues_line_index is None else entry.continues_line_index


def _matches(candidate_description, candidate_project, candidate_tags, entry) -> bool:
    """Compare the fields a qualified ``@resume`` specified."""
    if entry.description is not None and candidate_description != entry.description:
        return False
    if entry.project is not None and candidate_project != entry.project:
        return False
    if entry.tags and set(candidate_tags) != set(entry.tags):
        return False
    return True



class BufferContext:
    """Looks up referents among earlier entries of the same file."""

    def _target(self, referent: LogEntry) -> ResumeTarget:
        return ResumeTarget(
            description=referent.description,
            root_line_index=_chain_key(referent),
        )

    def _top_level(self, entry: LogEntry, resolved: Sequence[LogEntry]) -> List[LogEntry]:
        return [
            e
            for e in resolved
            if e.line_index < entry.line_index
            and e.parent_line_index is None
            and e.indent_depth == 0
            and not e.is_control_marker
        ]

    def nth_top_level(self, n, entry, resolved) -> Optional[ResumeTarget]:
        candidates = self._top_level(entry, resolved)
        if 1 <= n <= len(candidates):
            return self._target(candidates[n - 1])
        return None

    def previous_top_level(self, entry, resolved) -> Optional[ResumeTarget]:
        for candidate in reversed(self._top_level(entry, resolved)):
            if not candidate.is_tags_only:
                return self._target(candidate)
        return None

    def paused_match(self, entry, resolved) -> Optional[ResumeTarget]:
        """Latest paused link of a chain that was not continued since."""
        continued = set()
        for candidate in reversed(self._top_level(entry, resolved)):
            key = _chain_key(candidate)
            if key in continued:
                continue
            continued.add(key)
            if candidate.state == SessionState.PAUSED and _matches(
                candidate.description, candidate.project, candidate.tags, entry
            ):
                return self._target(candidate)
        return None


class StoreContext:
    """Looks up referents among stored sessions.

    ``@N`` counts top-level sessions started earlier on the entry's day.
    """

    def __init__(self, store):
        self.store = store

    def _target(self, referent: Session) -> ResumeTarget:
        return ResumeTarget(
            description=referent.description,
            root_session_id=referent.chain_root_id,
        )

    def _top_level(self, entry: LogEntry) -> List[Session]:
        return [
            s
            for s in self.store.top_level_sessions_on(entry.timestamp.date())
            if s.start_time < entry.timestamp
        ]

    def nth_top_level(self, n, entry, resolved) -> Optional[ResumeTarget]:
        candidates = self._top_level(entry)
        if 1 <= n <= len(candidates):
            return self._target(candidates[n - 1])
        return None

    def previous_top_level(self, entry, resolved) -> Optional[ResumeTarget]:
        candidates = [
            s
            for s in self.store.list_sessions(end=entry.timestamp)
            if s.parent_session_id is None and s.description not in s.tags
        ]
        return self._target(candidates[-1]) if candidates else None

    def paused_match(self, entry, resolved) -> Optional[ResumeTarget]:
        session = self.store.find_paused_session_to_resume(
            description=entry.description,
            project=entry.project,
            tags=entry.tags or None,
            before=entry.timestamp,
        )
        return self._target(session) if session else None


class ResumeResolver:
    """Applies a lookup context to every entry carrying a resume marker.

    ``defer_unmatched`` leaves unmatched ``@resume`` entries untouched so a
    later pass with another context can try them; entries that point at
    such an entry get their description from :func:`link_deferred_references`.
    """

    def __init__(self, context, defer_unmatched: bool = False):
        self.context = context
        self.defer_unmatched = defer_unmatched
        self.errors: List[ParseError] = []
        self.warnings: List[ParseWarning] = []

    def _lookup(self, entry: LogEntry, resolved: Sequence[LogEntry]):
        marker = entry.resume_marker
        if marker == "prev":
            target = self.context.previous_top_level(entry, resolved)
            if target is None:
                raise ParseError(
                    "No previous task to resume",
                    entry.line_number,
                    ParseErrorCode.RESUME_TARGET_NOT_FOUND,
                )
            return target
        if marker == "resume":
            return self.context.paused_match(entry, resolved)

        target = self.context.nth_top_level(int(marker), entry, resolved)
        if target is None:
            raise ParseError(
                f"Task @{marker} not found",
                entry.line_number,
                ParseErrorCode.RESUME_TARGET_NOT_FOUND,
            )
        return target

    def _unmatched(self, entry: LogEntry) -> LogEntry:
        self.warnings.append(
            ParseWarning(
                line=entry.line_number,
                message="No paused task matches @resume, recording a new task",
            )
        )
        if entry.description is None:
            return entry.model_copy(update={"description": UNMATCHED_RESUME_DESCRIPTION})
        return entry

    def resolve(self, entries: Sequence[LogEntry]) -> List[LogEntry]:
        resolved: List[LogEntry] = []

        for entry in entries:
            if entry.resume_marker is None or entry.is_continuation:
                resolved.append(entry)
                continue

            try:
                target = self._lookup(entry, resolved)
            except ParseError as e:
                self.errors.append(e)
                resolved.append(entry)
                continue

            if target is None:
                resolved.append(entry if self.defer_unmatched else self._unmatched(entry))
                continue

            updates = {
                "description": target.description,
                "continues_line_index": target.root_line_index,
                "continues_session_id": target.root_session_id,
            }
            if entry.estimate_minutes:
                updates["estimate_minutes"] = None
                self.warnings.append(
                    ParseWarning(
                        line=entry.line_number,
                        message="Estimate ignored: only the first task of a chain keeps one",
                    )
                )
            resolved.append(entry.model_copy(update=updates))

        return resolved


def link_deferred_references(entries: Sequence[LogEntry]) -> List[LogEntry]:
    """Fill in entries whose chain root was a deferred ``@resume``.

    Run after the store pass: the root then has a description, and when it
    continues a stored session the link moves to that session's chain.
    """
    by_line = {e.line_index: e for e in entries}
    linked = []
    for entry in entries:
        if entry.description is None and entry.continues_line_index is not None:
            root = by_line[entry.continues_line_index]
            updates = {"description": root.description}
            if root.continues_session_id is not None:
                updates["continues_line_index"] = None
                updates["continues_session_id"] = root.continues_session_id
            entry = entry.model_copy(update=updates)
            logger.debug("Line %d linked through a deferred @resume", entry.line_number)
        linked.append(entry)
    return linked
