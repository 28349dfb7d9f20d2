"""Live tracking commands and the session state machine."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

from tt_tracker.config import TTConfig
from tt_tracker.core import validation
from tt_tracker.core.chains import ChainSummary, incomplete_chains, summarize_chain
from tt_tracker.core.overlap import OverlapValidator
from tt_tracker.core.resume import ResumeResolver, StoreContext
from tt_tracker.errors import (
    AlreadyTracking,
    CurrentTaskNotInterruption,
    InterruptionInProgress,
    InvalidStateTransition,
    NoActiveInterruption,
    NoActiveSession,
    ParseError,
    ParseErrorCode,
    ResumeTargetNotFound,
    SessionNotFound,
    TimeBeforeStart,
    ValidationError,
)
from tt_tracker.models.entry import LogEntry
from tt_tracker.models.session import Session, SessionState
from tt_tracker.parser.duration import parse_duration
from tt_tracker.parser.grammar import InlineInput, parse_inline

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "description",
    "project",
    "tags",
    "estimate_minutes",
    "remark",
    "start_time",
    "end_time",
    "state",
}


@dataclass
class TrackResult:
    """Outcome of a command: the session it acted on plus side effects."""

    session: Session
    previous: Optional[Session] = None
    continued_from: Optional[Session] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class StatusReport:
    active: Optional[Session]
    # Outermost first, ending with the active session's parent
    ancestors: List[Session] = field(default_factory=list)
    chain: List[Session] = field(default_factory=list)
    summary: Optional[ChainSummary] = None

    @property
    def in_interruption(self) -> bool:
        return bool(self.active and self.active.is_interruption)


def split_tags(tags: Union[str, List[str], None]) -> List[str]:
    """Accept ``"a,b"`` or a list, dropping empty pieces."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [tag.strip().lstrip("+") for tag in tags if tag.strip()]


class TimeTracker:
    """Runs tracking commands against a session store.

    ``clock`` returns the current time; tests pass a fixed one.
    """

    def __init__(
        self,
        store,
        config: Optional[TTConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config or TTConfig()
        self.clock = clock or datetime.now
        self.validator = OverlapValidator(store, self.config.overlap_tolerance_seconds)

    # Helpers

    def _require_active(self, message: str) -> Session:
        active = self.store.get_active()
        if active is None:
            raise NoActiveSession(message)
        return active

    def _guard_interruption(self, active: Optional[Session], command: str) -> None:
        if active is not None and active.is_interruption:
            raise InterruptionInProgress(
                f'Currently in an interruption "{active.description}". '
                f"Use `tt resume` to end the interruption first, then run `tt {command}`."
            )

    def _transition(self, session: Session, state: SessionState, **changes) -> Session:
        if session.state != state and not session.can_transition_to(state):
            raise InvalidStateTransition(
                f"Cannot change session {session.id} from {session.state.value} "
                f"to {state.value}"
            )
        return self.store.update(session.id, state=state, **changes)

    def _read_input(
        self,
        text: str,
        project: Optional[str],
        tags: Union[str, List[str], None],
        estimate: Optional[str],
    ) -> InlineInput:
        """Combine inline notation with option overrides; options win."""
        now = self.clock()
        parsed = parse_inline(text, now)

        if project:
            parsed.project = project
        option_tags = split_tags(tags)
        if option_tags:
            parsed.tags = option_tags
        if estimate:
            try:
                parsed.estimate_minutes = parse_duration(estimate)
            except ParseError as e:
                raise ParseError(
                    f"Invalid estimate format: {estimate}",
                    code=ParseErrorCode.INVALID_ESTIMATE_FORMAT,
                ) from e

        if parsed.resume_marker is None and not (parsed.description or "").strip():
            raise ParseError(
                "Description cannot be empty", code=ParseErrorCode.MISSING_DESCRIPTION
            )
        return parsed

    def _template_input(self, session_id: int, project, tags, estimate) -> InlineInput:
        """New task copying an earlier session's description, project and tags."""
        template = self.store.get_by_id(session_id)
        if template is None:
            raise SessionNotFound(f"Session {session_id} not found")
        parsed = InlineInput(
            description=template.description,
            project=project or template.project,
            tags=split_tags(tags) or list(template.tags),
            estimate_minutes=template.estimate_minutes,
        )
        if estimate:
            parsed.estimate_minutes = parse_duration(estimate)
        return parsed

    def _input_for(self, text: str, project, tags, estimate) -> InlineInput:
        if text.strip().isdigit():
            return self._template_input(int(text.strip()), project, tags, estimate)
        return self._read_input(text, project, tags, estimate)

    def _link_resume(self, parsed: InlineInput, start: datetime, result: TrackResult) -> dict:
        """Turn a resume marker into continuation fields for the new session."""
        if parsed.resume_marker is None:
            return {}

        entry = LogEntry(
            line_index=0,
            line_number=1,
            timestamp=start,
            description=parsed.description,
            resume_marker=parsed.resume_marker,
            project=parsed.project,
            tags=parsed.tags,
            estimate_minutes=parsed.estimate_minutes,
        )
        resumer = ResumeResolver(StoreContext(self.store), defer_unmatched=True)
        resolved = resumer.resolve([entry])[0]
        if resumer.errors:
            raise ResumeTargetNotFound(resumer.errors[0].message)
        if not resolved.is_continuation:
            raise ResumeTargetNotFound("No paused task matches @resume")

        result.warnings.extend(w.message for w in resumer.warnings)
        result.continued_from = self.store.get_by_id(resolved.continues_session_id)

        return {
            "description": resolved.description,
            "estimate_minutes": resolved.estimate_minutes,
            "continues_session_id": resolved.continues_session_id,
        }

    def _start_session(
        self,
        parsed: InlineInput,
        at: Optional[str],
        require_idle: bool,
        result: TrackResult,
    ) -> Session:
        now = self.clock()
        explicit = at or parsed.timestamp
        if explicit is None and require_idle:
            active = self.store.get_active()
            if active is not None:
                raise AlreadyTracking(
                    f'Already tracking "{active.description}". Stop it first with: tt stop'
                )

        adjusted = validation.validate_start_time(explicit, self.validator, now)
        if adjusted.warning:
            result.warnings.append(adjusted.warning)

        fields = {
            "description": parsed.description,
            "project": parsed.project,
            "tags": parsed.tags,
            "estimate_minutes": parsed.estimate_minutes,
            "remark": parsed.remark,
        }
        fields.update(self._link_resume(parsed, adjusted.accepted_start, result))

        session = self.store.insert(
            Session(start_time=adjusted.accepted_start, state=SessionState.WORKING, **fields)
        )
        logger.debug("Started session %d: %s", session.id, session.description)
        return session

    # Commands

    def start(
        self,
        text: str,
        project: Optional[str] = None,
        tags: Union[str, List[str], None] = None,
        estimate: Optional[str] = None,
        at: Optional[str] = None,
    ) -> TrackResult:
        """Start a new top-level task.

        ``text`` may be log notation (``09:00 Review @proj +code ~1h``,
        ``@prev``, ``@resume Review``) or a session id to use as a template.
        """
        parsed = self._input_for(text, project, tags, estimate)
        result = TrackResult(session=None)
        with self.store.transaction():
            result.session = self._start_session(parsed, at, True, result)
        return result

    def _end_active(
        self,
        state: SessionState,
        at: Optional[str],
        remark: Optional[str],
        message: str,
    ) -> TrackResult:
        active = self._require_active(message)
        end_time = validation.validate_stop_time(at, active, self.clock())
        changes = {"end_time": end_time}
        if remark:
            changes["remark"] = remark

        with self.store.transaction():
            session = self._transition(active, state, **changes)
            parent = None
            if active.is_interruption:
                # Ending an interruption hands control back to its parent
                parent = self.store.get_by_id(active.parent_session_id)
                if parent is not None and parent.state == SessionState.PAUSED:
                    parent = self._transition(parent, SessionState.WORKING)
        return TrackResult(session=session, previous=parent)

    def stop(self, at: Optional[str] = None, remark: Optional[str] = None) -> TrackResult:
        return self._end_active(
            SessionState.COMPLETED, at, remark, "No active task to stop"
        )

    def abandon(self, at: Optional[str] = None, reason: Optional[str] = None) -> TrackResult:
        return self._end_active(
            SessionState.ABANDONED, at, reason, "No active task to abandon"
        )

    def pause(self, at: Optional[str] = None, reason: Optional[str] = None) -> TrackResult:
        active = self._require_active("No active task to pause")
        self._guard_interruption(active, "pause")
        end_time = validation.validate_pause_time(at, active, self.clock())
        changes = {"end_time": end_time}
        if reason:
            changes["remark"] = reason
        return TrackResult(session=self._transition(active, SessionState.PAUSED, **changes))

    def resume(self, at: Optional[str] = None, remark: Optional[str] = None) -> TrackResult:
        """End the current interruption and return to the task it interrupted."""
        active = self.store.get_active()
        if active is None:
            raise NoActiveInterruption(
                "No interruption to resume from. Start one with: tt interrupt"
            )
        if not active.is_interruption:
            raise CurrentTaskNotInterruption(
                "Current task is not an interruption. Use `tt stop` to stop the current task."
            )
        parent = self.store.get_by_id(active.parent_session_id)
        if parent is None:
            raise SessionNotFound(f"Parent session {active.parent_session_id} not found")

        end_time = validation.validate_resume_time(at, active, self.clock())
        changes = {"end_time": end_time}
        if remark:
            changes["remark"] = remark

        with self.store.transaction():
            interruption = self._transition(active, SessionState.COMPLETED, **changes)
            parent = self._transition(parent, SessionState.WORKING)
        return TrackResult(session=parent, previous=interruption)

    def interrupt(
        self,
        text: str,
        project: Optional[str] = None,
        tags: Union[str, List[str], None] = None,
        estimate: Optional[str] = None,
        at: Optional[str] = None,
    ) -> TrackResult:
        """Pause the active task and start an interruption nested inside it."""
        active = self._require_active(
            "No active task to interrupt. Start a task first with: tt start"
        )
        parsed = self._read_input(text, project, tags, estimate)
        if parsed.resume_marker is not None:
            raise ParseError(
                f"An interruption cannot continue a task (@{parsed.resume_marker}); "
                "describe the interruption instead",
                code=ParseErrorCode.MISSING_DESCRIPTION,
            )
        adjusted = validation.validate_interrupt_time(
            at or parsed.timestamp, active, self.validator, self.clock()
        )
        result = TrackResult(session=None, previous=active)
        if adjusted.warning:
            result.warnings.append(adjusted.warning)

        with self.store.transaction():
            result.previous = self._transition(active, SessionState.PAUSED)
            result.session = self.store.insert(
                Session(
                    start_time=adjusted.accepted_start,
                    description=parsed.description,
                    project=parsed.project,
                    tags=parsed.tags,
                    estimate_minutes=parsed.estimate_minutes,
                    remark=parsed.remark,
                    parent_session_id=active.id,
                )
            )
        return result

    def _replace_active(
        self,
        state: SessionState,
        command: str,
        text: str,
        project,
        tags,
        estimate,
        at: Optional[str],
    ) -> TrackResult:
        active = self.store.get_active()
        self._guard_interruption(active, command)
        parsed = self._input_for(text, project, tags, estimate)

        result = TrackResult(session=None)
        with self.store.transaction():
            if active is not None:
                end_time = validation.validate_stop_time(
                    at or parsed.timestamp, active, self.clock()
                )
                result.previous = self._transition(active, state, end_time=end_time)
            result.session = self._start_session(parsed, at, False, result)
        return result

    def next(self, text, project=None, tags=None, estimate=None, at=None) -> TrackResult:
        """Complete the active task and start another."""
        return self._replace_active(
            SessionState.COMPLETED, "next", text, project, tags, estimate, at
        )

    def switch(self, text, project=None, tags=None, estimate=None, at=None) -> TrackResult:
        """Pause the active task and start another."""
        return self._replace_active(
            SessionState.PAUSED, "switch", text, project, tags, estimate, at
        )

    def status(self) -> StatusReport:
        active = self.store.get_active()
        if active is None:
            return StatusReport(active=None)

        ancestors = []
        current = active
        while current.parent_session_id is not None:
            current = self.store.get_by_id(current.parent_session_id)
            if current is None:
                break
            ancestors.insert(0, current)

        chain = []
        summary = None
        if active.continues_session_id is not None:
            chain = self.store.get_continuation_chain(active.chain_root_id)
        if chain or active.estimate_minutes:
            summary = summarize_chain(self.store, active.chain_root_id)
        return StatusReport(active=active, ancestors=ancestors, chain=chain, summary=summary)

    def edit(self, session_id: int, **changes) -> Session:
        """Correct fields of a stored session.

        Time changes of top-level sessions are checked against the others.
        """
        session = self.store.get_by_id(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValueError("No updates provided")

        if changes.get("estimate_minutes") and session.continues_session_id is not None:
            raise ValidationError(
                "Only the first session of a continuation chain can have an estimate"
            )

        start = changes.get("start_time", session.start_time)
        end = changes.get("end_time", session.end_time)
        if end is not None and end <= start:
            raise TimeBeforeStart(start, end)

        if not session.is_interruption and ("start_time" in changes or "end_time" in changes):
            conflict = self.validator.find_overlap(start, end, exclude_session_id=session.id)
            if conflict is not None:
                self.validator.raise_conflict(start, end, conflict)

        return self.store.update(session_id, **changes)

    def delete(self, session_id: int) -> List[int]:
        return self.store.delete(session_id)

    def list_sessions(self, **filters) -> List[Session]:
        return self.store.list_sessions(**filters)

    def find(self, terms: List[str], project=None, tag=None) -> List[Session]:
        return self.store.search(terms, project=project, tag=tag)

    def incomplete(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[ChainSummary]:
        """Chains paused in the range that were never completed or abandoned."""
        return incomplete_chains(self.store, start, end)

    def close_chain(self, session_id: int, state: SessionState) -> Session:
        """Complete or abandon the chain a session belongs to.

        The state is set on the chain's latest link, which must be paused.
        """
        session = self.store.get_by_id(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        latest = self.store.get_latest_link(session.chain_root_id)
        if latest.state != SessionState.PAUSED:
            raise InvalidStateTransition(
                f'Session {latest.id} "{latest.description}" is {latest.state.value}, '
                "only a paused task can be closed"
            )
        with self.store.transaction():
            return self._transition(latest, state)
