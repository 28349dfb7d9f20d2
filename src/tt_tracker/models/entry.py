"""Entry models produced while parsing log notation."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, model_validator

from tt_tracker.errors import ParseError
from tt_tracker.models.session import SessionState

# Control marker keyword -> reserved placeholder description
CONTROL_SENTINELS = {
    "end": "__END__",
    "pause": "__PAUSE__",
    "abandon": "__ABANDON__",
}

CONTROL_STATES = {
    "end": SessionState.COMPLETED,
    "pause": SessionState.PAUSED,
    "abandon": SessionState.ABANDONED,
}


class RawEntry(BaseModel):
    """One parsed, non-blank, non-comment log line."""

    line_index: int
    line_number: int
    indent_depth: int = 0
    timestamp: datetime
    description: Optional[str] = None
    resume_marker: Optional[str] = None
    control_marker: Optional[str] = None
    project: Optional[str] = None
    tags: List[str] = []
    estimate_minutes: Optional[int] = None
    explicit_duration_minutes: Optional[int] = None
    remark: Optional[str] = None
    state_suffix: Optional[SessionState] = None

    @property
    def is_control_marker(self) -> bool:
        return self.control_marker is not None

    @property
    def is_top_level(self) -> bool:
        return self.indent_depth == 0

    @property
    def is_tags_only(self) -> bool:
        """True when the description was taken from the entry's own tags."""
        return self.description is not None and self.description in self.tags


class LogEntry(RawEntry):
    """A raw entry with its end time, parent and state resolved."""

    end_time: Optional[datetime] = None
    parent_line_index: Optional[int] = None
    state: SessionState = SessionState.WORKING
    continues_line_index: Optional[int] = None
    continues_session_id: Optional[int] = None

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time is not None and self.end_time <= self.timestamp:
            raise ValueError(
                f"end time {self.end_time} is not after start {self.timestamp}"
            )
        return self

    @property
    def is_continuation(self) -> bool:
        return (
            self.continues_line_index is not None
            or self.continues_session_id is not None
        )


class ParseWarning(BaseModel):
    """A non-fatal problem found while parsing or resolving entries."""

    line: Optional[int] = None
    message: str

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"Line {self.line}: {self.message}"


@dataclass
class GrammarResult:
    entries: List[RawEntry] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)


@dataclass
class ParseResult:
    """Result of parsing a whole log file."""

    entries: List[LogEntry] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
