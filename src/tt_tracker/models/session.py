"""Session model for tracked work."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, field_validator


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    WORKING = "working"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ABANDONED)


ALLOWED_TRANSITIONS = {
    SessionState.WORKING: {
        SessionState.PAUSED,
        SessionState.COMPLETED,
        SessionState.ABANDONED,
    },
    SessionState.PAUSED: {
        SessionState.WORKING,
        SessionState.COMPLETED,
        SessionState.ABANDONED,
    },
    SessionState.COMPLETED: set(),
    SessionState.ABANDONED: set(),
}


def unique_tags(tags: List[str]) -> List[str]:
    """Drop repeated tags, keeping first occurrences in order."""
    seen = set()
    result = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


class Session(BaseModel):
    """Represents a tracked work session."""

    id: Optional[int] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    description: str
    project: Optional[str] = None
    tags: List[str] = []
    estimate_minutes: Optional[int] = None
    explicit_duration_minutes: Optional[int] = None
    remark: Optional[str] = None
    state: SessionState = SessionState.WORKING
    parent_session_id: Optional[int] = None
    continues_session_id: Optional[int] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: List[str]) -> List[str]:
        return unique_tags(tags)

    @property
    def is_active(self) -> bool:
        """Check if this is the session currently being worked on."""
        return self.state == SessionState.WORKING and self.end_time is None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def is_interruption(self) -> bool:
        return self.parent_session_id is not None

    @property
    def chain_root_id(self) -> Optional[int]:
        """Id of the continuation chain root this session belongs to."""
        return self.continues_session_id or self.id

    @property
    def duration(self) -> Optional[float]:
        """Get session duration in seconds."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def can_transition_to(self, state: SessionState) -> bool:
        return state in ALLOWED_TRANSITIONS[self.state]
