"""Exception hierarchy for the tt time tracker."""

from datetime import datetime
from enum import Enum
from typing import Optional


class TTError(Exception):
    """Base error for all tt failures."""


class ParseErrorCode(str, Enum):
    """Machine-readable reason for a parse failure."""

    MISSING_TIMESTAMP = "MissingTimestamp"
    INVALID_TIMESTAMP = "InvalidTimestamp"
    MISSING_DESCRIPTION = "MissingDescription"
    INVALID_PROJECT_FORMAT = "InvalidProjectFormat"
    INVALID_TAG_FORMAT = "InvalidTagFormat"
    INVALID_ESTIMATE_FORMAT = "InvalidEstimateFormat"
    INVALID_DURATION_FORMAT = "InvalidDurationFormat"
    MALFORMED_REMARK = "MalformedRemark"
    UNEXPECTED_CHARACTER = "UnexpectedCharacter"
    INVALID_DURATION = "InvalidDuration"
    NON_POSITIVE_DURATION = "NonPositiveDuration"
    RESUME_TARGET_NOT_FOUND = "ResumeTargetNotFound"


class ParseError(TTError):
    """A log notation line could not be parsed."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        code: ParseErrorCode = ParseErrorCode.UNEXPECTED_CHARACTER,
    ):
        self.message = message
        self.line = line
        self.code = code
        location = f" at line {line}" if line is not None else ""
        super().__init__(f"{message}{location}")


class StoreError(TTError):
    """The session store could not be read or written."""


class ImportConflictError(TTError):
    """Imported sessions overlap each other or already stored sessions."""

    def __init__(self, message: str, conflicts: Optional[list] = None):
        self.conflicts = conflicts or []
        super().__init__(message)


# Temporal validation


class ValidationError(TTError):
    """A time given to a command violates a temporal constraint."""


class InvalidTimeFormat(ValidationError):
    pass


class TimeInFuture(ValidationError):
    def __init__(self, time: datetime):
        self.time = time
        super().__init__(f"Time cannot be in the future: {time:%Y-%m-%d %H:%M:%S}")


class TimeBeforeStart(ValidationError):
    def __init__(self, start_time: datetime, time: datetime):
        self.start_time = start_time
        self.time = time
        super().__init__(
            f"End time ({time:%Y-%m-%d %H:%M:%S}) must be after start time "
            f"({start_time:%Y-%m-%d %H:%M:%S})"
        )


class OverlapsActiveSession(ValidationError):
    def __init__(self, proposed_start: datetime, session):
        self.proposed_start = proposed_start
        self.session = session
        super().__init__(
            f"Cannot start at {proposed_start:%Y-%m-%d %H:%M:%S} - it would overlap "
            f'with the active session "{session.description}" '
            f"(started {session.start_time:%Y-%m-%d %H:%M:%S}). "
            "Stop or complete the active session first."
        )


class OverlapsExistingSession(ValidationError):
    def __init__(
        self, proposed_start: datetime, proposed_end: Optional[datetime], session
    ):
        self.proposed_start = proposed_start
        self.proposed_end = proposed_end
        self.session = session
        proposed_end_text = (
            f"{proposed_end:%Y-%m-%d %H:%M:%S}" if proposed_end else "open"
        )
        super().__init__(
            f"Range {proposed_start:%Y-%m-%d %H:%M:%S} - {proposed_end_text} overlaps "
            f'session #{session.id} "{session.description}" '
            f"({session.start_time:%Y-%m-%d %H:%M:%S} - "
            f"{session.end_time:%Y-%m-%d %H:%M:%S})"
        )


# Session state


class StateError(TTError):
    """A command cannot run in the current tracking state."""


class NoActiveSession(StateError):
    pass


class NoActiveInterruption(StateError):
    pass


class CurrentTaskNotInterruption(StateError):
    pass


class AlreadyTracking(StateError):
    pass


class InterruptionInProgress(StateError):
    pass


class InvalidStateTransition(StateError):
    pass


class ResumeTargetNotFound(StateError):
    pass


class SessionNotFound(StateError):
    pass
