"""Data models for tt."""

from .entry import LogEntry, ParseResult, ParseWarning, RawEntry
from .session import Session, SessionState

__all__ = [
    "LogEntry",
    "ParseResult",
    "ParseWarning",
    "RawEntry",
    "Session",
    "SessionState",
]
