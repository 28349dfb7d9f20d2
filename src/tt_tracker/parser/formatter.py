"""Render tokens and sessions back into canonical log notation."""

from datetime import datetime
from typing import Iterable, Optional

from tt_tracker.models.session import Session
from tt_tracker.parser.duration import format_duration
from tt_tracker.parser.tokenizer import Token, TokenizedLine, TokenKind

# Order of token kinds in a canonical line
CANONICAL_ORDER = (
    TokenKind.TIMESTAMP,
    TokenKind.CONTROL_MARKER,
    TokenKind.RESUME_MARKER,
    TokenKind.DESCRIPTION,
    TokenKind.PROJECT,
    TokenKind.TAG,
    TokenKind.ESTIMATE,
    TokenKind.EXPLICIT_DURATION,
    TokenKind.REMARK,
    TokenKind.STATE_SUFFIX,
)

PREFIXES = {
    TokenKind.TIMESTAMP: "",
    TokenKind.CONTROL_MARKER: "@",
    TokenKind.RESUME_MARKER: "@",
    TokenKind.DESCRIPTION: "",
    TokenKind.PROJECT: "@",
    TokenKind.TAG: "+",
    TokenKind.ESTIMATE: "~",
    TokenKind.EXPLICIT_DURATION: "(",
    TokenKind.REMARK: "# ",
    TokenKind.STATE_SUFFIX: "->",
}


def format_token(token: Token) -> str:
    text = f"{PREFIXES[token.kind]}{token.value}"
    if token.kind == TokenKind.EXPLICIT_DURATION:
        text += ")"
    return text


def format_tokens(tokens: Iterable[Token], indent: str = "") -> str:
    """Join tokens in canonical order."""
    tokens = list(tokens)
    parts = []
    for kind in CANONICAL_ORDER:
        parts.extend(format_token(t) for t in tokens if t.kind == kind)
    return indent + " ".join(parts)


def canonical_line(tokenized: TokenizedLine) -> str:
    """Canonical form of a tokenized line, keeping its indentation."""
    indent = tokenized.raw_line[: tokenized.indent_depth]
    return format_tokens(tokenized.tokens, indent)


def format_session(
    session: Session, depth: int = 0, indent_unit: str = "  ", with_date: bool = False
) -> str:
    """Write a stored session as a log notation line."""
    timestamp_format = "%Y-%m-%d %H:%M" if with_date else "%H:%M"
    if session.start_time.second:
        timestamp_format += ":%S"
    parts = [session.start_time.strftime(timestamp_format), session.description]
    if session.project:
        parts.append(f"@{session.project}")
    parts.extend(f"+{tag}" for tag in session.tags)
    if session.estimate_minutes:
        parts.append(f"~{format_duration(session.estimate_minutes)}")
    if session.explicit_duration_minutes:
        parts.append(f"({format_duration(session.explicit_duration_minutes)})")
    if session.remark:
        parts.append(f"# {session.remark}")
    return indent_unit * depth + " ".join(parts)


def format_time(value: Optional[datetime]) -> str:
    return value.strftime("%H:%M") if value else "..."
