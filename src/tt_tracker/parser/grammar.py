"""Parser turning tokenized log lines into raw entries."""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional

from tt_tracker.errors import ParseError, ParseErrorCode
from tt_tracker.models.entry import (
    CONTROL_SENTINELS,
    GrammarResult,
    ParseWarning,
    RawEntry,
)
from tt_tracker.models.session import SessionState, unique_tags
from tt_tracker.parser.duration import parse_duration
from tt_tracker.parser.tokenizer import Token, TokenizedLine, TokenKind, tokenize_text

logger = logging.getLogger(__name__)

DEFAULT_LARGE_GAP_HOURS = 8

INLINE_TIMESTAMP_HINT = re.compile(r"^(\d{1,2}:\d{2}|\d{4}-\d{2}-\d{2})")
INLINE_MARKER_CHARS = ("@", "+", "~")


def _set_once(fields: Dict, key: str, value, token: Token, line_number: int):
    if key in fields:
        raise ParseError(
            f"Only one {token.kind.value.replace('_', ' ')} is allowed",
            line_number,
            ParseErrorCode.UNEXPECTED_CHARACTER,
        )
    fields[key] = value


def _minutes(token: Token, line_number: int, code: ParseErrorCode, label: str) -> int:
    try:
        return parse_duration(token.value)
    except ParseError as e:
        raise ParseError(f"Invalid {label}: {e.message}", line_number, code) from e


def _on_description(fields, token, line_number):
    fields["description"] = token.value


def _on_project(fields, token, line_number):
    _set_once(fields, "project", token.value, token, line_number)


def _on_tag(fields, token, line_number):
    fields.setdefault("tags", []).append(token.value)


def _on_estimate(fields, token, line_number):
    minutes = _minutes(token, line_number, ParseErrorCode.INVALID_ESTIMATE_FORMAT, "estimate")
    _set_once(fields, "estimate_minutes", minutes, token, line_number)


def _on_explicit_duration(fields, token, line_number):
    minutes = _minutes(token, line_number, ParseErrorCode.INVALID_DURATION_FORMAT, "duration")
    _set_once(fields, "explicit_duration_minutes", minutes, token, line_number)


def _on_remark(fields, token, line_number):
    fields["remark"] = token.value


def _on_resume_marker(fields, token, line_number):
    fields["resume_marker"] = token.value


def _on_control_marker(fields, token, line_number):
    fields["control_marker"] = token.value
    fields["description"] = CONTROL_SENTINELS[token.value]


def _on_state_suffix(fields, token, line_number):
    fields["state_suffix"] = SessionState(token.value)


TOKEN_HANDLERS: Dict[TokenKind, Callable] = {
    TokenKind.DESCRIPTION: _on_description,
    TokenKind.PROJECT: _on_project,
    TokenKind.TAG: _on_tag,
    TokenKind.ESTIMATE: _on_estimate,
    TokenKind.EXPLICIT_DURATION: _on_explicit_duration,
    TokenKind.REMARK: _on_remark,
    TokenKind.RESUME_MARKER: _on_resume_marker,
    TokenKind.CONTROL_MARKER: _on_control_marker,
    TokenKind.STATE_SUFFIX: _on_state_suffix,
}

# Timestamps are read by LogParser.parse_timestamp, which needs the date context
assert set(TOKEN_HANDLERS) == set(TokenKind) - {TokenKind.TIMESTAMP}, (
    "every token kind but TIMESTAMP needs a handler"
)


class LogParser:
    """Converts tokenized log lines into :class:`RawEntry` objects.

    Keeps a date context: a timestamp with a date sets it, time-only
    timestamps use it. When a time-only timestamp goes backward the date
    rolls over to the next day and a warning is recorded.
    """

    def __init__(
        self,
        initial_date: Optional[date] = None,
        large_gap_hours: int = DEFAULT_LARGE_GAP_HOURS,
    ):
        if isinstance(initial_date, datetime):
            initial_date = initial_date.date()
        self.current_date = initial_date or date.today()
        self.large_gap_hours = large_gap_hours
        self.last_timestamp: Optional[datetime] = None
        self.entries: List[RawEntry] = []
        self.errors: List[ParseError] = []
        self.warnings: List[ParseWarning] = []

    def _parse_clock(self, text: str, value: str, line_number: int) -> time:
        parts = [int(p) for p in text.split(":")]
        hours, minutes = parts[0], parts[1]
        seconds = parts[2] if len(parts) > 2 else 0
        if hours > 23 or minutes > 59 or seconds > 59:
            raise ParseError(
                f'Invalid time values: "{value}"',
                line_number,
                ParseErrorCode.INVALID_TIMESTAMP,
            )
        return time(hours, minutes, seconds)

    def parse_timestamp(self, value: str, line_number: int) -> datetime:
        """Turn a timestamp token into a datetime using the date context."""
        pieces = value.split()
        if len(pieces) == 2:
            try:
                day = datetime.strptime(pieces[0], "%Y-%m-%d").date()
            except ValueError as e:
                raise ParseError(
                    f'Invalid timestamp: "{value}"',
                    line_number,
                    ParseErrorCode.INVALID_TIMESTAMP,
                ) from e
            timestamp = datetime.combine(day, self._parse_clock(pieces[1], value, line_number))
            self.current_date = day
            self.last_timestamp = timestamp
            return timestamp

        timestamp = datetime.combine(
            self.current_date, self._parse_clock(value, value, line_number)
        )

        if self.last_timestamp and timestamp < self.last_timestamp:
            self.current_date += timedelta(days=1)
            timestamp += timedelta(days=1)
            self.warnings.append(
                ParseWarning(
                    line=line_number,
                    message=f"Time went backward ({value}), assuming next day",
                )
            )

        if self.last_timestamp:
            gap_hours = int((timestamp - self.last_timestamp).total_seconds() // 3600)
            if gap_hours > self.large_gap_hours:
                self.warnings.append(
                    ParseWarning(
                        line=line_number,
                        message=f"Large time gap detected ({gap_hours} hours)",
                    )
                )

        self.last_timestamp = timestamp
        return timestamp

    def parse_line(self, tokenized: TokenizedLine) -> RawEntry:
        """Build a raw entry from one tokenized line."""
        line_number = tokenized.line_number
        timestamp_token = tokenized.first(TokenKind.TIMESTAMP)
        if timestamp_token is None:
            raise ParseError(
                "Missing timestamp", line_number, ParseErrorCode.MISSING_TIMESTAMP
            )

        fields: Dict = {}
        for token in tokenized.tokens:
            if token.kind != TokenKind.TIMESTAMP:
                TOKEN_HANDLERS[token.kind](fields, token, line_number)

        timestamp = self.parse_timestamp(timestamp_token.value, line_number)
        tags = unique_tags(fields.pop("tags", []))

        if "control_marker" in fields:
            return RawEntry(
                line_index=line_number - 1,
                line_number=line_number,
                indent_depth=tokenized.indent_depth,
                timestamp=timestamp,
                description=fields["description"],
                control_marker=fields["control_marker"],
                remark=fields.get("remark"),
            )

        if "resume_marker" not in fields and "description" not in fields:
            if not tags:
                raise ParseError(
                    "Missing description or tags",
                    line_number,
                    ParseErrorCode.MISSING_DESCRIPTION,
                )
            fields["description"] = tags[0]

        return RawEntry(
            line_index=line_number - 1,
            line_number=line_number,
            indent_depth=tokenized.indent_depth,
            timestamp=timestamp,
            tags=tags,
            **fields,
        )

    def parse(self, text: str) -> GrammarResult:
        """Parse log file content, collecting every error and warning."""
        tokenized_lines, token_errors = tokenize_text(text)
        self.errors.extend(token_errors)

        for tokenized in tokenized_lines:
            if tokenized is None:
                continue
            try:
                self.entries.append(self.parse_line(tokenized))
            except ParseError as e:
                self.errors.append(e)

        self.errors.sort(key=lambda e: e.line or 0)
        logger.debug(
            "Parsed %d entries with %d errors and %d warnings",
            len(self.entries),
            len(self.errors),
            len(self.warnings),
        )
        return GrammarResult(self.entries, self.errors, self.warnings)


@dataclass
class InlineInput:
    """Values taken from the free text given to a live command."""

    description: Optional[str]
    timestamp: Optional[datetime] = None
    project: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    estimate_minutes: Optional[int] = None
    explicit_duration_minutes: Optional[int] = None
    remark: Optional[str] = None
    resume_marker: Optional[str] = None
    parsed_as_notation: bool = False


def parse_inline(text: str, now: Optional[datetime] = None) -> InlineInput:
    """Read command-line text as log notation when it looks like it.

    Anything that does not parse cleanly (``123 Main Street analysis``,
    ``99:99 Invalid time``) is taken as a plain description.
    """
    now = now or datetime.now()
    text = text.strip()
    plain = InlineInput(description=text)

    has_timestamp = bool(INLINE_TIMESTAMP_HINT.match(text))
    has_markers = any(char in text for char in INLINE_MARKER_CHARS)
    if not (has_timestamp or has_markers):
        return plain

    parser = LogParser(initial_date=now.date())
    result = parser.parse(text if has_timestamp else f"00:00 {text}")
    if result.errors or len(result.entries) != 1:
        logger.debug("Treating %r as plain description", text)
        return plain

    entry = result.entries[0]
    if entry.is_control_marker:
        return plain

    timestamp = None
    if has_timestamp:
        timestamp = entry.timestamp
        explicit_date = bool(re.match(r"^\d{4}-\d{2}-\d{2}", text))
        if not explicit_date and timestamp > now + timedelta(minutes=1):
            timestamp -= timedelta(days=1)

    return InlineInput(
        description=entry.description,
        timestamp=timestamp,
        project=entry.project,
        tags=list(entry.tags),
        estimate_minutes=entry.estimate_minutes,
        explicit_duration_minutes=entry.explicit_duration_minutes,
        remark=entry.remark,
        resume_marker=entry.resume_marker,
        parsed_as_notation=True,
    )
