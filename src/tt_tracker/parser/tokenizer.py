"""Tokenizer for single lines of log notation.

A line looks like::

    [YYYY-MM-DD ]H:MM[:SS]  (@<N>|@prev|@resume | <description>)  [@project]
        [+tag]*  [~<estimate>]  [(<duration>)]  [# <remark>]  [->state]

Leading whitespace encodes interruption nesting. Lines that are blank or
start with ``#`` are ignored. Each scanner below takes an immutable
:class:`Cursor` and returns a new one, so no position state is shared.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from tt_tracker.errors import ParseError, ParseErrorCode


class TokenKind(str, Enum):
    """Kinds of token a log line can contain."""

    TIMESTAMP = "timestamp"
    DESCRIPTION = "description"
    PROJECT = "project"
    TAG = "tag"
    ESTIMATE = "estimate"
    EXPLICIT_DURATION = "explicit_duration"
    REMARK = "remark"
    RESUME_MARKER = "resume_marker"
    CONTROL_MARKER = "control_marker"
    STATE_SUFFIX = "state_suffix"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    offset: int


@dataclass(frozen=True)
class TokenizedLine:
    """Tokens of one line plus its indentation depth."""

    tokens: Tuple[Token, ...]
    indent_depth: int
    line_number: int
    raw_line: str

    def first(self, kind: TokenKind) -> Optional[Token]:
        return next((t for t in self.tokens if t.kind == kind), None)

    def all(self, kind: TokenKind) -> List[Token]:
        return [t for t in self.tokens if t.kind == kind]


@dataclass(frozen=True)
class Cursor:
    """Read position inside ``source[:end]``."""

    source: str
    pos: int = 0
    end: Optional[int] = None

    @property
    def limit(self) -> int:
        return len(self.source) if self.end is None else self.end

    @property
    def at_end(self) -> bool:
        return self.pos >= self.limit

    @property
    def char(self) -> str:
        return "" if self.at_end else self.source[self.pos]

    @property
    def rest(self) -> str:
        return self.source[self.pos : self.limit]

    @property
    def in_marker_position(self) -> bool:
        """Markers only start at the beginning of text or after whitespace."""
        return self.pos == 0 or self.source[self.pos - 1].isspace()

    def advance(self, count: int = 1) -> "Cursor":
        return replace(self, pos=min(self.pos + count, self.limit))

    def skip_whitespace(self) -> "Cursor":
        pos = self.pos
        while pos < self.limit and self.source[pos].isspace():
            pos += 1
        return replace(self, pos=pos)

    def match(self, pattern: "re.Pattern") -> Optional["re.Match"]:
        return pattern.match(self.source, self.pos, self.limit)


TIMESTAMP_PATTERN = re.compile(r"(?:\d{4}-\d{2}-\d{2}\s+)?\d{1,2}:\d{2}(?::\d{2})?(?=\s|$)")
STATE_SUFFIX_PATTERN = re.compile(r"(?:^|\s)->(paused|completed|abandoned)\s*$")
CONTROL_PATTERN = re.compile(r"@(end|pause|abandon)(?=\s|$)")
RESUME_PATTERN = re.compile(r"@(prev|resume|\d+)(?=\s|$)")
PROJECT_PATTERN = re.compile(r"@([a-zA-Z0-9_-]+)")
TAG_PATTERN = re.compile(r"\+([a-zA-Z0-9_-]+)")
ESTIMATE_PATTERN = re.compile(r"~([0-9hm]+)")
DURATION_PATTERN = re.compile(r"\(([0-9hm]+)\)")
REMARK_PATTERN = re.compile(r"#\s+(.*)", re.DOTALL)

# Marker start character -> (kind, body pattern, error code, error message)
MARKERS = {
    "@": (
        TokenKind.PROJECT,
        PROJECT_PATTERN,
        ParseErrorCode.INVALID_PROJECT_FORMAT,
        "Invalid project format",
    ),
    "+": (
        TokenKind.TAG,
        TAG_PATTERN,
        ParseErrorCode.INVALID_TAG_FORMAT,
        "Invalid tag format",
    ),
    "~": (
        TokenKind.ESTIMATE,
        ESTIMATE_PATTERN,
        ParseErrorCode.INVALID_ESTIMATE_FORMAT,
        "Invalid estimate format",
    ),
    "(": (
        TokenKind.EXPLICIT_DURATION,
        DURATION_PATTERN,
        ParseErrorCode.INVALID_DURATION_FORMAT,
        "Invalid explicit duration format",
    ),
}

# What must follow a marker character for it to end a description
DESCRIPTION_STOPS = {
    "@": re.compile(r"@[a-zA-Z0-9_-]"),
    "+": re.compile(r"\+[a-zA-Z0-9_-]"),
    "~": re.compile(r"~\d"),
    "(": re.compile(r"\(\d"),
    "#": re.compile(r"#\s"),
}


def get_indent_depth(line: str) -> int:
    """Count leading whitespace characters."""
    return len(line) - len(line.lstrip())


def is_comment_line(line: str) -> bool:
    return line.lstrip().startswith("#")


def is_blank_line(line: str) -> bool:
    return not line.strip()


def _scan_timestamp(cursor: Cursor, tokens: List[Token], line_number: int) -> Cursor:
    match = cursor.match(TIMESTAMP_PATTERN)
    if not match:
        raise ParseError(
            "Missing or invalid timestamp",
            line_number,
            ParseErrorCode.MISSING_TIMESTAMP,
        )
    tokens.append(Token(TokenKind.TIMESTAMP, match.group(0), cursor.pos))
    return cursor.advance(len(match.group(0)))


def _scan_remark(cursor: Cursor, tokens: List[Token], line_number: int) -> Cursor:
    match = cursor.match(REMARK_PATTERN)
    if not match:
        raise ParseError(
            "Remark must have a space after #",
            line_number,
            ParseErrorCode.MALFORMED_REMARK,
        )
    tokens.append(Token(TokenKind.REMARK, match.group(1).rstrip(), cursor.pos))
    return replace(cursor, pos=cursor.limit)


def _scan_description(
    cursor: Cursor, tokens: List[Token], line_number: int
) -> Cursor:
    """Consume free text up to the first marker in marker position."""
    start = cursor
    while not cursor.at_end:
        char = cursor.char
        if char in DESCRIPTION_STOPS and cursor.in_marker_position:
            if cursor.match(DESCRIPTION_STOPS[char]):
                break
            if char == "#":
                raise ParseError(
                    "Remark must have a space after #",
                    line_number,
                    ParseErrorCode.MALFORMED_REMARK,
                )
            _, _, code, message = MARKERS[char]
            raise ParseError(message, line_number, code)
        cursor = cursor.advance()

    text = start.source[start.pos : cursor.pos]
    description = text.strip()
    if description:
        offset = start.pos + (len(text) - len(text.lstrip()))
        tokens.append(Token(TokenKind.DESCRIPTION, description, offset))
    return cursor


def _scan_markers(cursor: Cursor, tokens: List[Token], line_number: int) -> Cursor:
    """Consume project, tag, estimate, duration and remark markers."""
    cursor = cursor.skip_whitespace()
    while not cursor.at_end:
        char = cursor.char
        if char == "#":
            return _scan_remark(cursor, tokens, line_number)
        if char not in MARKERS:
            raise ParseError(
                f'Unexpected character: "{char}"',
                line_number,
                ParseErrorCode.UNEXPECTED_CHARACTER,
            )
        kind, pattern, code, message = MARKERS[char]
        match = cursor.match(pattern)
        if not match:
            raise ParseError(message, line_number, code)
        tokens.append(Token(kind, match.group(1), cursor.pos))
        cursor = cursor.advance(len(match.group(0))).skip_whitespace()
    return cursor


def tokenize_line(line: str, line_number: int) -> Optional[TokenizedLine]:
    """Tokenize a single line of a log file.

    Returns ``None`` for blank and comment lines. Raises :class:`ParseError`
    for lines that cannot be tokenized.
    """
    line = line.rstrip("\r\n")
    if is_blank_line(line) or is_comment_line(line):
        return None

    indent_depth = get_indent_depth(line)
    tokens: List[Token] = []

    # The state suffix sits at the very end, after any remark
    suffix_token = None
    end = len(line.rstrip())
    suffix = STATE_SUFFIX_PATTERN.search(line, indent_depth)
    if suffix:
        suffix_token = Token(TokenKind.STATE_SUFFIX, suffix.group(1), suffix.start(1) - 2)
        end = suffix.start()

    cursor = Cursor(line, indent_depth, end)
    cursor = _scan_timestamp(cursor, tokens, line_number).skip_whitespace()

    control = cursor.match(CONTROL_PATTERN)
    resume = cursor.match(RESUME_PATTERN)
    if control:
        tokens.append(Token(TokenKind.CONTROL_MARKER, control.group(1), cursor.pos))
        cursor = cursor.advance(len(control.group(0))).skip_whitespace()
        if not cursor.at_end:
            if cursor.char != "#":
                raise ParseError(
                    f"Only a remark may follow @{control.group(1)}",
                    line_number,
                    ParseErrorCode.UNEXPECTED_CHARACTER,
                )
            cursor = _scan_remark(cursor, tokens, line_number)
    elif resume:
        tokens.append(Token(TokenKind.RESUME_MARKER, resume.group(1), cursor.pos))
        cursor = cursor.advance(len(resume.group(0))).skip_whitespace()
        if resume.group(1) == "resume":
            cursor = _scan_description(cursor, tokens, line_number)
        _scan_markers(cursor, tokens, line_number)
    else:
        cursor = _scan_description(cursor, tokens, line_number)
        _scan_markers(cursor, tokens, line_number)

    if suffix_token:
        tokens.append(suffix_token)

    return TokenizedLine(tuple(tokens), indent_depth, line_number, line)


def tokenize_lines(
    lines: Iterable[str],
) -> Tuple[List[Optional[TokenizedLine]], List[ParseError]]:
    """Tokenize every line, collecting errors instead of stopping.

    The returned list has one slot per input line; ignored and failed lines
    hold ``None`` so indexes stay aligned with the input.
    """
    tokenized: List[Optional[TokenizedLine]] = []
    errors: List[ParseError] = []

    for index, line in enumerate(lines):
        try:
            tokenized.append(tokenize_line(line, index + 1))
        except ParseError as e:
            errors.append(e)
            tokenized.append(None)

    return tokenized, errors


def tokenize_text(text: str) -> Tuple[List[Optional[TokenizedLine]], List[ParseError]]:
    return tokenize_lines(text.split("\n"))
