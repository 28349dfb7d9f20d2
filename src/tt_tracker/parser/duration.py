"""Duration strings such as ``2h``, ``45m`` and ``1h30m``."""

import re

from tt_tracker.errors import ParseError, ParseErrorCode

DURATION_PATTERN = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?$")


def parse_duration(duration: str) -> int:
    """Parse a duration string into whole minutes.

    Accepts ``Nh``, ``Nm`` and ``NhMm``. Minutes must be below 60 (write
    ``1h30m``, not ``90m``) and zero durations are rejected.
    """
    text = (duration or "").strip()
    if not text:
        raise ParseError("Duration cannot be empty", code=ParseErrorCode.INVALID_DURATION)

    match = DURATION_PATTERN.match(text)
    if not match or not (match.group(1) or match.group(2)):
        raise ParseError(
            f'Invalid duration format: "{duration}"',
            code=ParseErrorCode.INVALID_DURATION,
        )

    hours = int(match.group(1)) if match.group(1) else 0
    minutes = int(match.group(2)) if match.group(2) else 0

    if minutes >= 60:
        raise ParseError(
            f'Minutes must be less than 60: "{duration}"',
            code=ParseErrorCode.INVALID_DURATION,
        )

    total = hours * 60 + minutes
    if total == 0:
        raise ParseError(
            f'Duration cannot be zero: "{duration}"',
            code=ParseErrorCode.INVALID_DURATION,
        )
    return total


def format_duration(minutes: int) -> str:
    """Format minutes back into the compact notation, e.g. ``2h30m``."""
    if minutes < 0:
        raise ValueError("Minutes cannot be negative")

    hours, mins = divmod(int(minutes), 60)
    if hours and mins:
        return f"{hours}h{mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"
