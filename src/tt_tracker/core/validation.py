"""Time parsing and temporal checks for live commands.

Every validator takes the active session explicitly and returns the time the
command should use. ``now`` defaults to the current time so tests can pin it.
"""

import re
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from tt_tracker.core.overlap import AdjustResult, OverlapValidator
from tt_tracker.errors import (
    InvalidTimeFormat,
    ParseError,
    TimeBeforeStart,
    TimeInFuture,
)
from tt_tracker.models.session import Session
from tt_tracker.parser.duration import parse_duration

RELATIVE_TIME = re.compile(r"^-(\d+[hm].*)$")
TIME_ONLY = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")

DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
)
TIME_FORMATS = ("%H:%M:%S", "%H:%M")

FUTURE_GRACE = timedelta(minutes=1)


def _try_formats(text: str, formats: Tuple[str, ...]) -> Optional[datetime]:
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_at_time(text: str, now: Optional[datetime] = None) -> datetime:
    """Parse an ``--at`` value.

    Accepts ``15:51`` (today, or yesterday when today's would be more than a
    minute ahead), ``2025-12-29 15:51``, ``2025-12-29T15:51`` and relative
    ``-30m``, ``-2h``, ``-1h30m``.
    """
    now = now or datetime.now()
    value = text.strip()

    relative = RELATIVE_TIME.match(value)
    if relative:
        try:
            return now - timedelta(minutes=parse_duration(relative.group(1)))
        except ParseError as e:
            raise InvalidTimeFormat(
                f'Invalid relative time format: "{text}". '
                'Use formats like "-30m", "-2h", "-1h30m"'
            ) from e

    if TIME_ONLY.match(value):
        clock = _try_formats(value, TIME_FORMATS)
        if clock is not None:
            parsed = datetime.combine(now.date(), clock.time())
            if parsed > now + FUTURE_GRACE:
                parsed -= timedelta(days=1)
            return parsed

    parsed = _try_formats(value, DATETIME_FORMATS)
    if parsed is not None:
        return parsed

    raise InvalidTimeFormat(
        f'Unable to parse time: "{text}". '
        'Use formats like "15:51", "2025-12-29 15:51", or "-30m"'
    )


def resolve_time(at: Union[str, datetime, None], now: Optional[datetime] = None) -> datetime:
    """``at`` may be text for :func:`parse_at_time` or an already parsed time."""
    now = now or datetime.now()
    if isinstance(at, datetime):
        return at
    return parse_at_time(at, now) if at else now


def validate_not_future(time: datetime, now: Optional[datetime] = None) -> None:
    if time > (now or datetime.now()):
        raise TimeInFuture(time)


def validate_time_order(start_time: datetime, time: datetime) -> None:
    if time <= start_time:
        raise TimeBeforeStart(start_time, time)


def validate_start_time(
    at: Optional[str],
    validator: OverlapValidator,
    now: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> AdjustResult:
    """Time for a new top-level session, shifted past small overlaps."""
    now = now or datetime.now()
    start = resolve_time(at, now)
    validate_not_future(start, now)
    result = validator.validate_and_adjust(start, end)
    validate_not_future(result.accepted_start, now)
    return result


def validate_interrupt_time(
    at: Optional[str],
    active_session: Session,
    validator: OverlapValidator,
    now: Optional[datetime] = None,
) -> AdjustResult:
    """Time for an interruption of ``active_session``.

    The interrupted task's top-level ancestor is left out of the overlap
    check since the interruption lies inside it.
    """
    now = now or datetime.now()
    start = resolve_time(at, now)
    validate_not_future(start, now)
    validate_time_order(active_session.start_time, start)

    ancestor = validator.store.get_top_level_ancestor(active_session)
    result = validator.validate_and_adjust(start, None, exclude_session_id=ancestor.id)
    validate_not_future(result.accepted_start, now)
    validate_time_order(active_session.start_time, result.accepted_start)
    return result


def _validate_end(
    at: Optional[str], active_session: Session, now: Optional[datetime]
) -> datetime:
    now = now or datetime.now()
    time = resolve_time(at, now)
    validate_not_future(time, now)
    validate_time_order(active_session.start_time, time)
    return time


def validate_stop_time(at, active_session: Session, now=None) -> datetime:
    return _validate_end(at, active_session, now)


def validate_pause_time(at, active_session: Session, now=None) -> datetime:
    return _validate_end(at, active_session, now)


def validate_resume_time(at, active_session: Session, now=None) -> datetime:
    """Time at which the interruption ``active_session`` ends."""
    return _validate_end(at, active_session, now)


def validate_abandon_time(at, active_session: Session, now=None) -> datetime:
    return _validate_end(at, active_session, now)
