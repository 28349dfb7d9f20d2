"""Continuation chain summaries: time spent against the root's estimate."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from tt_tracker.models.session import Session, SessionState


def session_minutes(session: Session) -> int:
    """Gross minutes of a closed session, 0 while it is open.

    An explicit duration wins over the start/end difference.
    """
    if session.end_time is None:
        return 0
    if session.explicit_duration_minutes:
        return session.explicit_duration_minutes
    return int((session.end_time - session.start_time).total_seconds() // 60)


def net_minutes(session: Session, store) -> int:
    """Gross minutes minus time spent in direct interruptions, never negative."""
    gross = session_minutes(session)
    if gross == 0 or session.id is None:
        return gross
    interrupted = sum(session_minutes(child) for child in store.get_children(session.id))
    return max(0, gross - interrupted)


@dataclass
class ChainSummary:
    """Time spent on a chain.

    ``complete`` is true when no link is working or paused; ``closed`` only
    looks at the latest link, which is where the task was left off.
    """

    root: Session
    sessions: List[Session]
    total_minutes: int
    estimate_minutes: Optional[int]
    complete: bool

    @property
    def latest(self) -> Session:
        return self.sessions[-1]

    @property
    def closed(self) -> bool:
        return self.latest.state.is_terminal

    @property
    def remaining_minutes(self) -> Optional[int]:
        if self.estimate_minutes is None:
            return None
        return self.estimate_minutes - self.total_minutes


def summarize_chain(store, root_id: int) -> Optional[ChainSummary]:
    """Net time of every link of a chain, with the estimate its root holds."""
    sessions = store.get_continuation_chain(root_id)
    if not sessions:
        return None
    root = sessions[0]
    return ChainSummary(
        root=root,
        sessions=sessions,
        total_minutes=sum(net_minutes(s, store) for s in sessions),
        estimate_minutes=root.estimate_minutes,
        complete=store.is_chain_complete(root_id),
    )


def incomplete_chains(
    store,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[ChainSummary]:
    """Chains with a paused session in the range whose latest link is unfinished.

    Most recently touched chains come first.
    """
    root_ids = []
    for session in store.list_sessions(start=start, end=end, state=SessionState.PAUSED):
        if session.parent_session_id is None and session.chain_root_id not in root_ids:
            root_ids.append(session.chain_root_id)

    summaries = [summarize_chain(store, root_id) for root_id in root_ids]
    pending = [s for s in summaries if s is not None and not s.closed]
    return sorted(pending, key=lambda s: s.latest.start_time, reverse=True)
