"""Session storage backed by a JSON file."""

import contextlib
import json
import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import ValidationError as PydanticValidationError

from tt_tracker.core.overlap import ranges_overlap
from tt_tracker.errors import SessionNotFound, StoreError
from tt_tracker.models.session import Session, SessionState

logger = logging.getLogger(__name__)


class SessionStore:
    """Keeps sessions in ``sessions.json`` inside the data directory.

    Without a data directory the store lives in memory only. Writes made
    inside :meth:`transaction` are saved once when the outermost
    transaction exits; a failing transaction discards them.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self.sessions_file = (
            self.data_dir / "sessions.json" if self.data_dir is not None else None
        )
        self._sessions: Optional[List[Session]] = None
        self._transaction_depth = 0
        self._dirty = False

    # Persistence

    @property
    def sessions(self) -> List[Session]:
        if self._sessions is None:
            self._sessions = self._load_sessions()
        return self._sessions

    def _load_sessions(self) -> List[Session]:
        """Load sessions from the sessions file."""
        if self.sessions_file is None or not self.sessions_file.exists():
            return []

        try:
            sessions_data = json.loads(self.sessions_file.read_text())
            return [Session(**data) for data in sessions_data]
        except (json.JSONDecodeError, PydanticValidationError, TypeError) as e:
            raise StoreError(f"Cannot read {self.sessions_file}: {e}") from e

    def _save_sessions(self) -> None:
        """Save sessions to the sessions file."""
        if self.sessions_file is None:
            return

        self.sessions_file.parent.mkdir(parents=True, exist_ok=True)
        sessions_data = [session.model_dump(mode="json") for session in self.sessions]
        tmp_file = self.sessions_file.with_suffix(".json.tmp")
        tmp_file.write_text(json.dumps(sessions_data, indent=2))
        os.replace(tmp_file, self.sessions_file)
        logger.debug("Saved %d sessions to %s", len(sessions_data), self.sessions_file)

    def _changed(self) -> None:
        if self._transaction_depth:
            self._dirty = True
        else:
            self._save_sessions()

    @contextlib.contextmanager
    def transaction(self) -> Iterator["SessionStore"]:
        """Group several writes into one save."""
        snapshot = list(self.sessions) if not self._transaction_depth else None
        self._transaction_depth += 1
        try:
            yield self
        except Exception:
            self._transaction_depth -= 1
            if snapshot is not None:
                # Sessions are replaced on update, never mutated in place
                self._sessions = snapshot
                self._dirty = False
            raise
        self._transaction_depth -= 1
        if not self._transaction_depth and self._dirty:
            self._dirty = False
            self._save_sessions()

    # Writes

    def insert(self, session: Session) -> Session:
        """Store a new session and return it with its assigned id."""
        next_id = max((s.id for s in self.sessions), default=0) + 1
        stored = session.model_copy(update={"id": next_id})
        self.sessions.append(stored)
        self._changed()
        return stored

    def update(self, session_id: int, **changes) -> Session:
        """Apply field changes to a session, validating the result."""
        for index, session in enumerate(self.sessions):
            if session.id == session_id:
                updated = Session.model_validate({**session.model_dump(), **changes})
                self.sessions[index] = updated
                self._changed()
                return updated
        raise SessionNotFound(f"Session {session_id} not found")

    def delete(self, session_id: int) -> List[int]:
        """Delete a session and its interruptions; return the deleted ids."""
        if self.get_by_id(session_id) is None:
            raise SessionNotFound(f"Session {session_id} not found")

        doomed = [session_id] + self.get_descendant_ids(session_id)
        with self.transaction():
            for deleted_id in doomed:
                self._promote_chain_successor(deleted_id)
            self._sessions = [s for s in self.sessions if s.id not in doomed]
            self._changed()
        return doomed

    def _promote_chain_successor(self, root_id: int) -> None:
        """Make the next link of a chain its root before the root goes away."""
        links = [s for s in self.sessions if s.continues_session_id == root_id]
        if not links:
            return
        links.sort(key=lambda s: s.start_time)
        root = self.get_by_id(root_id)
        new_root = links[0]
        self.update(
            new_root.id,
            continues_session_id=None,
            estimate_minutes=root.estimate_minutes if root else None,
        )
        for link in links[1:]:
            self.update(link.id, continues_session_id=new_root.id)

    # Queries

    def get_by_id(self, session_id: int) -> Optional[Session]:
        return next((s for s in self.sessions if s.id == session_id), None)

    def list_sessions(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        project: Optional[str] = None,
        tag: Optional[str] = None,
        state: Optional[SessionState] = None,
    ) -> List[Session]:
        """List sessions ordered by start time, optionally filtered."""
        result = []
        for session in self.sessions:
            if start is not None and session.start_time < start:
                continue
            if end is not None and session.start_time >= end:
                continue
            if project is not None and session.project != project:
                continue
            if tag is not None and tag not in session.tags:
                continue
            if state is not None and session.state != state:
                continue
            result.append(session)
        return sorted(result, key=lambda s: s.start_time)

    def get_active(self) -> Optional[Session]:
        """The session being worked on: working with no end time."""
        active = [s for s in self.sessions if s.is_active]
        return max(active, key=lambda s: s.start_time) if active else None

    def get_children(self, parent_id: int) -> List[Session]:
        children = [s for s in self.sessions if s.parent_session_id == parent_id]
        return sorted(children, key=lambda s: s.start_time)

    def get_descendant_ids(self, session_id: int) -> List[int]:
        descendants = []
        for child in self.get_children(session_id):
            descendants.append(child.id)
            descendants.extend(self.get_descendant_ids(child.id))
        return descendants

    def get_top_level_ancestor(self, session: Session) -> Session:
        seen = set()
        while session.parent_session_id is not None and session.id not in seen:
            seen.add(session.id)
            parent = self.get_by_id(session.parent_session_id)
            if parent is None:
                break
            session = parent
        return session

    def get_overlapping(
        self,
        start: datetime,
        end: Optional[datetime],
        exclude_id: Optional[int] = None,
        top_level_only: bool = True,
    ) -> List[Session]:
        """Sessions whose range intersects ``[start, end)``."""
        return [
            s
            for s in self.sessions
            if s.id != exclude_id
            and not (top_level_only and s.parent_session_id is not None)
            and ranges_overlap(start, end, s.start_time, s.end_time)
        ]

    def get_chain_root(self, session_id: int) -> Optional[Session]:
        session = self.get_by_id(session_id)
        if session is None or session.continues_session_id is None:
            return session
        return self.get_by_id(session.continues_session_id)

    def get_continuation_chain(self, root_id: int) -> List[Session]:
        """Root plus every session continuing it, by start time."""
        chain = [
            s
            for s in self.sessions
            if s.id == root_id or s.continues_session_id == root_id
        ]
        return sorted(chain, key=lambda s: s.start_time)

    def get_latest_link(self, root_id: int) -> Optional[Session]:
        chain = self.get_continuation_chain(root_id)
        return chain[-1] if chain else None

    def is_chain_complete(self, root_id: int) -> bool:
        return not any(
            s.state in (SessionState.WORKING, SessionState.PAUSED)
            for s in self.get_continuation_chain(root_id)
        )

    def find_paused_session_to_resume(
        self,
        description: Optional[str] = None,
        project: Optional[str] = None,
        tags: Optional[List[str]] = None,
        before: Optional[datetime] = None,
    ) -> Optional[Session]:
        """Most recent paused top-level session matching the given fields.

        Fields left as ``None`` are not compared. A paused session that was
        already continued is skipped; its chain carries on from a later link.
        """
        candidates = [
            s
            for s in self.sessions
            if s.state == SessionState.PAUSED
            and s.parent_session_id is None
            and (before is None or s.start_time < before)
            and (description is None or s.description == description)
            and (project is None or s.project == project)
            and (not tags or set(s.tags) == set(tags))
            and self.get_latest_link(s.chain_root_id).id == s.id
        ]
        return max(candidates, key=lambda s: s.start_time) if candidates else None

    def top_level_sessions_on(self, day: date) -> List[Session]:
        sessions = [
            s
            for s in self.sessions
            if s.parent_session_id is None and s.start_time.date() == day
        ]
        return sorted(sessions, key=lambda s: s.start_time)

    def search(
        self,
        terms: List[str],
        project: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[Session]:
        """Case-insensitive substring search on descriptions."""
        lowered = [term.lower() for term in terms]
        return [
            s
            for s in self.list_sessions(project=project, tag=tag)
            if all(term in s.description.lower() for term in lowered)
        ]
