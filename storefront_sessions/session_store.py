"""
Session Store - In-Memory Session Storage

Holds every live login session keyed by session ID, plus a per-user index
of session IDs. Both structures are only ever changed together, under one
lock, so they cannot drift apart.

Nothing is persisted: a process restart logs everyone out.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Set


class SessionStoreError(RuntimeError):
    """Raised when the primary map and the user index disagree."""


@dataclass
class SessionRecord:
    """One active login."""
    session_id: str
    user_id: str
    email: str
    name: str
    role: str
    login_time: datetime
    last_activity: datetime
    ip_address: str
    user_agent: str
    expires_at: datetime
    refresh_token_expires_at: datetime
    is_active: bool = True

    def copy(self) -> "SessionRecord":
        return replace(self)


class SessionStore:
    """Thread-safe in-memory session storage with a per-user index."""

    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._user_sessions: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def put(self, record: SessionRecord) -> None:
        """Insert or overwrite a record and index it under its user."""
        with self._lock:
            previous = self._sessions.get(record.session_id)
            if previous is not None and previous.user_id != record.user_id:
                self._unindex(previous.user_id, record.session_id)

            self._sessions[record.session_id] = record
            self._user_sessions.setdefault(record.user_id, set()).add(record.session_id)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get the live record for a session ID, or None."""
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[SessionRecord]:
        """Remove a session from both structures. Returns the removed record."""
        with self._lock:
            record = self._sessions.pop(session_id, None)
            if record is None:
                return None

            if session_id not in self._user_sessions.get(record.user_id, ()):
                raise SessionStoreError(
                    f"session {session_id[:8]} missing from index of user {record.user_id}"
                )
            self._unindex(record.user_id, session_id)
            return record

    def _unindex(self, user_id: str, session_id: str) -> None:
        ids = self._user_sessions.get(user_id)
        if ids is None:
            return
        ids.discard(session_id)
        # Empty sets would otherwise pile up for every user who ever logged in
        if not ids:
            del self._user_sessions[user_id]

    def user_session_ids(self, user_id: str) -> List[str]:
        """Snapshot of the session IDs owned by a user."""
        with self._lock:
            return list(self._user_sessions.get(user_id, ()))

    def records(self) -> List[SessionRecord]:
        """Snapshot of all live records (for sweeping and stats)."""
        with self._lock:
            return list(self._sessions.values())

    def user_count(self) -> int:
        """Number of users holding at least one session."""
        with self._lock:
            return len(self._user_sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._user_sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
