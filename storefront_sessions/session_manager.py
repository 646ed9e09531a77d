"""
Session Manager - Login Session Lifecycle

Creates, validates, extends and destroys login sessions on top of the
in-memory SessionStore. Enforces:

- absolute expiry (max_age from login, slid forward on activity)
- idle expiry (idle_timeout since last validated request)
- a per-user cap on concurrent sessions (oldest login is evicted)

One instance is built per application and handed to the request handlers;
there is no module-level session state.
"""

import logging
import secrets
import threading
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .session_store import SessionRecord, SessionStore
from .sweeper import SessionSweeper

logger = logging.getLogger('storefront.sessions')
audit_logger = logging.getLogger('storefront.audit')

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionConfig:
    """Session policy. Every option has a default; replace them as a group."""
    max_age: timedelta = timedelta(hours=24)
    idle_timeout: timedelta = timedelta(hours=2)
    max_concurrent_sessions: int = 5
    extend_on_activity: bool = True
    # Cookie attributes, applied by the HTTP layer
    secure_only: bool = False
    same_site: str = "strict"
    enforce_ip_match: bool = False
    grace_window: Optional[timedelta] = timedelta(hours=1)
    refresh_max_age: timedelta = timedelta(days=7)
    cleanup_interval: float = 300.0

    def __post_init__(self):
        if self.max_concurrent_sessions < 1:
            raise ValueError("max_concurrent_sessions must be at least 1")
        if self.same_site not in ("strict", "lax", "none"):
            raise ValueError("same_site must be strict, lax or none")


@dataclass(frozen=True)
class SessionTicket:
    """What the caller needs to set the session cookie."""
    session_id: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionStats:
    total_sessions: int
    active_sessions: int
    unique_users: int
    expired_sessions: int


def _short(session_id: str) -> str:
    return session_id[:8]


class SessionManager:
    """Lifecycle operations for server-side login sessions."""

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        store: Optional[SessionStore] = None,
        clock: Clock = utc_now,
    ):
        self.config = config or SessionConfig()
        self._store = store if store is not None else SessionStore()
        self._clock = clock
        # Read-then-write operations must not interleave
        self._lock = threading.RLock()
        self._sweeper: Optional[SessionSweeper] = None

    @property
    def store(self) -> SessionStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    def create_session(
        self,
        user_id: str,
        email: str,
        name: str,
        role: str,
        ip_address: str,
        user_agent: str,
    ) -> SessionTicket:
        """Admit a new session for an already-authenticated user."""
        if not user_id:
            raise ValueError("user_id is required")

        with self._lock:
            now = self._clock()
            self._enforce_concurrent_session_limit(user_id)

            record = SessionRecord(
                session_id=self._generate_session_id(),
                user_id=user_id,
                email=email,
                name=name,
                role=role,
                login_time=now,
                last_activity=now,
                ip_address=ip_address,
                user_agent=user_agent,
                expires_at=now + self.config.max_age,
                refresh_token_expires_at=now + self.config.refresh_max_age,
            )
            self._store.put(record)

        audit_logger.info(
            "SESSION_CREATED session=%s user=%s ip=%s expires=%s",
            _short(record.session_id), user_id, ip_address, record.expires_at.isoformat(),
        )
        return SessionTicket(record.session_id, record.expires_at)

    def validate_session(self, session_id: str, ip_address: Optional[str] = None) -> Optional[SessionRecord]:
        """
        Return a copy of the session if it is still usable, else None.

        Expired and idle sessions are destroyed on the spot. A changed client
        IP is only logged unless enforce_ip_match is set.
        """
        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                return None

            now = self._clock()

            if now > session.expires_at or not session.is_active:
                logger.info("Session %s expired (absolute)", _short(session_id))
                self.destroy_session(session_id, reason="expired")
                return None

            # Checked before the touch below, so an idle session cannot revive itself
            if now - session.last_activity > self.config.idle_timeout:
                logger.warning(
                    "Session %s expired due to inactivity (user=%s last_activity=%s)",
                    _short(session_id), session.user_id, session.last_activity.isoformat(),
                )
                self.destroy_session(session_id, reason="idle")
                return None

            if ip_address and session.ip_address != ip_address:
                audit_logger.warning(
                    "SESSION_IP_MISMATCH session=%s user=%s original_ip=%s current_ip=%s",
                    _short(session_id), session.user_id, session.ip_address, ip_address,
                )
                if self.config.enforce_ip_match:
                    self.destroy_session(session_id, reason="ip_mismatch")
                    return None

            if self.config.extend_on_activity:
                session.last_activity = now
                # Only rewrite expiry past the halfway point, not on every request
                if now - session.login_time > self.config.max_age / 2:
                    session.expires_at = now + self.config.max_age

            return session.copy()

    def get_session_data(self, session_id: str) -> Optional[SessionRecord]:
        """
        Read a session without validating or touching it.

        Expired sessions are still returned while they are inside the grace
        window, so the extend flow can mint a replacement. Use
        validate_session for anything that needs strict expiry.
        """
        session = self._store.get(session_id)
        if session is None:
            return None

        grace = self.config.grace_window
        if grace is not None and self._clock() - session.expires_at > grace:
            return None
        return session.copy()

    def extend_session(self, session_id: str, ip_address: str, user_agent: str) -> Optional[SessionTicket]:
        """
        Replace a (possibly just expired) session with a fresh one.

        Refused once the session is past the grace window or its refresh
        horizon. The replacement keeps the original refresh horizon, so a
        chain of extensions cannot outlive it.
        """
        with self._lock:
            previous = self.get_session_data(session_id)
            if previous is None:
                return None

            now = self._clock()
            if now > previous.refresh_token_expires_at:
                logger.info("Session %s past refresh horizon, not extended", _short(session_id))
                return None

            if previous.ip_address and previous.ip_address != ip_address:
                audit_logger.warning(
                    "SESSION_EXTEND_IP_CHANGE session=%s user=%s original_ip=%s current_ip=%s",
                    _short(session_id), previous.user_id, previous.ip_address, ip_address,
                )

            # Drop the old one first so it does not count against the cap
            self.destroy_session(session_id, reason="extended")
            ticket = self.create_session(
                user_id=previous.user_id,
                email=previous.email or "",
                name=previous.name or previous.email or "User",
                role=previous.role or "user",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            replacement = self._store.get(ticket.session_id)
            replacement.refresh_token_expires_at = previous.refresh_token_expires_at
            if replacement.expires_at > replacement.refresh_token_expires_at:
                replacement.expires_at = replacement.refresh_token_expires_at
            return SessionTicket(ticket.session_id, replacement.expires_at)

    def update_activity(self, session_id: str) -> bool:
        """Touch last_activity on an unexpired session."""
        with self._lock:
            session = self._store.get(session_id)
            now = self._clock()
            if session is None or session.expires_at <= now:
                return False
            session.last_activity = now
            return True

    def destroy_session(self, session_id: str, reason: str = "logout") -> bool:
        """Remove a session. Returns True if it existed."""
        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                return False
            session.is_active = False
            self._store.remove(session_id)

        audit_logger.info(
            "SESSION_DESTROYED session=%s user=%s reason=%s",
            _short(session_id), session.user_id, reason,
        )
        return True

    def destroy_all_user_sessions(self, user_id: str, except_session_id: Optional[str] = None) -> int:
        """Destroy every session of a user except one. Returns how many went."""
        destroyed = 0
        for session_id in self._store.user_session_ids(user_id):
            if session_id == except_session_id:
                continue
            try:
                if self.destroy_session(session_id, reason="logout_all"):
                    destroyed += 1
            except Exception as e:
                logger.error("Failed to destroy session %s: %s", _short(session_id), e)

        audit_logger.info(
            "SESSIONS_DESTROYED_ALL user=%s count=%d kept=%s",
            user_id, destroyed, _short(except_session_id) if except_session_id else None,
        )
        return destroyed

    def get_user_sessions(self, user_id: str) -> List[SessionRecord]:
        """Copies of a user's active sessions."""
        sessions = []
        for session_id in self._store.user_session_ids(user_id):
            session = self._store.get(session_id)
            if session is not None and session.is_active:
                sessions.append(session.copy())
        return sessions

    def cleanup_expired_sessions(self, user_id: Optional[str] = None) -> int:
        """Remove sessions whose absolute expiry has passed. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired_ids = [
                record.session_id
                for record in self._store.records()
                if record.expires_at <= now and (user_id is None or record.user_id == user_id)
            ]
            for session_id in expired_ids:
                self.destroy_session(session_id, reason="sweep")

        if expired_ids:
            logger.info("Cleaned up %d expired sessions", len(expired_ids))
        return len(expired_ids)

    def get_session_stats(self) -> SessionStats:
        now = self._clock()
        records = self._store.records()
        active = sum(1 for r in records if r.is_active and now <= r.expires_at)
        return SessionStats(
            total_sessions=len(records),
            active_sessions=active,
            unique_users=self._store.user_count(),
            expired_sessions=len(records) - active,
        )

    def update_config(self, **changes) -> SessionConfig:
        """Replace any subset of the session policy."""
        known = {f.name for f in fields(SessionConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown session config option(s): {', '.join(sorted(unknown))}")

        with self._lock:
            previous_interval = self.config.cleanup_interval
            self.config = replace(self.config, **changes)
        logger.info("Session configuration updated: %s", self.config)

        # Outside the lock: stopping joins the sweep thread, which takes it
        sweeper = self._sweeper
        if sweeper is not None and self.config.cleanup_interval != previous_interval:
            was_running = sweeper.running
            sweeper.stop()
            self._sweeper = None
            if was_running:
                self.start_sweeper()
        return self.config

    def start_sweeper(self, interval: Optional[float] = None) -> SessionSweeper:
        """Start the periodic expiry sweep (idempotent)."""
        if self._sweeper is None:
            self._sweeper = SessionSweeper(
                self.cleanup_expired_sessions,
                interval if interval is not None else self.config.cleanup_interval,
            )
        self._sweeper.start()
        return self._sweeper

    def shutdown(self) -> None:
        """Stop the sweeper and drop every session."""
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None
        self._store.clear()
        logger.info("Session manager shut down")

    def _enforce_concurrent_session_limit(self, user_id: str) -> None:
        # One pass normally; more only if the cap was lowered at runtime
        while True:
            session_ids = self._store.user_session_ids(user_id)
            if len(session_ids) < self.config.max_concurrent_sessions:
                return

            oldest: Optional[SessionRecord] = None
            for session_id in session_ids:
                session = self._store.get(session_id)
                if session is not None and (oldest is None or session.login_time < oldest.login_time):
                    oldest = session

            if oldest is None:
                return
            logger.info(
                "Destroying oldest session %s of user %s (limit %d)",
                _short(oldest.session_id), user_id, self.config.max_concurrent_sessions,
            )
            self.destroy_session(oldest.session_id, reason="concurrent_limit")

    @staticmethod
    def _generate_session_id() -> str:
        return secrets.token_hex(16)
