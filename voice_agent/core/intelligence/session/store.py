"""In-memory session registry with TTL sweep."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Literal, Optional

from voice_agent.config import settings
from .models import Session

logger = logging.getLogger(__name__)

ExpiryHook = Callable[[Session], None]

# Top-level Session fields update() may replace
UPDATABLE_FIELDS = {
    "tenant_id",
    "user_info",
    "awaiting_follow_up",
    "appointment_flow",
    "last_appointment",
    "summary_sent",
}


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class SessionStore:
    """
    Keyed registry of live sessions.

    Sessions are created lazily by get(), live only in process memory and
    leave either through delete() or through sweep()/eviction, which call
    the on_expire hook first. The registry holds at most max_sessions;
    creating one more evicts the oldest.

    All operations are synchronous and never await, so each one is atomic
    with respect to other coroutines. Turns for one session are serialized
    by the caller through lock().
    """

    def __init__(
        self,
        max_sessions: Optional[int] = None,
        on_expire: Optional[ExpiryHook] = None,
    ):
        """Initialize session store.

        Args:
            max_sessions: Registry bound (defaults to settings.max_sessions)
            on_expire: Called with each swept or evicted session before removal
        """
        self._max_sessions = max_sessions or settings.max_sessions
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self.on_expire = on_expire

    def get(self, session_id: str, tenant_id: Optional[str] = None) -> Session:
        """
        Get a session, creating it with defaults if absent.

        Args:
            session_id: Session identifier
            tenant_id: Tenant for a newly created session

        Returns:
            Existing or new Session
        """
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        if len(self._sessions) >= self._max_sessions:
            self._evict_oldest()

        session = Session(session_id=session_id, tenant_id=tenant_id)
        self._sessions[session_id] = session
        logger.debug(f"Session created: {session_id} (tenant={tenant_id})")
        return session

    def peek(self, session_id: str) -> Optional[Session]:
        """Get a session without creating it."""
        return self._sessions.get(session_id)

    def update(self, session_id: str, **changes) -> Session:
        """
        Replace top-level session fields.

        Raises:
            ValueError: If a field is not updatable
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")

        session = self.get(session_id)
        for key, value in changes.items():
            setattr(session, key, value)
        session.updated_at = _utcnow()
        return session

    def append_message(
        self,
        session_id: str,
        role: Literal["user", "assistant"],
        content: str,
    ) -> Session:
        """Append a message to a session's conversation log."""
        session = self.get(session_id)
        session.add_message(role, content)
        return session

    def set_awaiting_follow_up(self, session_id: str, value: bool) -> Session:
        """Set or clear the follow-up flag."""
        return self.update(session_id, awaiting_follow_up=value)

    def delete(self, session_id: str) -> bool:
        """
        Delete a session.

        Returns:
            True if deleted
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.debug(f"Session deleted: {session_id}")
        return True

    def sweep(self, max_age_seconds: Optional[float] = None) -> list[str]:
        """
        Remove sessions older than max_age_seconds.

        The on_expire hook runs for each one before removal.

        Returns:
            IDs of deleted sessions
        """
        max_age = max_age_seconds if max_age_seconds is not None else settings.session_max_age_seconds
        now = _utcnow()

        expired = [
            session_id
            for session_id, session in list(self._sessions.items())
            if session.age_seconds(now) > max_age
        ]

        for session_id in expired:
            self._expire(session_id)

        if expired:
            logger.info(f"Swept {len(expired)} expired sessions ({len(self._sessions)} remaining)")
        return expired

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock so turns run one at a time.

        The lock stays registered while any coroutine holds or waits for it,
        independent of the session itself, and is dropped when the last one
        leaves.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def count(self) -> int:
        """Number of live sessions."""
        return len(self._sessions)

    def _evict_oldest(self) -> None:
        # dict preserves insertion order, i.e. creation order
        oldest_id = next(iter(self._sessions))
        logger.warning(f"Session registry full ({self._max_sessions}), evicting {oldest_id}")
        self._expire(oldest_id)

    def _expire(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if self.on_expire is not None:
            try:
                self.on_expire(session)
            except Exception as e:
                logger.error(f"Expiry hook failed for session {session_id}: {e}")
        self.delete(session_id)


# Singleton
_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get singleton SessionStore."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
