"""
Session Store

In-memory registry of live tutoring sessions, keyed by session id.

Concurrency contract:
- one store is shared by all request handlers of the process (inject it, do not
  import a global)
- turns for the same session id must run under `store.lock(session_id)`; turns for
  different ids never share mutable state
- registry methods are synchronous and never await, so they are atomic with
  respect to other asyncio tasks
"""

import asyncio
import logging
import secrets
import weakref
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from socratic_code_tutor import metrics
from socratic_code_tutor.errors import SessionNotFoundError
from socratic_code_tutor.session_state import SessionContext, utcnow

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return secrets.token_hex(8)


class SessionStore:
    """Owns session lifecycle: create, look up, end, replace, evict."""

    def __init__(
        self,
        idle_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_session_id,
    ):
        """
        Args:
            idle_ttl: Sessions idle longer than this are evicted by evict_idle().
                None disables eviction.
            clock: Time source, injectable for tests.
            id_factory: Generator for new session ids.
        """
        self.idle_ttl = idle_ttl
        self.clock = clock
        self.id_factory = id_factory
        self._sessions: Dict[str, SessionContext] = {}
        # A lock lives as long as a turn holds or awaits it, so a session id that is
        # ended and recreated keeps serializing on the same lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def _refresh_gauge(self) -> None:
        metrics.ACTIVE_SESSIONS.set(len(self._sessions))

    def lock(self, session_id: str) -> asyncio.Lock:
        """Mutual-exclusion lock serializing turns of one session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def get(self, session_id: str) -> Optional[SessionContext]:
        return self._sessions.get(session_id)

    def get_or_create(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[SessionContext, bool]:
        """
        Return the session for an id, creating it if needed.

        Returns:
            (context, created)
        """
        if session_id and session_id in self._sessions:
            return self._sessions[session_id], False

        session_id = session_id or self.id_factory()
        now = self.clock()
        context = SessionContext(session_id=session_id, user_id=user_id, started_at=now, last_activity_at=now)
        self._sessions[session_id] = context
        self._refresh_gauge()
        logger.info(f"💾 [SessionStore] Created session {session_id}")
        return context, True

    def end(self, session_id: str) -> SessionContext:
        """Remove a session and stamp its end time."""
        context = self._sessions.pop(session_id, None)
        if context is None:
            raise SessionNotFoundError(session_id)
        context.ended_at = self.clock()
        self._refresh_gauge()
        logger.info(f"🛑 [SessionStore] Ended session {session_id} after {context.turn_count} turns")
        return context

    def replace(
        self,
        current_session_id: Optional[str],
        user_id: Optional[str] = None,
    ) -> Tuple[Optional[SessionContext], SessionContext]:
        """
        End the current session (if any) and open a fresh one.

        Returns:
            (ended context or None, new context)
        """
        ended = None
        if current_session_id and current_session_id in self._sessions:
            ended = self.end(current_session_id)
            user_id = user_id or ended.user_id
        fresh, _ = self.get_or_create(None, user_id)
        return ended, fresh

    def evict_idle(self, now: Optional[datetime] = None) -> List[SessionContext]:
        """
        End every session idle for longer than idle_ttl.

        Sessions with a turn in flight are skipped.
        """
        if self.idle_ttl is None:
            return []
        now = now or self.clock()
        expired = [
            session_id
            for session_id, context in self._sessions.items()
            if now - context.last_activity_at > self.idle_ttl
            and not self._is_busy(session_id)
        ]
        evicted = [self.end(session_id) for session_id in expired]
        if evicted:
            logger.info(f"🧹 [SessionStore] Evicted {len(evicted)} idle session(s)")
        return evicted
