"""
Session Persistence Mirror

Best-effort mirroring of sessions, turns and aggregate metrics to Supabase.
The in-memory SessionStore stays the source of truth: every failure here is
raised as PersistenceError and absorbed by the caller.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from socratic_code_tutor.errors import PersistenceError
from socratic_code_tutor.session_state import SessionContext

logger = logging.getLogger(__name__)


class SessionRecorder(ABC):
    """Persistence collaborator consumed by the turn pipeline."""

    @abstractmethod
    async def initialize_session(self, context: SessionContext) -> None:
        pass

    @abstractmethod
    async def log_turn(self, context: SessionContext, turn: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def upsert_session_metrics(self, context: SessionContext) -> None:
        pass


class NullSessionRecorder(SessionRecorder):
    """Used when no database is configured."""

    async def initialize_session(self, context: SessionContext) -> None:
        return None

    async def log_turn(self, context: SessionContext, turn: Dict[str, Any]) -> None:
        return None

    async def upsert_session_metrics(self, context: SessionContext) -> None:
        return None


class SupabaseSessionRecorder(SessionRecorder):
    """
    Mirrors session data into Supabase tables:
    - sessions: one row per session
    - turns: one row per processed turn
    - session_metrics: aggregate counters, upserted on every turn and at session end
    """

    SESSIONS_TABLE = "sessions"
    TURNS_TABLE = "turns"
    METRICS_TABLE = "session_metrics"

    def __init__(self, supabase_client):
        """
        Args:
            supabase_client: Supabase client instance
        """
        self.supabase = supabase_client

    async def _execute(self, operation: str, query) -> Any:
        # supabase-py is synchronous; keep it off the event loop
        try:
            return await asyncio.to_thread(query.execute)
        except Exception as e:
            raise PersistenceError(f"{operation} failed: {type(e).__name__}: {e}") from e

    def session_to_dict(self, context: SessionContext) -> Dict[str, Any]:
        return {
            "session_id": context.session_id,
            "user_id": context.user_id,
            "started_at": context.started_at.isoformat(),
        }

    async def initialize_session(self, context: SessionContext) -> None:
        insert_data = {k: v for k, v in self.session_to_dict(context).items() if v is not None}
        await self._execute(
            "initialize_session",
            self.supabase.table(self.SESSIONS_TABLE).upsert(insert_data, on_conflict="session_id"),
        )
        logger.debug(f"✅ [SupabaseSessionRecorder] Mirrored session {context.session_id}")

    async def log_turn(self, context: SessionContext, turn: Dict[str, Any]) -> None:
        row = {"session_id": context.session_id, "user_id": context.user_id, **turn}
        await self._execute("log_turn", self.supabase.table(self.TURNS_TABLE).insert(row))

    async def upsert_session_metrics(self, context: SessionContext) -> None:
        await self._execute(
            "upsert_session_metrics",
            self.supabase.table(self.METRICS_TABLE).upsert(context.metrics_row(), on_conflict="session_id"),
        )


def create_session_recorder(supabase_client: Optional[Any] = None) -> SessionRecorder:
    if supabase_client is None:
        logger.warning("⚠️ [SessionRecorder] Supabase not configured, persistence mirror disabled")
        return NullSessionRecorder()
    return SupabaseSessionRecorder(supabase_client)
