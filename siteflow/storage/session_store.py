"""
Session Store - In-memory index of live and recently finished sessions.

Sessions expire ``ttl_seconds`` after their last update; every update (the
scheduler reports after each wave) refreshes the clock. Sessions that are
still running never expire, since a slow node can outlast the TTL. When the
store is full, the least recently updated session is evicted.

One store is shared by every engine call in the process.
"""

import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime

from siteflow.config import DEFAULT_SESSION_MAX_ENTRIES, DEFAULT_SESSION_TTL_SECONDS
from siteflow.schemas.session import ExecutionSession

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Bounded, expiring session index keyed by session id.

    Example:
        store = SessionStore(max_entries=50, ttl_seconds=300)
        store.create(session)
        store.get(session.id)  # None once expired
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_SESSION_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        # session_id -> (session, last update on the monotonic clock),
        # ordered oldest update first
        self._sessions: OrderedDict[str, tuple[ExecutionSession, float]] = OrderedDict()

    @staticmethod
    def generate_session_id() -> str:
        """
        Generate session ID in format: session_YYYYMMDD_HHMMSS_{uuid}.

        Returns:
            Session ID string (e.g., "session_20260206_143022_abc12345")
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        short_uuid = uuid.uuid4().hex[:8]
        return f"session_{timestamp}_{short_uuid}"

    def create(self, session: ExecutionSession) -> ExecutionSession:
        """Add a session, evicting the least recently updated one if full."""
        self._expire()
        if session.id not in self._sessions:
            while len(self._sessions) >= self.max_entries:
                old_id, (old, _) = self._sessions.popitem(last=False)
                logger.warning(f"Session store full, evicted {old_id} (status: {old.status})")
        session.ttl_seconds = self.ttl_seconds
        self._put(session)
        return session

    def update(self, session: ExecutionSession) -> None:
        """Refresh a session's TTL. Unknown (already evicted) sessions are ignored."""
        if session.id not in self._sessions:
            logger.debug(f"Update for evicted session {session.id} ignored")
            return
        session.touch()
        self._put(session)

    def get(self, session_id: str) -> ExecutionSession | None:
        """Return the session, or None if unknown or expired."""
        item = self._sessions.get(session_id)
        if item is None:
            return None
        session, _ = item
        if self._is_expired(item):
            del self._sessions[session_id]
            logger.debug(f"Session {session_id} expired")
            return None
        return session

    def clear(self, session_id: str | None = None) -> int:
        """Remove one session, or all of them. Returns how many were removed."""
        if session_id is None:
            count = len(self._sessions)
            self._sessions.clear()
            return count
        return 1 if self._sessions.pop(session_id, None) is not None else 0

    def list_sessions(self) -> list[ExecutionSession]:
        self._expire()
        return [session for session, _ in self._sessions.values()]

    def _put(self, session: ExecutionSession) -> None:
        self._sessions.pop(session.id, None)
        self._sessions[session.id] = (session, time.monotonic())

    def _is_expired(self, item: tuple[ExecutionSession, float], now: float | None = None) -> bool:
        session, updated = item
        if not session.is_terminal:
            return False
        now = time.monotonic() if now is None else now
        return now - updated >= self.ttl_seconds

    def _expire(self) -> None:
        now = time.monotonic()
        for session_id, item in list(self._sessions.items()):
            if self._is_expired(item, now):
                del self._sessions[session_id]

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.get(session_id) is not None

    def __len__(self) -> int:
        return len(self._sessions)
