from __future__ import annotations

import logging
import time

from live_service.models import AudioChunk

logger = logging.getLogger(__name__)


class SessionState:
    """Per-session state: ordered chunk sequence plus the busy gate."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.created_at = time.time()
        self.chunks: list[AudioChunk] = []
        self.busy = False

    def append(self, chunk: AudioChunk) -> None:
        self.chunks.append(chunk)

    def try_acquire(self) -> bool:
        """Set the busy flag if it is clear. Returns False if already busy.

        Must not contain an await: check and set happen in one step on the
        event loop.
        """
        if self.busy:
            return False
        self.busy = True
        return True

    def release(self) -> None:
        self.busy = False

    def window(self, n: int) -> bytes:
        """Concatenate the most recent ``n`` chunks."""
        if n <= 0:
            return b""
        return b"".join(c.data for c in self.chunks[-n:])

    def audio(self) -> bytes:
        return b"".join(c.data for c in self.chunks)


class SessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def get_or_create(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            state = SessionState(session_id)
            self._sessions[session_id] = state
            logger.info("Session created: %s (%d active)", session_id, len(self._sessions))
        return state

    def get(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> bool:
        state = self._sessions.pop(session_id, None)
        if state is None:
            return False
        logger.info(
            "Session removed: %s (%d chunks, %d active)",
            session_id, len(state.chunks), len(self._sessions),
        )
        return True

    def clear(self) -> None:
        count = len(self._sessions)
        self._sessions.clear()
        if count:
            logger.info("Dropped %d sessions", count)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def active_count(self) -> int:
        return len(self._sessions)
