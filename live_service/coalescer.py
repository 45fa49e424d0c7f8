"""Session-keyed buffering and coalescing of streamed audio chunks.

Every chunk is kept for the life of its session. A chunk arriving while the
session is idle triggers at most one backend call on the trailing window of
recent chunks; chunks arriving while that call is in flight are buffered
only and picked up by a later window.
"""

from __future__ import annotations

import logging

from common.config import TranscriberSettings
from live_service.models import AudioChunk, InvalidChunkError, TranscriptionResult
from live_service.session import SessionStore
from live_service.transcriber import TranscriptionBackend

logger = logging.getLogger(__name__)


class SessionBufferCoalescer:
    def __init__(
        self,
        backend: TranscriptionBackend,
        window_chunks: int = 30,
        min_submit_bytes: int = 1024,
        default_confidence: float = 0.95,
        store: SessionStore | None = None,
    ):
        if window_chunks < 1:
            raise ValueError("window_chunks must be at least 1")
        self.backend = backend
        self.window_chunks = window_chunks
        self.min_submit_bytes = min_submit_bytes
        self.default_confidence = default_confidence
        self.store = store if store is not None else SessionStore()

    @classmethod
    def from_settings(
        cls, backend: TranscriptionBackend, settings: TranscriberSettings
    ) -> "SessionBufferCoalescer":
        return cls(
            backend,
            window_chunks=settings.window_chunks,
            min_submit_bytes=settings.min_submit_bytes,
            default_confidence=settings.default_confidence,
        )

    async def submit_chunk(self, chunk: AudioChunk) -> TranscriptionResult | None:
        if not chunk.data:
            raise InvalidChunkError(f"Empty audio chunk for session {chunk.session_id}")

        state = self.store.get_or_create(chunk.session_id)
        state.append(chunk)

        if not state.try_acquire():
            return None

        try:
            window = state.window(self.window_chunks)
            if len(window) < self.min_submit_bytes:
                logger.debug(
                    "Window below threshold for %s: %d < %d bytes",
                    chunk.session_id, len(window), self.min_submit_bytes,
                )
                return None

            logger.info("Submitting %d bytes for %s", len(window), chunk.session_id)
            try:
                text, confidence = await self.backend.transcribe_scored(window)
            except Exception:
                logger.warning("Transcription failed for %s", chunk.session_id, exc_info=True)
                return None
        finally:
            # state may already be detached from the store by end_session
            state.release()

        if self.store.get(chunk.session_id) is not state:
            logger.info("Discarding result for ended session %s", chunk.session_id)
            return None

        return TranscriptionResult(
            text=text,
            timestamp=chunk.timestamp,
            confidence=confidence if confidence is not None else self.default_confidence,
            session_id=chunk.session_id,
            is_partial=False,
        )

    def end_session(self, session_id: str) -> None:
        self.store.drop(session_id)

    def session_audio(self, session_id: str) -> bytes:
        state = self.store.get(session_id)
        return state.audio() if state else b""

    def chunk_count(self, session_id: str) -> int:
        state = self.store.get(session_id)
        return len(state.chunks) if state else 0

    def is_busy(self, session_id: str) -> bool:
        state = self.store.get(session_id)
        return bool(state and state.busy)

    @property
    def active_count(self) -> int:
        return self.store.active_count

    def close(self) -> None:
        self.store.clear()
