"""Core data types for the live transcription path."""

from __future__ import annotations

from dataclasses import dataclass


class InvalidChunkError(ValueError):
    """Raised for a chunk that cannot be buffered (e.g. zero-length data)."""


@dataclass(frozen=True)
class AudioChunk:
    session_id: str
    data: bytes
    timestamp: float


@dataclass
class TranscriptionResult:
    text: str
    timestamp: float
    confidence: float
    session_id: str
    is_partial: bool = False
