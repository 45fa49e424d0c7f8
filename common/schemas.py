from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TranscriptionResultModel(BaseModel):
    text: str
    timestamp: float
    confidence: float
    session_id: str
    is_partial: bool = False


# --- HTTP: POST /api/live-transcribe ---

class LiveAction(str, Enum):
    start_session = "start-session"
    process_audio = "process-audio"
    end_session = "end-session"


class LiveTranscribeRequest(BaseModel):
    action: str
    session_id: Optional[str] = None
    # raw audio bytes as a JSON array of 0-255 values
    audio_data: Optional[list[int]] = None
    timestamp: Optional[float] = None


class LiveTranscribeResponse(BaseModel):
    success: bool = True
    session_id: Optional[str] = None
    transcription: Optional[TranscriptionResultModel] = None
    message: Optional[str] = None


# --- WebSocket messages: client <-> live service ---

class ClientMessageType(str, Enum):
    start = "start"
    end = "end"


class StartMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.start
    session_id: Optional[str] = None
    # audio payload sent as binary frames, not in JSON


class ServerMessageType(str, Enum):
    session_started = "session_started"
    transcription = "transcription"
    session_ended = "session_ended"
    error = "error"


class SessionStartedMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.session_started
    session_id: str


class TranscriptionMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.transcription
    session_id: str
    result: TranscriptionResultModel


class SessionEndedMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.session_ended
    session_id: str
    results: list[TranscriptionResultModel] = Field(default_factory=list)
    chunk_count: int = 0


class ErrorMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.error
    session_id: str
    detail: str
