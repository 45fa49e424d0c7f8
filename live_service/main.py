from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from common.config import TranscriberSettings
from common.schemas import (
    ClientMessageType,
    ErrorMessage,
    LiveAction,
    LiveTranscribeRequest,
    LiveTranscribeResponse,
    SessionEndedMessage,
    SessionStartedMessage,
    StartMessage,
    TranscriptionMessage,
    TranscriptionResultModel,
)
from live_service.coalescer import SessionBufferCoalescer
from live_service.models import AudioChunk, InvalidChunkError, TranscriptionResult
from live_service.transcriber import build_backend

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings = TranscriberSettings()
app = FastAPI(title="Live Transcription Service")
coalescer = SessionBufferCoalescer.from_settings(build_backend(settings), settings)


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _now_ms() -> float:
    return time.time() * 1000


def _to_model(result: TranscriptionResult) -> TranscriptionResultModel:
    return TranscriptionResultModel(
        text=result.text,
        timestamp=result.timestamp,
        confidence=result.confidence,
        session_id=result.session_id,
        is_partial=result.is_partial,
    )


@app.on_event("shutdown")
async def shutdown():
    coalescer.close()


@app.get("/health")
async def health():
    return {"status": "ok", "active_sessions": coalescer.active_count}


@app.post("/api/live-transcribe", response_model=LiveTranscribeResponse)
async def live_transcribe(req: LiveTranscribeRequest):
    if req.action == LiveAction.start_session:
        session_id = new_session_id()
        logger.info("Live session started: %s", session_id)
        return LiveTranscribeResponse(session_id=session_id, message="Transcription session started")

    if req.action == LiveAction.process_audio and req.session_id and req.audio_data is not None:
        try:
            data = bytes(req.audio_data)
        except ValueError:
            raise HTTPException(status_code=400, detail="audio_data values must be in 0..255")

        chunk = AudioChunk(
            session_id=req.session_id,
            data=data,
            timestamp=req.timestamp if req.timestamp is not None else _now_ms(),
        )
        try:
            result = await coalescer.submit_chunk(chunk)
        except InvalidChunkError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except Exception:
            logger.exception("Failed to process audio chunk for %s", req.session_id)
            raise HTTPException(status_code=500, detail="Failed to process audio chunk")

        if result is None:
            return LiveTranscribeResponse(message="No transcription available yet")
        return LiveTranscribeResponse(transcription=_to_model(result))

    if req.action == LiveAction.end_session and req.session_id:
        coalescer.end_session(req.session_id)
        return LiveTranscribeResponse(message="Transcription session ended")

    raise HTTPException(status_code=400, detail="Invalid action")


# submissions outlive their connection; end_session discards their results
_background: set[asyncio.Task] = set()


def _finished(task: asyncio.Task) -> None:
    _background.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Audio submission failed", exc_info=task.exception())


async def _submit_and_send(ws: WebSocket, chunk: AudioChunk, results: list[TranscriptionResult]):
    result = await coalescer.submit_chunk(chunk)
    if result is None:
        return
    results.append(result)
    await ws.send_text(
        TranscriptionMessage(session_id=chunk.session_id, result=_to_model(result)).model_dump_json()
    )


@app.websocket("/stream")
async def stream_endpoint(ws: WebSocket):
    await ws.accept()
    session_id: str | None = None
    pending: set[asyncio.Task] = set()
    results: list[TranscriptionResult] = []

    try:
        # Expect start message
        raw = await ws.receive_text()
        msg = json.loads(raw)
        if msg.get("type") != ClientMessageType.start:
            await ws.send_text(ErrorMessage(session_id="", detail="Expected start message").model_dump_json())
            await ws.close()
            return

        start = StartMessage(**msg)
        session_id = start.session_id or new_session_id()
        await ws.send_text(SessionStartedMessage(session_id=session_id).model_dump_json())
        logger.info("Stream session started: %s", session_id)

        while True:
            message = await ws.receive()
            if message.get("type") == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                if not message["bytes"]:
                    await ws.send_text(
                        ErrorMessage(session_id=session_id, detail="Empty audio chunk").model_dump_json()
                    )
                    continue
                chunk = AudioChunk(session_id=session_id, data=message["bytes"], timestamp=_now_ms())
                # one task per frame so frames keep buffering during a backend call
                task = asyncio.create_task(_submit_and_send(ws, chunk, results))
                pending.add(task)
                _background.add(task)
                task.add_done_callback(pending.discard)
                task.add_done_callback(_finished)

            elif message.get("text") is not None:
                data = json.loads(message["text"])
                if data.get("type") == ClientMessageType.end:
                    if pending:
                        await asyncio.gather(*pending, return_exceptions=True)
                    ended = SessionEndedMessage(
                        session_id=session_id,
                        results=[_to_model(r) for r in results],
                        chunk_count=coalescer.chunk_count(session_id),
                    )
                    coalescer.end_session(session_id)
                    await ws.send_text(ended.model_dump_json())
                    break

    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", session_id or "unknown")
    except Exception as exc:
        logger.exception("Stream error: %s", exc)
        try:
            if session_id:
                await ws.send_text(
                    ErrorMessage(session_id=session_id, detail="Internal transcription error").model_dump_json()
                )
        except Exception:
            pass
    finally:
        # in-flight backend calls are left to complete
        if session_id:
            coalescer.end_session(session_id)
        logger.info("Stream session ended: %s", session_id or "unknown")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
