from __future__ import annotations

import asyncio
import io
import logging
import math
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from common.config import TranscriberSettings

logger = logging.getLogger(__name__)


class TranscriptionBackend(ABC):
    """Turns a buffer of audio bytes into text. May raise on any failure."""

    @abstractmethod
    async def transcribe(self, audio: bytes) -> str:
        ...

    async def transcribe_scored(self, audio: bytes) -> tuple[str, Optional[float]]:
        """Return (text, confidence). Backends without a score return None."""
        return await self.transcribe(audio), None


class OpenAIWhisperBackend(TranscriptionBackend):
    def __init__(self, settings: TranscriberSettings, client=None):
        self.settings = settings
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.settings.openai_api_key:
                raise RuntimeError("OPENAI_API_KEY is not set")
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def transcribe(self, audio: bytes) -> str:
        client = self._get_client()
        kwargs = {
            "file": (self.settings.audio_filename, audio),
            "model": self.settings.openai_model,
            "response_format": "verbose_json",
        }
        if self.settings.language:
            kwargs["language"] = self.settings.language
        resp = await client.audio.transcriptions.create(**kwargs)
        return resp.text


_model = None


def get_model(settings: TranscriberSettings | None = None):
    global _model
    if _model is None:
        from faster_whisper import WhisperModel

        settings = settings or TranscriberSettings()
        logger.info("Loading faster-whisper model: %s", settings.model_size)
        _model = WhisperModel(
            settings.model_size,
            device=settings.device,
            compute_type=settings.compute_type,
        )
        logger.info("Model loaded")
    return _model


WHISPER_SAMPLE_RATE = 16000


def pcm_to_float32(pcm_bytes: bytes, sample_rate: int = WHISPER_SAMPLE_RATE) -> np.ndarray:
    """Decode 16-bit little-endian PCM into float32 samples in [-1, 1).

    Input at any other rate is linearly resampled to 16kHz, the rate
    faster-whisper expects for raw arrays.
    """
    usable = len(pcm_bytes) - len(pcm_bytes) % 2
    audio = np.frombuffer(pcm_bytes[:usable], dtype=np.int16).astype(np.float32) / 32768.0
    if sample_rate == WHISPER_SAMPLE_RATE or len(audio) == 0:
        return audio
    n_out = int(round(len(audio) * WHISPER_SAMPLE_RATE / sample_rate))
    x_old = np.arange(len(audio)) / sample_rate
    x_new = np.arange(n_out) / WHISPER_SAMPLE_RATE
    return np.interp(x_new, x_old, audio).astype(np.float32)


class FasterWhisperBackend(TranscriptionBackend):
    def __init__(self, settings: TranscriberSettings, model=None):
        self.settings = settings
        self._model = model

    @property
    def model(self):
        if self._model is None:
            self._model = get_model(self.settings)
        return self._model

    def _prepare(self, audio: bytes):
        if self.settings.encoding == "pcm_s16le":
            return pcm_to_float32(audio, self.settings.sample_rate)
        # containers (webm, wav, ogg) are decoded by faster-whisper itself
        return io.BytesIO(audio)

    def _run(self, audio: bytes) -> tuple[str, Optional[float]]:
        segments, _info = self.model.transcribe(
            self._prepare(audio),
            language=self.settings.language,
            vad_filter=True,
            vad_parameters={"min_silence_duration_ms": 300},
            beam_size=5,
        )
        texts: list[str] = []
        logprobs: list[float] = []
        for seg in segments:
            text = seg.text.strip()
            if text:
                texts.append(text)
            if seg.avg_logprob is not None:
                logprobs.append(seg.avg_logprob)
        confidence = None
        if logprobs:
            confidence = round(math.exp(sum(logprobs) / len(logprobs)), 4)
        return " ".join(texts), confidence

    async def transcribe_scored(self, audio: bytes) -> tuple[str, Optional[float]]:
        return await asyncio.to_thread(self._run, audio)

    async def transcribe(self, audio: bytes) -> str:
        text, _ = await self.transcribe_scored(audio)
        return text


class TimeoutBackend(TranscriptionBackend):
    """Fails a wrapped backend call that runs longer than ``timeout_s``.

    Only usable around backends whose work is cancelled with the awaiting
    task. A worker thread (FasterWhisperBackend) keeps running after the
    timeout, so the session would be freed while inference is still busy.
    """

    def __init__(self, inner: TranscriptionBackend, timeout_s: float):
        self.inner = inner
        self.timeout_s = timeout_s

    async def transcribe(self, audio: bytes) -> str:
        return await asyncio.wait_for(self.inner.transcribe(audio), self.timeout_s)

    async def transcribe_scored(self, audio: bytes) -> tuple[str, Optional[float]]:
        return await asyncio.wait_for(self.inner.transcribe_scored(audio), self.timeout_s)


def build_backend(settings: TranscriberSettings) -> TranscriptionBackend:
    if settings.backend == "openai":
        backend: TranscriptionBackend = OpenAIWhisperBackend(settings)
    elif settings.backend == "faster-whisper":
        backend = FasterWhisperBackend(settings)
    else:
        raise ValueError(f"Unknown transcription backend: {settings.backend}")

    if settings.backend_timeout_s:
        if isinstance(backend, FasterWhisperBackend):
            raise ValueError("backend_timeout_s is not supported with the faster-whisper backend")
        backend = TimeoutBackend(backend, settings.backend_timeout_s)
    logger.info("Transcription backend: %s", settings.backend)
    return backend
