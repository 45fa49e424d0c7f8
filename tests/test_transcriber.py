import asyncio
import io
import math
from types import SimpleNamespace

import numpy as np
import pytest

from common.config import TranscriberSettings
from live_service.transcriber import (
    FasterWhisperBackend,
    OpenAIWhisperBackend,
    TimeoutBackend,
    TranscriptionBackend,
    build_backend,
    pcm_to_float32,
)


class FakeOpenAIClient:
    def __init__(self, text="from whisper"):
        self.calls = []

        async def create(**kwargs):
            self.calls.append(kwargs)
            return SimpleNamespace(text=text)

        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=create))


class FakeWhisperModel:
    def __init__(self, segments):
        self.segments = segments
        self.inputs = []

    def transcribe(self, audio, **kwargs):
        self.inputs.append(audio)
        return iter(self.segments), SimpleNamespace(language="en")


class SlowBackend(TranscriptionBackend):
    async def transcribe(self, audio: bytes) -> str:
        await asyncio.sleep(10)
        return "too late"


class TestPcmDecode:
    def test_pcm_to_float32(self):
        pcm = np.array([0, 16384, -32768], dtype=np.int16).tobytes()
        out = pcm_to_float32(pcm)
        assert out.dtype == np.float32
        assert out.tolist() == [0.0, 0.5, -1.0]

    def test_odd_trailing_byte_ignored(self):
        pcm = np.zeros(4, dtype=np.int16).tobytes() + b"\x01"
        assert len(pcm_to_float32(pcm)) == 4

    def test_resamples_to_16khz(self):
        pcm = np.array([0, 16384, 0, -16384], dtype=np.int16).tobytes()
        out = pcm_to_float32(pcm, sample_rate=8000)
        assert out.dtype == np.float32
        assert len(out) == 8
        assert out[0] == 0.0 and out[2] == 0.5
        assert out[1] == pytest.approx(0.25)


class TestOpenAIWhisperBackend:
    @pytest.mark.asyncio
    async def test_uploads_window_as_webm(self):
        client = FakeOpenAIClient()
        backend = OpenAIWhisperBackend(TranscriberSettings(), client=client)
        text = await backend.transcribe(b"\x00" * 2048)
        assert text == "from whisper"
        call = client.calls[0]
        assert call["file"] == ("audio.webm", b"\x00" * 2048)
        assert call["model"] == "whisper-1"
        assert call["language"] == "en"

    @pytest.mark.asyncio
    async def test_scored_has_no_confidence(self):
        backend = OpenAIWhisperBackend(TranscriberSettings(), client=FakeOpenAIClient())
        assert await backend.transcribe_scored(b"x") == ("from whisper", None)

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        backend = OpenAIWhisperBackend(TranscriberSettings(openai_api_key=""))
        with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
            await backend.transcribe(b"x")


class TestFasterWhisperBackend:
    @pytest.mark.asyncio
    async def test_joins_segments_and_scores(self):
        model = FakeWhisperModel([
            SimpleNamespace(text=" Hello ", avg_logprob=-0.2),
            SimpleNamespace(text="there", avg_logprob=-0.4),
        ])
        settings = TranscriberSettings(encoding="pcm_s16le")
        backend = FasterWhisperBackend(settings, model=model)
        text, confidence = await backend.transcribe_scored(np.zeros(160, dtype=np.int16).tobytes())
        assert text == "Hello there"
        assert confidence == round(math.exp(-0.3), 4)
        assert isinstance(model.inputs[0], np.ndarray)

    @pytest.mark.asyncio
    async def test_pcm_at_other_rate_is_resampled(self):
        model = FakeWhisperModel([])
        settings = TranscriberSettings(encoding="pcm_s16le", sample_rate=8000)
        backend = FasterWhisperBackend(settings, model=model)
        await backend.transcribe(np.zeros(80, dtype=np.int16).tobytes())
        assert len(model.inputs[0]) == 160

    @pytest.mark.asyncio
    async def test_container_audio_passed_as_file(self):
        model = FakeWhisperModel([])
        backend = FasterWhisperBackend(TranscriberSettings(encoding="webm"), model=model)
        assert await backend.transcribe(b"webm-bytes") == ""
        assert isinstance(model.inputs[0], io.BytesIO)


class TestTimeoutBackend:
    @pytest.mark.asyncio
    async def test_times_out(self):
        backend = TimeoutBackend(SlowBackend(), timeout_s=0.01)
        with pytest.raises(asyncio.TimeoutError):
            await backend.transcribe_scored(b"x")

    @pytest.mark.asyncio
    async def test_passes_through(self):
        inner = OpenAIWhisperBackend(TranscriberSettings(), client=FakeOpenAIClient("ok"))
        backend = TimeoutBackend(inner, timeout_s=1.0)
        assert await backend.transcribe(b"x") == "ok"


class TestBuildBackend:
    def test_openai_default(self):
        assert isinstance(build_backend(TranscriberSettings()), OpenAIWhisperBackend)

    def test_faster_whisper(self):
        backend = build_backend(TranscriberSettings(backend="faster-whisper"))
        assert isinstance(backend, FasterWhisperBackend)

    def test_timeout_wrapper(self):
        backend = build_backend(TranscriberSettings(backend_timeout_s=5.0))
        assert isinstance(backend, TimeoutBackend)
        assert isinstance(backend.inner, OpenAIWhisperBackend)

    def test_timeout_refused_for_thread_backend(self):
        settings = TranscriberSettings(backend="faster-whisper", backend_timeout_s=5.0)
        with pytest.raises(ValueError, match="not supported"):
            build_backend(settings)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown"):
            build_backend(TranscriberSettings(backend="nope"))
