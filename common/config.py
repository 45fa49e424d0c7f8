from typing import Optional

from pydantic_settings import BaseSettings


class TranscriberSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8001

    # coalescing policy: ~3 seconds at 10 chunks/sec, and a floor below
    # which a window is too small to produce a meaningful transcript
    window_chunks: int = 30
    min_submit_bytes: int = 1024
    default_confidence: float = 0.95

    # "openai" or "faster-whisper"
    backend: str = "openai"
    backend_timeout_s: Optional[float] = None

    openai_api_key: str = ""
    openai_model: str = "whisper-1"
    language: Optional[str] = "en"
    audio_filename: str = "audio.webm"

    model_size: str = "base"
    device: str = "auto"
    compute_type: str = "auto"
    encoding: str = "webm"
    # rate of pcm_s16le input; resampled to 16kHz before inference
    sample_rate: int = 16000

    model_config = {"env_prefix": "LIVE_"}
