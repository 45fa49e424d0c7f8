import asyncio

import pytest

from live_service.transcriber import TranscriptionBackend


class FakeBackend(TranscriptionBackend):
    """Records submitted windows; blocks on ``gate`` until it is set."""

    def __init__(self, text="hello world", confidence=None, fail=False, gated=False):
        self.text = text
        self.confidence = confidence
        self.fail = fail
        self.gate = asyncio.Event()
        if not gated:
            self.gate.set()
        self.windows: list[bytes] = []

    @property
    def calls(self) -> int:
        return len(self.windows)

    async def transcribe(self, audio: bytes) -> str:
        text, _ = await self.transcribe_scored(audio)
        return text

    async def transcribe_scored(self, audio: bytes):
        self.windows.append(audio)
        await self.gate.wait()
        if self.fail:
            raise RuntimeError("backend unavailable")
        return self.text, self.confidence


async def wait_for_calls(backend: FakeBackend, n: int) -> None:
    for _ in range(100):
        if backend.calls >= n:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"backend saw {backend.calls} calls, expected {n}")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def gated_backend():
    return FakeBackend(gated=True)
