"""Shared test fixtures for Foresight."""

from __future__ import annotations

import asyncio

import pytest

from foresight.config import Config, ModelConfig, PredictionConfig
from foresight.models.base import CompletionProvider, StreamChunk
from foresight.prediction.types import BufferSnapshot


class FakeProvider(CompletionProvider):
    """Scripted provider that records concurrency and prompts."""

    def __init__(
        self,
        chunks: tuple[str, ...] = ("completion",),
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        terminate: bool = True,
        hang: bool = False,
        model: str = "fake",
    ):
        self._chunks = chunks
        self._delay = delay
        self._error = error
        self._terminate = terminate
        self._hang = hang
        self._model = model
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.prompts: list = []
        self.closed = False
        self.active_at_close: int | None = None

    async def stream(self, prompt, *, request_id, token, max_tokens=None):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.prompts.append(prompt)
        try:
            if self._error is not None:
                raise self._error
            if self._hang:
                await asyncio.Event().wait()
            last = len(self._chunks) - 1
            for i, text in enumerate(self._chunks):
                if self._delay:
                    await asyncio.sleep(self._delay)
                token.raise_if_cancelled()
                yield StreamChunk(
                    request_id=request_id,
                    text=text,
                    is_final=self._terminate and i == last,
                )
        finally:
            self.active -= 1

    async def health_check(self) -> bool:
        return True

    @property
    def name(self) -> str:
        return self._model

    async def close(self) -> None:
        self.active_at_close = self.active
        self.closed = True


@pytest.fixture
def config() -> Config:
    """A chat-model configuration with a short debounce for fast tests."""
    return Config(
        model=ModelConfig(name="llama3", request_timeout_seconds=5.0),
        prediction=PredictionConfig(debounce_ms=10),
    )


@pytest.fixture
def add_snapshot() -> BufferSnapshot:
    return BufferSnapshot(
        buffer_id="add.py",
        text="def add(a, b):\n    return a",
        version=1,
        language="Python",
        file_path="src/add.py",
    )
