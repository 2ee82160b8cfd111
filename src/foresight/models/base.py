"""Abstract completion-provider interface.

All completion providers implement this interface: a cancellable
stream of text chunks for either a chat conversation or a raw
fill-in-the-middle prompt, plus a health check.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import ClassVar, Union

from foresight.exceptions import ModelError, PredictionTimeoutError


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: ClassVar[str] = "system"

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: ClassVar[str] = "user"

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class AssistantMessage:
    content: str
    role: ClassVar[str] = "assistant"

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


PromptMessage = Union[SystemMessage, UserMessage, AssistantMessage]

# A chat conversation, or a single fill-in-the-middle string.
Prompt = Union[list[PromptMessage], str]


@dataclass(frozen=True)
class StreamChunk:
    """A single chunk from a streaming completion.

    One chunk is one server message, which may hold several tokens.
    """

    request_id: int
    text: str = ""
    is_final: bool = False


class CompletionProvider(ABC):
    """Abstract base class for completion providers."""

    @abstractmethod
    def stream(
        self,
        prompt: Prompt,
        *,
        request_id: int,
        token,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream a completion, yielding chunks as they arrive.

        Must stop within one chunk of ``token`` being cancelled and
        raise ``PredictionCancelledError``. ``max_tokens`` is a generation
        limit passed to the server; providers may also stop locally after
        that many chunks, which only approximates a token count.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the model server is available and responding."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Model identifier served by this provider."""
        ...

    async def close(self) -> None:
        """Release transport resources. Default: nothing to release."""


class ModelConnectionError(ModelError):
    """Raised when a model API call fails due to network or server issues.

    Wraps the underlying httpx/transport error with a user-friendly
    message and preserves the original exception for debugging.
    """

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


class MalformedResponseError(ModelError):
    """Raised when a stream ends without its terminal marker or is undecodable."""


async def accumulate(
    chunks: AsyncGenerator[StreamChunk, None],
    *,
    token,
    timeout: float | None = None,
) -> str:
    """Concatenate chunk text until the final chunk arrives.

    Partial text is never returned: cancellation, timeout, or a stream
    without a final chunk all raise instead. The generator is closed on
    every path, which closes the underlying connection.
    """
    parts: list[str] = []
    saw_final = False
    try:
        async with asyncio.timeout(timeout):
            async for chunk in chunks:
                token.raise_if_cancelled()
                parts.append(chunk.text)
                if chunk.is_final:
                    saw_final = True
                    break
    except TimeoutError as e:
        token.cancel("timeout")
        raise PredictionTimeoutError(
            f"completion did not finish within {timeout}s",
        ) from e
    finally:
        await chunks.aclose()

    token.raise_if_cancelled()
    if not saw_final:
        raise MalformedResponseError("stream ended without a final chunk")
    return "".join(parts)
