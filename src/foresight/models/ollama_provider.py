"""Ollama completion provider.

Streams completions from Ollama's native API. Chat conversations go to
/api/chat; fill-in-the-middle strings go to /api/generate in raw mode so
the server does not wrap them in a chat template. Responses are newline
delimited JSON objects terminated by one with ``"done": true``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator

import httpx

from foresight.config import ModelConfig
from foresight.exceptions import PredictionTimeoutError
from foresight.models.base import (
    CompletionProvider,
    MalformedResponseError,
    ModelConnectionError,
    Prompt,
    StreamChunk,
)
from foresight.prediction.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class OllamaProvider(CompletionProvider):
    """Provider for Ollama local models."""

    def __init__(self, config: ModelConfig, max_output_tokens: int = 256):
        self._config = config
        headers = {}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.AsyncClient(
            base_url=config.endpoint,
            headers=headers,
            timeout=httpx.Timeout(config.request_timeout_seconds),
        )
        self._model = config.name
        self._temperature = config.temperature
        self._max_output_tokens = max_output_tokens

    @staticmethod
    async def _http_error_body(response: httpx.Response, limit: int = 200) -> str:
        """Safely extract an HTTP error body from a streaming response."""
        try:
            body = await response.aread()
            if body:
                return body.decode("utf-8", errors="replace")[:limit]
        except Exception:
            pass

        try:
            return str(response.text)[:limit]
        except Exception:
            return "<response body unavailable>"

    def _build_payload(self, prompt: Prompt, max_tokens: int) -> tuple[str, dict]:
        options = {
            "temperature": self._temperature,
            "num_predict": max_tokens,
        }
        if isinstance(prompt, str):
            return "/api/generate", {
                "model": self._model,
                "prompt": prompt,
                "raw": True,
                "stream": True,
                "options": options,
            }
        return "/api/chat", {
            "model": self._model,
            "messages": [message.to_dict() for message in prompt],
            "stream": True,
            "options": options,
        }

    def _chunk_text(self, data: dict, line: str) -> str:
        if "message" in data:
            message = data["message"] or {}
            if not isinstance(message, dict):
                raise MalformedResponseError(
                    f"Unexpected message in stream from {self._model}: {line[:200]}",
                )
            text = message.get("content") or ""
        else:
            text = data.get("response") or ""
        if not isinstance(text, str):
            raise MalformedResponseError(
                f"Non-text content in stream from {self._model}: {line[:200]}",
            )
        return text

    async def stream(
        self,
        prompt: Prompt,
        *,
        request_id: int,
        token: CancellationToken,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream a completion, yielding text fragments as they arrive.

        ``max_tokens`` is sent to Ollama as ``num_predict`` (a true token
        limit) and also caps the number of NDJSON chunks read locally. A
        chunk usually carries one token but may carry more, so the local
        cap is approximate. When it is hit the last fragment is marked
        final.
        """
        cap = max_tokens or self._max_output_tokens
        path, payload = self._build_payload(prompt, cap)
        token.raise_if_cancelled()

        try:
            async with self._client.stream("POST", path, json=payload) as response:
                if response.is_error:
                    body_text = await self._http_error_body(response)
                    raise ModelConnectionError(
                        f"Ollama returned HTTP {response.status_code}: "
                        f"{body_text}",
                    )

                received = 0
                async for line in response.aiter_lines():
                    token.raise_if_cancelled()
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.warning(
                            "Undecodable line from Ollama stream: %s", line[:200],
                        )
                        raise MalformedResponseError(
                            f"Undecodable stream content from {self._model}",
                        ) from e
                    if not isinstance(data, dict):
                        raise MalformedResponseError(
                            f"Unexpected stream item from {self._model}: {line[:200]}",
                        )
                    if data.get("error"):
                        raise MalformedResponseError(
                            f"Ollama stream error ({self._model}): {data['error']}",
                        )

                    text = self._chunk_text(data, line)
                    done = bool(data.get("done", False))
                    received += 1
                    capped = not done and received >= cap

                    yield StreamChunk(
                        request_id=request_id,
                        text=text,
                        is_final=done or capped,
                    )
                    if done or capped:
                        if capped:
                            logger.debug(
                                "Request %d hit the %d-chunk generation cap",
                                request_id, cap,
                            )
                        return

                token.raise_if_cancelled()
                raise MalformedResponseError(
                    f"Ollama stream ended without a done marker ({self._model})",
                )
        except httpx.ConnectError as e:
            raise ModelConnectionError(
                f"Cannot connect to Ollama at "
                f"{self._client.base_url}: {e}",
                original=e,
            ) from e
        except httpx.TimeoutException as e:
            raise PredictionTimeoutError(
                f"Ollama streaming timed out ({self._model}): {e}",
            ) from e
        except httpx.RemoteProtocolError as e:
            raise MalformedResponseError(
                f"Ollama stream truncated ({self._model}): {e}",
            ) from e
        except httpx.HTTPError as e:
            raise ModelConnectionError(
                f"Ollama stream interrupted ({self._model}): {e}",
                original=e,
            ) from e

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    @property
    def name(self) -> str:
        return self._model

    async def close(self) -> None:
        await self._client.aclose()

