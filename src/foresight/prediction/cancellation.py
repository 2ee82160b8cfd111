"""Cooperative cancellation for in-flight predictions."""

from __future__ import annotations

import asyncio

from foresight.exceptions import PredictionCancelledError


class CancellationToken:
    """One-shot cancellation flag, checked at every chunk boundary.

    The first ``cancel()`` wins; its reason is kept for reporting.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PredictionCancelledError(self._reason)

    async def wait(self) -> None:
        await self._event.wait()
