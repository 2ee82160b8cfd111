"""Event bus for Foresight.

In-process pub/sub for prediction lifecycle events. Sessions emit one
event per state transition; hosts subscribe for status indicators,
logging, or debugging.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

PREDICTION_PENDING = "prediction_pending"
PREDICTION_STARTED = "prediction_started"
PREDICTION_DELIVERED = "prediction_delivered"
PREDICTION_CANCELLED = "prediction_cancelled"
PREDICTION_FAILED = "prediction_failed"
PREDICTION_DISCARDED = "prediction_discarded"


@dataclass
class PredictionEvent:
    """One lifecycle transition of a prediction session."""

    event_type: str
    session_id: str
    request_id: int | None = None
    data: dict = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()


EventHandler = Callable[[PredictionEvent], Any]


class EventBus:
    """In-process event bus.

    Sync handlers run inline; async handlers are scheduled as tasks on
    the running loop. A failing handler never affects the emitter.
    """

    def __init__(self, max_history: int = 500) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._history: list[PredictionEvent] = []
        self._max_history = max_history
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, event: PredictionEvent) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._global_handlers) + list(self._handlers.get(event.event_type, []))
        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    logger.debug(
                        "Skipped async handler %s: no running event loop",
                        getattr(handler, "__name__", handler),
                    )
                    continue
                task = loop.create_task(handler(event))
                self._pending_tasks.add(task)
                task.add_done_callback(self._on_task_done)
            else:
                try:
                    handler(event)
                except Exception as e:
                    logger.warning(
                        "Event handler %s failed for %s: %s",
                        getattr(handler, "__name__", handler), event.event_type, e,
                    )

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Async event handler failed: %s", exc)

    def recent_events(self, limit: int = 50) -> list[PredictionEvent]:
        return self._history[-limit:]

    def clear(self) -> None:
        self._handlers.clear()
        self._global_handlers.clear()
        self._history.clear()
