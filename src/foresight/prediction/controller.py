"""Debounce and single-flight control for edit predictions.

One PredictionSession per editing context (usually one open document).
The session alone owns its current request id; every new edit or cursor
event supersedes whatever is pending or in flight, so at most one
request per session is ever live.

State machine::

    IDLE -> PENDING(timer) -> IN_FLIGHT(request_id) -> DELIVERED -> IDLE
                ^                    |               -> FAILED    -> IDLE
                +---- new event -----+               -> CANCELLED -> IDLE

PredictionService is the host-facing facade: it keys sessions by buffer
id and shares one provider per model configuration between them.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from typing import Any

from foresight.config import Config, ModelConfig
from foresight.events.bus import (
    PREDICTION_CANCELLED,
    PREDICTION_DELIVERED,
    PREDICTION_DISCARDED,
    PREDICTION_FAILED,
    PREDICTION_PENDING,
    PREDICTION_STARTED,
    EventBus,
    PredictionEvent,
)
from foresight.exceptions import (
    ModelError,
    PredictionCancelledError,
    PredictionTimeoutError,
)
from foresight.models.base import (
    CompletionProvider,
    MalformedResponseError,
    accumulate,
)
from foresight.models.capabilities import CapabilityRegistry
from foresight.prediction.cancellation import CancellationToken
from foresight.prediction.context import ContextCollector
from foresight.prediction.prompt import PromptBuilder
from foresight.prediction.reconciler import Reconciler
from foresight.prediction.types import (
    BufferSnapshot,
    CursorPosition,
    EditPrediction,
    ErrorKind,
    PredictionFailure,
    PredictionRequest,
)

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[EditPrediction], Any]
FailedCallback = Callable[[PredictionFailure], Any]
ProviderFactory = Callable[[ModelConfig], CompletionProvider]


class PredictionState(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PredictionSession:
    """Sequences prediction requests for one editing context."""

    def __init__(
        self,
        session_id: str,
        providers: ProviderFactory,
        *,
        config: Config | None = None,
        registry: CapabilityRegistry | None = None,
        collector: ContextCollector | None = None,
        builder: PromptBuilder | None = None,
        reconciler: Reconciler | None = None,
        on_ready: ReadyCallback | None = None,
        on_failed: FailedCallback | None = None,
        event_bus: EventBus | None = None,
    ):
        self._session_id = session_id
        self._providers = providers
        self._config = config or Config()
        self._registry = registry or CapabilityRegistry(self._config.capabilities)
        self._collector = collector or ContextCollector(self._config.prediction)
        self._builder = builder or PromptBuilder(
            self._config.prediction, self._config.fim_templates,
        )
        self._reconciler = reconciler or Reconciler()
        self._on_ready = on_ready
        self._on_failed = on_failed
        self._event_bus = event_bus

        self._state = PredictionState.IDLE
        self._last_request_id = 0
        self._current_request_id: int | None = None
        self._token: CancellationToken | None = None
        self._task: asyncio.Task | None = None
        self._latest_version: int | None = None
        self._prediction: EditPrediction | None = None
        self._last_failure: PredictionFailure | None = None

    # --- Introspection ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> PredictionState:
        return self._state

    @property
    def current_request_id(self) -> int | None:
        return self._current_request_id

    @property
    def prediction(self) -> EditPrediction | None:
        return self._prediction

    @property
    def last_failure(self) -> PredictionFailure | None:
        return self._last_failure

    @property
    def is_refreshing(self) -> bool:
        return self._state in (PredictionState.PENDING, PredictionState.IN_FLIGHT)

    def is_enabled(self, model_config: ModelConfig | None = None) -> bool:
        return (model_config or self._config.model).enabled

    # --- Host operations ---

    def request_prediction(
        self,
        snapshot: BufferSnapshot,
        cursor: CursorPosition,
        model_config: ModelConfig | None = None,
        *,
        debounce: bool = True,
    ) -> None:
        """Handle an edit or cursor move: supersede, then (re)start the timer.

        Must be called from a running event loop.
        """
        model_config = model_config or self._config.model
        self._latest_version = snapshot.version
        self._prediction = None
        self._supersede("superseded")

        if not model_config.enabled:
            return

        token = CancellationToken()
        self._token = token
        self._set_state(PredictionState.PENDING)
        self._emit(PREDICTION_PENDING, data={"version": snapshot.version})
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._run(snapshot, cursor, model_config, token, debounce),
        )
        self._task.add_done_callback(self._on_task_done)

    def cancel_prediction(self) -> None:
        """Cancel whatever is pending or in flight; no callback fires."""
        self._supersede("cancelled")

    def suggest(self, buffer_id: str, cursor: CursorPosition) -> EditPrediction | None:
        """Return the stored prediction only if it is anchored at ``cursor``."""
        prediction = self._prediction
        if prediction is None:
            return None
        if prediction.buffer_id != buffer_id or prediction.anchor != cursor:
            return None
        return prediction

    def accept(self) -> EditPrediction | None:
        prediction, self._prediction = self._prediction, None
        return prediction

    def discard(self) -> None:
        self._prediction = None

    async def close(self) -> None:
        """Cancel any live request and wait for its stream to unwind."""
        task = self._task
        self.cancel_prediction()
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def wait_idle(self) -> None:
        """Wait until no request is pending or in flight."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    # --- Internals ---

    def _set_state(self, state: PredictionState) -> None:
        if state is not self._state:
            logger.debug(
                "Session %s: %s -> %s (request %s)",
                self._session_id, self._state.value, state.value,
                self._current_request_id,
            )
        self._state = state

    def _emit(self, event_type: str, request_id: int | None = None, data: dict | None = None) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(PredictionEvent(
            event_type=event_type,
            session_id=self._session_id,
            request_id=request_id if request_id is not None else self._current_request_id,
            data=data or {},
        ))

    def _supersede(self, reason: str) -> None:
        if self._token is not None:
            self._token.cancel(reason)
        if self._task is not None and not self._task.done():
            self._task.cancel()

        if self._state in (PredictionState.PENDING, PredictionState.IN_FLIGHT):
            self._set_state(PredictionState.CANCELLED)
            self._emit(PREDICTION_CANCELLED, data={"reason": reason})

        self._token = None
        self._task = None
        self._current_request_id = None
        self._set_state(PredictionState.IDLE)

    def _is_current(self, token: CancellationToken) -> bool:
        return token is self._token and not token.cancelled

    async def _run(
        self,
        snapshot: BufferSnapshot,
        cursor: CursorPosition,
        model_config: ModelConfig,
        token: CancellationToken,
        debounce: bool,
    ) -> None:
        delay = self._config.prediction.debounce_seconds
        if debounce and delay > 0:
            await asyncio.sleep(delay)
        if not self._is_current(token):
            return

        self._last_request_id += 1
        request_id = self._last_request_id
        self._current_request_id = request_id

        capabilities = self._registry.resolve(model_config.name)
        context = self._collector.collect(snapshot, cursor, capabilities)
        prompt, framing = self._builder.render(context, capabilities)
        request = PredictionRequest(
            id=request_id,
            context=context,
            model=capabilities,
            buffer_id=snapshot.buffer_id,
            anchor=cursor,
            snapshot_version=snapshot.version,
        )

        self._set_state(PredictionState.IN_FLIGHT)
        self._emit(PREDICTION_STARTED, data={
            "model": capabilities.identifier,
            "framing": framing.value,
        })

        provider = self._providers(model_config)
        try:
            raw = await accumulate(
                provider.stream(
                    prompt,
                    request_id=request_id,
                    token=token,
                    max_tokens=self._config.prediction.max_output_tokens,
                ),
                token=token,
                timeout=model_config.request_timeout_seconds,
            )
        except PredictionTimeoutError as e:
            self._fail(token, ErrorKind.TIMEOUT, request_id, str(e))
            return
        except PredictionCancelledError:
            return
        except MalformedResponseError as e:
            self._fail(token, ErrorKind.MALFORMED_RESPONSE, request_id, str(e))
            return
        except ModelError as e:
            self._fail(token, ErrorKind.CONNECTION, request_id, str(e))
            return

        if not self._is_current(token):
            return

        self._set_state(PredictionState.DELIVERED)
        prediction = self._reconciler.reconcile(
            raw, request, framing, current_version=self._latest_version,
        )
        self._finish()

        if prediction is None:
            self._emit(PREDICTION_DISCARDED, request_id=request_id)
            return

        self._prediction = prediction
        self._emit(PREDICTION_DELIVERED, request_id=request_id, data={
            "chars": len(prediction.inserted_text),
        })
        self._invoke(self._on_ready, prediction)

    def _fail(
        self,
        token: CancellationToken,
        kind: ErrorKind,
        request_id: int,
        message: str,
    ) -> None:
        # A superseded request's failure is irrelevant to the host.
        if token is not self._token:
            return
        failure = PredictionFailure(kind=kind, request_id=request_id, message=message)
        logger.warning(
            "Prediction %d failed in session %s (%s): %s",
            request_id, self._session_id, kind.value, message,
        )
        self._last_failure = failure
        self._set_state(PredictionState.FAILED)
        self._emit(PREDICTION_FAILED, request_id=request_id, data={
            "kind": kind.value,
            "message": message,
        })
        self._finish()
        self._invoke(self._on_failed, failure)

    def _finish(self) -> None:
        self._token = None
        self._task = None
        self._current_request_id = None
        self._set_state(PredictionState.IDLE)

    def _invoke(self, callback: Callable[[Any], Any] | None, value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Host callback %s raised", getattr(callback, "__name__", callback))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Prediction task in session %s crashed: %s",
                self._session_id, exc, exc_info=exc,
            )
            if self._task is task and self._token is not None:
                request_id = self._current_request_id or self._last_request_id
                self._fail(self._token, ErrorKind.INTERNAL, request_id, str(exc))
            elif self._task is task:
                self._finish()


class PredictionService:
    """Host-facing entry point: one session per buffer, shared providers."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        provider_factory: ProviderFactory | None = None,
        on_ready: ReadyCallback | None = None,
        on_failed: FailedCallback | None = None,
        event_bus: EventBus | None = None,
    ):
        self._config = config or Config()
        self._provider_factory = provider_factory or self._default_provider
        self._providers: dict[ModelConfig, CompletionProvider] = {}
        self._registry = CapabilityRegistry(self._config.capabilities)
        self._collector = ContextCollector(self._config.prediction)
        self._builder = PromptBuilder(self._config.prediction, self._config.fim_templates)
        self._reconciler = Reconciler()
        self._sessions: dict[str, PredictionSession] = {}
        self._on_ready = on_ready
        self._on_failed = on_failed
        self._event_bus = event_bus

    def _default_provider(self, model_config: ModelConfig) -> CompletionProvider:
        from foresight.models.ollama_provider import OllamaProvider

        return OllamaProvider(
            model_config, max_output_tokens=self._config.prediction.max_output_tokens,
        )

    def provider_for(self, model_config: ModelConfig) -> CompletionProvider:
        provider = self._providers.get(model_config)
        if provider is None:
            provider = self._provider_factory(model_config)
            self._providers[model_config] = provider
        return provider

    def session(self, session_id: str) -> PredictionSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = PredictionSession(
                session_id,
                self.provider_for,
                config=self._config,
                registry=self._registry,
                collector=self._collector,
                builder=self._builder,
                reconciler=self._reconciler,
                on_ready=self._on_ready,
                on_failed=self._on_failed,
                event_bus=self._event_bus,
            )
            self._sessions[session_id] = session
        return session

    def request_prediction(
        self,
        snapshot: BufferSnapshot,
        cursor: CursorPosition,
        model_config: ModelConfig | None = None,
        *,
        debounce: bool = True,
    ) -> PredictionSession:
        session = self.session(snapshot.buffer_id)
        session.request_prediction(snapshot, cursor, model_config, debounce=debounce)
        return session

    def cancel_prediction(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.cancel_prediction()

    def suggest(self, buffer_id: str, cursor: CursorPosition) -> EditPrediction | None:
        session = self._sessions.get(buffer_id)
        if session is None:
            return None
        return session.suggest(buffer_id, cursor)

    async def close(self) -> None:
        """Cancel every session and close all provider clients."""
        for session in list(self._sessions.values()):
            await session.close()
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
