"""Session controller: the single entry point for the presentation layer."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
import logging
from typing import Literal

from .backend import InferenceBackend
from .events import (
    ActiveModelChanged,
    ConversationCleared,
    MessageAppended,
    MessageResolved,
    NotificationBus,
    StatusChanged,
    StatusState,
)
from .exceptions import BusyError, ValidationError
from .message_store import Failure, Message, MessageStore, Outcome, Success
from .models import Model, ModelRegistry
from .state import Dispatch, GenerationSession, GenerationStatus
from .task_manager import InflightCalls

LOGGER = logging.getLogger(__name__)

GENERATING_STATUS = "Generating..."
NO_MODELS_STATUS = "No models available"
MODEL_LOAD_ERROR_STATUS = "Error loading models"

RejectReason = Literal["empty_prompt", "no_active_model", "busy"]

REJECT_MESSAGES: dict[str, str] = {
    "empty_prompt": "Type a message before sending.",
    "no_active_model": "Select a model before sending a message.",
    "busy": "Please wait for the current response to finish, or stop it.",
}

ModelSource = Callable[[], Iterable[Model]]


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a prompt submission as seen by the user."""

    accepted: bool
    token: str | None = None
    reason: RejectReason | None = None
    message: str = ""


class SessionController:
    """Wire the model registry, message store and generation session together.

    Every state change runs under one lock and publishes its notifications
    before the lock is released, so subscribers observe changes in the order
    they happened. Subscribers must not await controller operations from
    inside a notification handler.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        registry: ModelRegistry | None = None,
        bus: NotificationBus | None = None,
    ) -> None:
        self.backend = backend
        self.registry = registry if registry is not None else ModelRegistry()
        self.bus = bus if bus is not None else NotificationBus()
        self._store = MessageStore()
        self._session = GenerationSession(self._store)
        self._inflight = InflightCalls()
        self._lock = asyncio.Lock()

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._store.messages

    @property
    def status(self) -> GenerationStatus:
        return self._session.status

    @property
    def is_generating(self) -> bool:
        return self._session.is_generating

    @property
    def request_token(self) -> str | None:
        return self._session.request_token

    @property
    def active_model(self) -> Model | None:
        return self.registry.get_active()

    @property
    def models(self) -> tuple[Model, ...]:
        return self.registry.models

    @property
    def inflight_count(self) -> int:
        """Backend calls still running, including ones revoked by stop."""
        return len(self._inflight)

    def ready_status(self) -> StatusChanged:
        model = self.registry.get_active()
        if model is None:
            return StatusChanged(NO_MODELS_STATUS, StatusState.READY)
        return StatusChanged(model.name, StatusState.READY)

    async def bootstrap(self, source: ModelSource) -> Model | None:
        """Load the model list once at startup and return the active model.

        A failing source leaves the registry empty and is reported through
        the status line.
        """
        try:
            models = list(source())
            return await self.register_models(models)
        except Exception:  # noqa: BLE001 - the app must still start without models.
            LOGGER.exception(
                "registry.bootstrap.failed",
                extra={"event": "registry.bootstrap.failed"},
            )
            await self.bus.publish(
                StatusChanged(MODEL_LOAD_ERROR_STATUS, StatusState.READY)
            )
            return None

    async def register_models(self, models: Iterable[Model]) -> Model | None:
        async with self._lock:
            previous = self.registry.active_model_id
            active = self.registry.register(models)
            if active is not None and active.id != previous:
                await self.bus.publish(ActiveModelChanged(active))
            if not self._session.is_generating:
                await self.bus.publish(self.ready_status())
            return active

    async def select_model(self, model_id: str) -> Model:
        """Make ``model_id`` active; raises ``NotFoundError`` for unknown ids.

        A generation already in flight keeps the model it was dispatched with.
        """
        async with self._lock:
            previous = self.registry.active_model_id
            model = self.registry.set_active(model_id)
            if model.id != previous:
                LOGGER.info(
                    "registry.model.activated",
                    extra={"event": "registry.model.activated", "model_id": model.id},
                )
                await self.bus.publish(ActiveModelChanged(model))
            if not self._session.is_generating:
                await self.bus.publish(self.ready_status())
            return model

    async def submit(self, prompt: str) -> SubmitResult:
        """Accept ``prompt`` and dispatch it, or explain why not.

        Rejections leave the conversation and the session untouched.
        """
        async with self._lock:
            try:
                dispatch = self._session.begin(prompt, self.registry.active_model_id)
            except BusyError:
                return self._reject("busy")
            except ValidationError:
                reason: RejectReason = (
                    "empty_prompt" if not prompt.strip() else "no_active_model"
                )
                return self._reject(reason)

            LOGGER.info(
                "generation.accepted",
                extra={
                    "event": "generation.accepted",
                    "token": dispatch.token,
                    "model_id": dispatch.model_id,
                    "prompt_chars": len(dispatch.prompt),
                },
            )
            await self.bus.publish(MessageAppended(dispatch.user_message))
            await self.bus.publish(MessageAppended(dispatch.pending_message))
            await self.bus.publish(StatusChanged(GENERATING_STATUS, StatusState.LOADING))

            task = asyncio.create_task(
                self._generate(dispatch), name=f"generate-{dispatch.token}"
            )
            self._inflight.track(dispatch.token, task)
            return SubmitResult(accepted=True, token=dispatch.token)

    def _reject(self, reason: RejectReason) -> SubmitResult:
        LOGGER.info(
            "generation.rejected",
            extra={"event": "generation.rejected", "reason": reason},
        )
        return SubmitResult(accepted=False, reason=reason, message=REJECT_MESSAGES[reason])

    async def _generate(self, dispatch: Dispatch) -> None:
        outcome: Outcome
        try:
            text = await self.backend.generate(dispatch.prompt, dispatch.model_id)
            outcome = Success(text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - any backend problem is a failed generation.
            LOGGER.warning(
                "generation.failed",
                extra={
                    "event": "generation.failed",
                    "token": dispatch.token,
                    "error_type": type(exc).__name__,
                },
            )
            outcome = Failure(reason=f"{type(exc).__name__}: {exc}")
        await self.backend_resolved(dispatch.token, outcome)

    async def backend_resolved(self, token: str, outcome: Outcome) -> bool:
        """Apply a backend result; returns False when ``token`` is stale."""
        async with self._lock:
            message = self._session.resolve(token, outcome)
            if message is None:
                LOGGER.info(
                    "generation.stale_discarded",
                    extra={
                        "event": "generation.stale_discarded",
                        "token": token,
                        "outcome": type(outcome).__name__,
                    },
                )
                return False
            LOGGER.info(
                "generation.resolved",
                extra={
                    "event": "generation.resolved",
                    "token": token,
                    "state": message.state.value,
                },
            )
            await self.bus.publish(MessageResolved(message))
            await self.bus.publish(self.ready_status())
            return True

    async def stop(self) -> bool:
        """Revoke the in-flight generation; the backend call keeps running."""
        async with self._lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> bool:
        token = self._session.request_token
        message = self._session.stop()
        if message is None:
            return False
        LOGGER.info(
            "generation.stopped",
            extra={"event": "generation.stopped", "token": token},
        )
        await self.bus.publish(MessageResolved(message))
        await self.bus.publish(self.ready_status())
        return True

    async def new_conversation(self) -> None:
        """Start over; a generation in flight is stopped first."""
        async with self._lock:
            await self._stop_locked()
            self._session.reset()
            LOGGER.info(
                "conversation.started",
                extra={"event": "conversation.started"},
            )
            await self.bus.publish(ConversationCleared())
            await self.bus.publish(self.ready_status())

    async def wait_idle(self) -> None:
        """Wait for every dispatched backend call, stale ones included."""
        await self._inflight.wait_all()

    async def aclose(self) -> None:
        """Abandon in-flight backend calls, e.g. when the app exits."""
        await self._inflight.abandon_all()
