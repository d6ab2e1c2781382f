"""Generation lifecycle state machine for a single conversation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from .exceptions import BusyError, InvalidStateError, ValidationError
from .message_store import Message, MessageStore, Outcome, Stopped


class GenerationStatus(str, Enum):
    """Finite states of the generation lifecycle."""

    IDLE = "IDLE"
    GENERATING = "GENERATING"


@dataclass(frozen=True)
class Dispatch:
    """Everything needed to fire one backend call for an accepted prompt."""

    token: str
    prompt: str
    model_id: str
    user_message: Message
    pending_message: Message


class GenerationSession:
    """Gate prompt submission and reconcile backend results by request token.

    At most one request is authoritative at a time. Results carrying any
    other token are discarded without touching the message store, which is
    how a stopped generation's late reply is kept out of the conversation.
    """

    def __init__(self, store: MessageStore) -> None:
        self._store = store
        self._status = GenerationStatus.IDLE
        self._token: str | None = None
        self._target_id: int | None = None

    @property
    def status(self) -> GenerationStatus:
        return self._status

    @property
    def request_token(self) -> str | None:
        return self._token

    @property
    def target_message_id(self) -> int | None:
        return self._target_id

    @property
    def is_generating(self) -> bool:
        return self._status is GenerationStatus.GENERATING

    def check_can_begin(self, prompt: str, model_id: str | None) -> str:
        """Raise the rejection ``begin`` would raise, without mutating anything.

        Returns the model id the generation would be dispatched with.
        """
        if self.is_generating:
            raise BusyError("A response is already being generated.")
        if not prompt.strip():
            raise ValidationError("Prompt must not be empty.")
        if model_id is None:
            raise ValidationError("No active model selected.")
        return model_id

    def begin(self, prompt: str, model_id: str | None) -> Dispatch:
        """IDLE -> GENERATING: append the user turn and a pending reply."""
        dispatch_model_id = self.check_can_begin(prompt, model_id)

        text = prompt.strip()
        user_message = self._store.append_user(text)
        pending = self._store.append_pending_assistant()
        self._token = uuid4().hex
        self._target_id = pending.id
        self._status = GenerationStatus.GENERATING
        return Dispatch(
            token=self._token,
            prompt=text,
            model_id=dispatch_model_id,
            user_message=user_message,
            pending_message=pending,
        )

    def resolve(self, token: str, outcome: Outcome) -> Message | None:
        """GENERATING -> IDLE when ``token`` is current; otherwise discard.

        Returns the resolved message, or ``None`` for a stale result.
        """
        if self._token is None or token != self._token:
            return None
        return self._finish(outcome)

    def stop(self) -> Message | None:
        """GENERATING -> IDLE, settling the pending reply with a placeholder.

        The backend call keeps running; its result will arrive stale.
        Returns ``None`` when there was nothing to stop.
        """
        if not self.is_generating:
            return None
        return self._finish(Stopped())

    def reset(self) -> None:
        """Clear the conversation. Only valid while IDLE."""
        if self.is_generating:
            raise InvalidStateError("Cannot reset a conversation while generating.")
        self._store.clear()

    def _finish(self, outcome: Outcome) -> Message:
        assert self._target_id is not None
        target_id = self._target_id
        self._token = None
        self._target_id = None
        self._status = GenerationStatus.IDLE
        return self._store.resolve(target_id, outcome)
