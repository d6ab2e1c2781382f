"""Conversation message log with single-shot pending resolution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Union

from .exceptions import InvalidStateError, NotFoundError, ValidationError

LOGGER = logging.getLogger(__name__)

FAILURE_PLACEHOLDER = "Sorry, an error occurred while generating the response."
STOPPED_PLACEHOLDER = "[Generation stopped by user]"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageState(str, Enum):
    COMPLETE = "complete"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class Message:
    """A single chat turn.

    ``id`` is assigned by the owning store and never reused within it, so
    other components refer to messages by id rather than holding them.
    """

    id: int
    role: Role
    content: str
    state: MessageState = MessageState.COMPLETE

    @property
    def is_pending(self) -> bool:
        return self.state is MessageState.PENDING


@dataclass(frozen=True)
class Success:
    """Backend produced ``text``."""

    text: str


@dataclass(frozen=True)
class Failure:
    """Backend failed; ``reason`` is for logs only and never rendered."""

    reason: str = ""


@dataclass(frozen=True)
class Stopped:
    """The user revoked the pending generation."""


Outcome = Union[Success, Failure, Stopped]


class MessageStore:
    """Own the ordered message log of one conversation."""

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._index: dict[int, Message] = {}
        self._next_id = 1

    @property
    def messages(self) -> tuple[Message, ...]:
        """Return an immutable snapshot of the log in order."""
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: int) -> Message:
        try:
            return self._index[message_id]
        except KeyError:
            raise NotFoundError(f"Unknown message id {message_id}.") from None

    def _append(self, role: Role, content: str, state: MessageState) -> Message:
        message = Message(id=self._next_id, role=role, content=content, state=state)
        self._next_id += 1
        self._messages.append(message)
        self._index[message.id] = message
        return message

    def append_user(self, content: str) -> Message:
        """Append a user turn. Content is stored unformatted."""
        if not content.strip():
            raise ValidationError("Prompt must not be empty.")
        return self._append(Role.USER, content, MessageState.COMPLETE)

    def append_pending_assistant(self) -> Message:
        return self._append(Role.ASSISTANT, "", MessageState.PENDING)

    def resolve(self, message: Message | int, outcome: Outcome) -> Message:
        """Settle a pending assistant message exactly once."""
        message_id = message if isinstance(message, int) else message.id
        target = self.get(message_id)
        if not target.is_pending:
            raise InvalidStateError(
                f"Message {message_id} is already {target.state.value}."
            )

        if isinstance(outcome, Success):
            target.content = outcome.text
            target.state = MessageState.COMPLETE
        elif isinstance(outcome, Failure):
            LOGGER.warning(
                "message.resolved.failed",
                extra={
                    "event": "message.resolved.failed",
                    "message_id": message_id,
                    "reason": outcome.reason,
                },
            )
            target.content = FAILURE_PLACEHOLDER
            target.state = MessageState.FAILED
        elif isinstance(outcome, Stopped):
            target.content = STOPPED_PLACEHOLDER
            target.state = MessageState.COMPLETE
        else:
            raise TypeError(f"Unsupported outcome {outcome!r}.")
        return target

    def clear(self) -> None:
        """Drop every message; ids keep counting so stale ids stay unknown."""
        self._messages.clear()
        self._index.clear()
