"""Presentation-facing notifications and the bus that delivers them.

Usage:
    bus = NotificationBus()

    async def on_resolved(note: MessageResolved) -> None:
        view.update_bubble(note.message)

    bus.subscribe(MessageResolved, on_resolved)
    await bus.publish(MessageResolved(message))
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from .message_store import Message
from .models import Model

LOGGER = logging.getLogger(__name__)


class StatusState(str, Enum):
    READY = "ready"
    LOADING = "loading"


@dataclass(frozen=True)
class StatusChanged:
    text: str
    state: StatusState


@dataclass(frozen=True)
class MessageAppended:
    message: Message


@dataclass(frozen=True)
class MessageResolved:
    message: Message


@dataclass(frozen=True)
class ActiveModelChanged:
    model: Model


@dataclass(frozen=True)
class ConversationCleared:
    """The message log was emptied for a new conversation."""


Notification = (
    StatusChanged
    | MessageAppended
    | MessageResolved
    | ActiveModelChanged
    | ConversationCleared
)

Handler = Callable[[Any], Any]


class NotificationBus:
    """Publish/subscribe keyed by notification type.

    Handlers may be plain functions or coroutine functions. A failing handler
    is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Handler]] = {}
        self._catch_all: list[Handler] = []

    def subscribe(self, kind: type, handler: Handler) -> None:
        """Subscribe ``handler`` to notifications of type ``kind``."""
        self._subscribers.setdefault(kind, []).append(handler)
        LOGGER.debug("Subscribed to notification: %s", kind.__name__)

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe ``handler`` to every notification, in publish order."""
        self._catch_all.append(handler)

    def unsubscribe(self, kind: type, handler: Handler) -> None:
        handlers = self._subscribers.get(kind, [])
        if handler in handlers:
            handlers.remove(handler)
            LOGGER.debug("Unsubscribed from notification: %s", kind.__name__)

    async def publish(self, note: Notification) -> None:
        """Deliver ``note`` to its subscribers in subscription order."""
        handlers = self._subscribers.get(type(note), []) + self._catch_all
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(note)
                else:
                    handler(note)
            except Exception as exc:  # noqa: BLE001 - a view bug must not break the session.
                LOGGER.error(
                    "notification.handler.failed",
                    extra={
                        "event": "notification.handler.failed",
                        "notification": type(note).__name__,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )

    def clear(self, kind: type | None = None) -> None:
        if kind is not None:
            self._subscribers.pop(kind, None)
        else:
            self._subscribers.clear()
            self._catch_all.clear()
