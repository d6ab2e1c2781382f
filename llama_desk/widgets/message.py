"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from typing import Any

from rich.console import Group
from rich.text import Text
from textual.widgets import Static

from ..formatting import render_segments
from ..message_store import Message, MessageState, Role

PENDING_TEXT = "Generating a response..."


class MessageBubble(Static):
    """Render one stored message; re-rendered when the message resolves."""

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
    }
    """

    def __init__(self, message: Message, **kwargs: Any) -> None:
        super().__init__("", **kwargs)
        self.message_id = message.id
        self.role = message.role
        self.add_class(f"message-{message.role.value}")
        self.set_message(message)

    @property
    def role_prefix(self) -> str:
        """Return a human-friendly role label."""
        return "You" if self.role is Role.USER else "Assistant"

    def set_message(self, message: Message) -> None:
        self.message_content = message.content
        self.message_state = message.state
        self.set_class(message.state is MessageState.PENDING, "pending")
        self.set_class(message.state is MessageState.FAILED, "failed")

        header = Text(self.role_prefix, style="bold")
        if message.state is MessageState.PENDING:
            body: list[Any] = [Text(PENDING_TEXT, style="italic dim")]
        elif message.state is MessageState.FAILED:
            body = [Text(message.content, style="red")]
        else:
            body = list(render_segments(message.content))
        self.update(Group(header, *body))
