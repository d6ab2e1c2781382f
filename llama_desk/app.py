"""Textual presentation layer driven entirely by session notifications."""

from __future__ import annotations

import logging
import sys
from typing import Any

from textual.app import App, ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import Button, Footer, Header, Input, Select, Static

from .backend import build_backend
from .config import load_config, models_from_config
from .controller import SessionController
from .events import (
    ActiveModelChanged,
    ConversationCleared,
    MessageAppended,
    MessageResolved,
    StatusChanged,
    StatusState,
)
from .exceptions import NotFoundError
from .logging_utils import configure_logging
from .models import ModelRegistry
from .widgets.message import MessageBubble
from .widgets.status_bar import StatusBar

LOGGER = logging.getLogger(__name__)

EMPTY_STATE_TEXT = (
    "New Conversation\n\nStart a new conversation with your local AI assistant."
)


class LlamaDeskApp(App[None]):
    """Chat window for local models."""

    CSS = """
    Screen {
        layout: vertical;
        background: $background;
    }

    #toolbar {
        height: auto;
        padding: 0 1;
        background: $surface;
    }

    #model_selector {
        width: 1fr;
    }

    #new_button {
        margin-left: 1;
        min-width: 10;
    }

    #conversation {
        height: 1fr;
        padding: 1;
    }

    #empty_state {
        color: $text-muted;
        content-align: center middle;
        width: 100%;
        height: 1fr;
    }

    #status_bar {
        border-top: solid $panel;
        background: $surface;
    }

    #input_row {
        height: auto;
        padding: 0 1 1 1;
        background: $surface;
    }

    #message_input {
        width: 1fr;
    }

    #send_button, #stop_button {
        margin-left: 1;
        min-width: 10;
    }

    #stop_button {
        display: none;
    }

    .generating #send_button {
        display: none;
    }

    .generating #stop_button {
        display: block;
    }

    MessageBubble {
        width: 85%;
        margin: 1 0;
        padding: 1 2;
        border: round $panel;
    }

    .message-user {
        background: $primary 30%;
    }

    .message-assistant {
        background: $surface;
    }

    MessageBubble.failed {
        border: round $error;
    }
    """

    ACTION_DESCRIPTIONS: dict[str, str] = {
        "stop_generation": "Stop",
        "new_conversation": "New Chat",
        "quit": "Quit",
    }

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        controller: SessionController | None = None,
    ) -> None:
        self.config = config if config is not None else load_config()
        configure_logging(self.config["logging"])
        LOGGER.info(
            "app.python",
            extra={
                "event": "app.python",
                "executable": sys.executable,
                "version": sys.version.split()[0],
            },
        )
        super().__init__()
        self.title = str(self.config["app"]["title"])

        if controller is None:
            registry = ModelRegistry()
            controller = SessionController(
                build_backend(self.config["backend"], registry), registry
            )
        self.controller = controller
        self._bubbles: dict[int, MessageBubble] = {}

        for action, key in self.config["keybinds"].items():
            self.bind(
                key,
                action,
                description=self.ACTION_DESCRIPTIONS.get(action, action),
            )

        bus = self.controller.bus
        bus.subscribe(StatusChanged, self._on_status_changed)
        bus.subscribe(MessageAppended, self._on_message_appended)
        bus.subscribe(MessageResolved, self._on_message_resolved)
        bus.subscribe(ActiveModelChanged, self._on_active_model_changed)
        bus.subscribe(ConversationCleared, self._on_conversation_cleared)

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="toolbar"):
            yield Select[str](
                [], prompt="No models available", id="model_selector"
            )
            yield Button("New Chat", id="new_button")
        with VerticalScroll(id="conversation"):
            yield Static(EMPTY_STATE_TEXT, id="empty_state")
        yield StatusBar(id="status_bar")
        with Horizontal(id="input_row"):
            yield Input(placeholder="Send a message...", id="message_input")
            yield Button("Send", id="send_button", variant="primary")
            yield Button("Stop", id="stop_button", variant="error")
        yield Footer()

    async def on_mount(self) -> None:
        self._refresh_model_selector()
        await self.controller.bootstrap(lambda: models_from_config(self.config))
        self._refresh_model_selector()
        self.query_one("#message_input", Input).focus()

    async def on_unmount(self) -> None:
        await self.controller.aclose()

    def _refresh_model_selector(self) -> None:
        selector = self.query_one("#model_selector", Select)
        selector.set_options(
            (model.label, model.id) for model in self.controller.models
        )
        active = self.controller.active_model
        if active is not None:
            selector.value = active.id

    async def action_send_message(self) -> None:
        prompt_input = self.query_one("#message_input", Input)
        result = await self.controller.submit(prompt_input.value)
        if result.accepted:
            prompt_input.value = ""
        else:
            self.notify(result.message, severity="warning")

    async def action_stop_generation(self) -> None:
        await self.controller.stop()

    async def action_new_conversation(self) -> None:
        await self.controller.new_conversation()
        self.query_one("#message_input", Input).focus()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "message_input":
            await self.action_send_message()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send_button":
            await self.action_send_message()
        elif event.button.id == "stop_button":
            await self.action_stop_generation()
        elif event.button.id == "new_button":
            await self.action_new_conversation()

    async def on_select_changed(self, event: Select.Changed) -> None:
        value = event.value
        if value is Select.BLANK or not isinstance(value, str):
            return
        active = self.controller.active_model
        if active is not None and active.id == value:
            return
        try:
            await self.controller.select_model(value)
        except NotFoundError as exc:
            self.notify(str(exc), severity="error")

    def _on_status_changed(self, note: StatusChanged) -> None:
        self.query_one("#status_bar", StatusBar).set_status(note.text, note.state)
        generating = note.state is StatusState.LOADING
        self.screen.set_class(generating, "generating")
        prompt_input = self.query_one("#message_input", Input)
        prompt_input.disabled = generating
        if not generating:
            prompt_input.focus()

    async def _on_message_appended(self, note: MessageAppended) -> None:
        conversation = self.query_one("#conversation", VerticalScroll)
        for empty_state in conversation.query("#empty_state"):
            await empty_state.remove()
        bubble = MessageBubble(note.message)
        self._bubbles[note.message.id] = bubble
        await conversation.mount(bubble)
        conversation.scroll_end(animate=False)

    def _on_message_resolved(self, note: MessageResolved) -> None:
        bubble = self._bubbles.get(note.message.id)
        if bubble is not None:
            bubble.set_message(note.message)
            self.query_one("#conversation", VerticalScroll).scroll_end(animate=False)

    def _on_active_model_changed(self, note: ActiveModelChanged) -> None:
        self._refresh_model_selector()

    async def _on_conversation_cleared(self, _note: ConversationCleared) -> None:
        conversation = self.query_one("#conversation", VerticalScroll)
        await conversation.remove_children()
        self._bubbles.clear()
        await conversation.mount(Static(EMPTY_STATE_TEXT, id="empty_state"))
