"""Status line showing the active model or generation progress."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.widgets import Static

from ..events import StatusState

_INDICATOR_STYLES = {
    StatusState.READY: "bold green",
    StatusState.LOADING: "bold yellow",
}


class StatusBar(Static):
    """Render ``● <text>`` with the indicator colored by status state."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
    }
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("", **kwargs)
        self.status_text = ""
        self.status_state = StatusState.READY

    def set_status(self, text: str, state: StatusState) -> None:
        self.status_text = text
        self.status_state = state
        self.set_class(state is StatusState.LOADING, "loading")
        rendered = Text("● ", style=_INDICATOR_STYLES[state])
        rendered.append(text)
        self.update(rendered)
