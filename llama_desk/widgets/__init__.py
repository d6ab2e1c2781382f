"""Textual widgets for the LlamaDesk presentation layer."""

from __future__ import annotations

from .message import MessageBubble
from .status_bar import StatusBar

__all__ = ["MessageBubble", "StatusBar"]
