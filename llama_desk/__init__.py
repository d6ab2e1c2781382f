"""Top-level package for llamadesk."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .controller import SessionController, SubmitResult
from .exceptions import (
    BackendFailure,
    BackendUnavailableError,
    BusyError,
    ConfigValidationError,
    InvalidStateError,
    LlamaDeskError,
    NotFoundError,
    ValidationError,
)
from .message_store import Message, MessageState, MessageStore, Role
from .models import Model, ModelRegistry
from .state import GenerationSession, GenerationStatus

if TYPE_CHECKING:
    from .app import LlamaDeskApp

__all__ = [
    "BackendFailure",
    "BackendUnavailableError",
    "BusyError",
    "ConfigValidationError",
    "GenerationSession",
    "GenerationStatus",
    "InvalidStateError",
    "LlamaDeskApp",
    "LlamaDeskError",
    "Message",
    "MessageState",
    "MessageStore",
    "Model",
    "ModelRegistry",
    "NotFoundError",
    "Role",
    "SessionController",
    "SubmitResult",
    "ValidationError",
]


def __getattr__(name: str) -> Any:
    """Lazily import the UI so the session core imports without textual loaded."""
    if name == "LlamaDeskApp":
        from .app import LlamaDeskApp

        return LlamaDeskApp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
