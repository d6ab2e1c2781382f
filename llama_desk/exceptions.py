"""Domain exception hierarchy for the LlamaDesk client."""

from __future__ import annotations


class LlamaDeskError(RuntimeError):
    """Base class for all domain-level errors."""


class ValidationError(LlamaDeskError):
    """Raised when a caller supplies invalid input (empty prompt, duplicate id)."""


class NotFoundError(LlamaDeskError):
    """Raised when a model or message reference does not exist."""


class InvalidStateError(LlamaDeskError):
    """Raised on a session protocol violation such as double resolution."""


class BusyError(InvalidStateError):
    """Raised when a prompt is submitted while a generation is in flight."""


class BackendFailure(LlamaDeskError):
    """Raised by inference backends when a generation cannot be produced."""


class BackendUnavailableError(BackendFailure):
    """Raised when the inference backend cannot be reached or started."""


class ConfigValidationError(LlamaDeskError):
    """Raised when configuration cannot be validated safely."""
