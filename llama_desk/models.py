"""Model metadata and the active-model registry."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
import logging

from .exceptions import NotFoundError, ValidationError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Model:
    """A locally available model the backend can generate with."""

    id: str
    name: str
    path: str
    size_gb: float

    @property
    def label(self) -> str:
        """Return the selector label, e.g. ``Llama 3 8B (4.7GB)``."""
        size = f"{self.size_gb:g}"
        return f"{self.name} ({size}GB)"


class ModelRegistry:
    """Ordered model list plus at most one active model id.

    Insertion order is display order. Once the registry holds any model,
    exactly one of them is active.
    """

    def __init__(self, models: Iterable[Model] = ()) -> None:
        self._models: dict[str, Model] = {}
        self._active_id: str | None = None
        models = list(models)
        if models:
            self.register(models)

    @property
    def models(self) -> tuple[Model, ...]:
        return tuple(self._models.values())

    @property
    def active_model_id(self) -> str | None:
        return self._active_id

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[Model]:
        return iter(self.models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def register(self, models: Iterable[Model]) -> Model | None:
        """Replace the full model list and return the active model afterwards.

        Raises ``ValidationError`` when an id appears twice; the registry is
        left untouched in that case.
        """
        ordered: dict[str, Model] = {}
        for model in models:
            if model.id in ordered:
                raise ValidationError(f"Duplicate model id {model.id!r}.")
            ordered[model.id] = model

        self._models = ordered
        if self._active_id not in ordered:
            self._active_id = next(iter(ordered), None)

        LOGGER.info(
            "registry.models.registered",
            extra={
                "event": "registry.models.registered",
                "count": len(ordered),
                "active_model_id": self._active_id,
            },
        )
        return self.get_active()

    def get(self, model_id: str) -> Model:
        """Return the model registered under ``model_id``."""
        try:
            return self._models[model_id]
        except KeyError:
            raise NotFoundError(f"Unknown model id {model_id!r}.") from None

    def set_active(self, model_id: str) -> Model:
        """Make ``model_id`` the active model and return it."""
        model = self.get(model_id)
        self._active_id = model.id
        return model

    def get_active(self) -> Model | None:
        if self._active_id is None:
            return None
        return self._models[self._active_id]
