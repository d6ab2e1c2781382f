"""Tracking for dispatched backend calls that cannot be cancelled at the source."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


class InflightCalls:
    """Keep a reference to every backend task until it finishes.

    Tasks are keyed by request token. A task whose token was revoked by a
    stop keeps running and stays tracked; only completion removes it.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, token: object) -> bool:
        return token in self._tasks

    @property
    def tokens(self) -> tuple[str, ...]:
        return tuple(self._tasks)

    def track(self, token: str, task: asyncio.Task[Any]) -> None:
        """Register ``task`` under ``token``; it removes itself once done."""
        self._tasks[token] = task

        def _on_done(done: asyncio.Task[Any]) -> None:
            if self._tasks.get(token) is done:
                del self._tasks[token]
            self._log_task_exception(token, done)

        task.add_done_callback(_on_done)

    @staticmethod
    def _log_task_exception(token: str, task: asyncio.Task[Any]) -> None:
        """Log exceptions escaping a dispatch task so they are not silently lost."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning(
                "task.dispatch.exception",
                extra={
                    "event": "task.dispatch.exception",
                    "token": token,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    async def wait_all(self) -> None:
        """Await every tracked task without cancelling it."""
        while self._tasks:
            pending = list(self._tasks.values())
            await asyncio.gather(*pending, return_exceptions=True)

    async def abandon_all(self) -> None:
        """Cancel and await every tracked task, used on shutdown."""
        tasks = list(self._tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
