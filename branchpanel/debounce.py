"""Async debounce helper used to coalesce view refreshes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

LOG = logging.getLogger(__name__)

DEFAULT_DELAY = 0.1


class Debouncer:
    """Collapses a burst of submissions into one run after a quiet interval.

    Each submission cancels the pending one and restarts the wait, so only the
    last factory of a burst runs.
    """

    def __init__(self, delay: float = DEFAULT_DELAY) -> None:
        self._delay = delay
        self._task: asyncio.Task[Any] | None = None
        self._waiting = False

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, coro_factory: Callable[[], Awaitable[Any]]) -> None:
        """Schedule a coroutine, cancelling any pending invocation."""

        # a run that is already past its wait is left to finish
        if self._task and self._waiting:
            self._task.cancel()
        loop = asyncio.get_running_loop()
        self._waiting = True
        self._task = loop.create_task(self._runner(coro_factory))

    def cancel(self) -> None:
        """Cancel a pending invocation; one that is already running is left to finish."""

        if self._task and self._waiting:
            self._task.cancel()
            self._task = None
            self._waiting = False

    async def wait(self) -> None:
        """Wait for the pending invocation, if any, to finish."""

        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _runner(self, coro_factory: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            return
        self._waiting = False
        try:
            await coro_factory()
        except Exception:
            LOG.exception("Debounced call failed")


__all__ = ["DEFAULT_DELAY", "Debouncer"]
