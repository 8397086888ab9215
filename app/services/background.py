from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """
    Runs a synchronous sweep callable on a fixed interval.

    The sweep is owned by an explicit lifecycle: nothing runs until
    ``start()`` is awaited, and ``stop()`` cancels the loop so no timer
    outlives the application.  Tests call ``run_once()`` instead of
    waiting on the clock.
    """

    def __init__(self, sweep: Callable[[], int], *, interval: float, name: str) -> None:
        self._sweep = sweep
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info("%s started (every %ss)", self._name, self._interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("%s stopped", self._name)

    def run_once(self) -> int:
        removed = self._sweep()
        if removed:
            logger.debug("%s removed %d stale entries", self._name, removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.run_once()
            except Exception:
                logger.exception("%s sweep failed, will retry", self._name)
