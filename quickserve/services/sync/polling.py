"""
Pull-mode synchronization.

``Poller`` re-runs a refresh coroutine on a fixed interval whether or not
anything changed. It is an async context manager: the periodic task
starts on entry and is cancelled on exit, even when the body raises.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Poller:
    """
    Periodic refresher.

    Args:
        refresh: Coroutine function to call on every tick
        interval: Seconds between the end of one refresh and the next
        immediate: Run the first refresh on entry instead of after one interval
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Any]],
        interval: float,
        immediate: bool = True,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.refresh = refresh
        self.interval = interval
        self.immediate = immediate
        self.ticks = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        if not self.immediate:
            await asyncio.sleep(self.interval)
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Retried on the next tick
                self.failures += 1
                logger.exception("Poll refresh failed")
            self.ticks += 1
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "Poller":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
