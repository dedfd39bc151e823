"""Cancellable periodic background tasks.

Each task runs one callable on a fixed interval inside the event loop
and has its own cancellation handle, independent of any request
lifecycle.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from backoffice.errors import UnavailableError

logger = logging.getLogger(__name__)

TaskFn = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """Runs ``fn`` every ``interval`` seconds until cancelled.

    ``fn`` may be sync or async; a sync ``fn`` runs in a worker thread.
    A failing cycle is logged and counted; the next cycle runs as
    scheduled.

    Example:
        task = PeriodicTask("sla_tick", engine.sla_tick, interval=15)
        task.start()
        ...
        await task.cancel()
    """

    def __init__(self, name: str, fn: TaskFn, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._fn = fn
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0
        self.failures = 0
        self.skipped = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.is_running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("Periodic task %s started (every %.1fs)", self.name, self.interval)

    async def cancel(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Periodic task %s stopped", self.name)

    async def run_once(self) -> Any:
        """Run one cycle now. Failures are counted and logged, not raised."""
        try:
            if inspect.iscoroutinefunction(self._fn):
                result = await self._fn()
            else:
                result = await asyncio.to_thread(self._fn)
                if inspect.isawaitable(result):
                    result = await result
        except UnavailableError as e:
            self.skipped += 1
            logger.warning("Periodic task %s skipped: %s", self.name, e.message)
            return None
        except Exception as e:
            self.failures += 1
            logger.error("Periodic task %s failed: %s", self.name, e, exc_info=True)
            return None
        self.runs += 1
        return result

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                if self._running:
                    await self.run_once()
            except asyncio.CancelledError:
                break
