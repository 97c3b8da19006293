"""Fixed-interval cycle timer with serialized cycles."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

CycleFn = Callable[[], Awaitable[None]]


class CycleScheduler:
    """Fires `cycle` every `interval` seconds, never two at once.

    A firing that comes due while a cycle is still running is coalesced:
    the timer skips ahead to the next slot instead of queueing a backlog.
    `stop` ends the timer without interrupting an in-flight cycle, and
    `flush` runs one more cycle behind whatever is currently running.
    """

    def __init__(self, cycle: CycleFn, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._cycle = cycle
        self.interval = interval
        self._lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.cycles_run = 0
        self.firings_coalesced = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="cycle-scheduler")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + self.interval
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=max(0.0, next_fire - loop.time()))
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_cycle()
            except Exception:
                # Keep the timer alive; the next cycle gets a fresh try
                logger.exception("cycle failed")

            next_fire += self.interval
            now = loop.time()
            while next_fire <= now:
                next_fire += self.interval
                self.firings_coalesced += 1

    async def run_cycle(self) -> None:
        async with self._lock:
            await self._cycle()
            self.cycles_run += 1

    async def stop(self) -> None:
        """Stop firing; waits for an in-flight cycle to finish."""
        self._stopped.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def flush(self) -> None:
        """Run one final cycle, serialized after any in-flight one."""
        await self.run_cycle()
