"""
services/timer_service.py

Countdown that drives time pressure in a test session.

The timer ticks once per `interval` seconds on the running event loop. When
`remaining` reaches 0 the `on_expire` callback runs exactly once and the timer
stops. Resuming a session seeds `remaining` directly; elapsed wall time
between save and resume is not counted.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Awaitable[None]]
ExpireCallback = Callable[[], Awaitable[None]]


class CountdownTimer:
    def __init__(
        self,
        seconds: int,
        on_tick: Optional[TickCallback] = None,
        on_expire: Optional[ExpireCallback] = None,
        interval: float = 1.0,
    ):
        self.remaining = max(0, int(seconds))
        self.interval = interval
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self._expired = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        """Start ticking. Must be called with a running event loop."""
        if self._stopped or self._expired or self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self._stopped and not self._expired:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> None:
        """Take one second off the clock."""
        if self._stopped or self._expired:
            return
        if self.remaining > 0:
            self.remaining -= 1
            if self._on_tick is not None:
                await self._on_tick(self.remaining)
        if self.remaining == 0:
            await self._fire()

    async def expire(self) -> None:
        """Force the clock to 0 now."""
        if self._stopped or self._expired:
            return
        self.remaining = 0
        await self._fire()

    async def _fire(self) -> None:
        if self._expired:
            return
        self._expired = True
        self._cancel_task()
        if self._on_expire is not None:
            await self._on_expire()

    def stop(self) -> None:
        """Cancel the timer. No tick or expiry callback runs afterwards.

        Once expired the task is left alone: it is running the expiry
        callback, which has to finish.
        """
        self._stopped = True
        if not self._expired:
            self._cancel_task()

    async def wait(self) -> None:
        """Wait until the ticking task is done, including a running expiry callback."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.gather(task, return_exceptions=True)

    def _cancel_task(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        # the expiry callback may stop the timer from inside its own task
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
