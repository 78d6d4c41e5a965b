"""Clock abstraction and a fixed-interval task runner driven by it."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
import logging
from typing import Awaitable, Callable, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in UTC with real asyncio sleeps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class PeriodicTask:
    """Runs ``action`` every ``interval`` seconds until it returns True or ``stop`` is set.

    An exception raised by ``action`` is logged and the task waits for the
    next tick; it never ends the loop.
    """

    def __init__(
        self,
        clock: Clock,
        interval: float,
        action: Callable[[], Awaitable[bool]],
        name: str,
        logger: logging.Logger,
        run_immediately: bool = True,
    ) -> None:
        self.clock = clock
        self.interval = interval
        self.action = action
        self.name = name
        self.logger = logger
        self.run_immediately = run_immediately
        self.ticks = 0

    async def run(self, stop: asyncio.Event) -> None:
        if not self.run_immediately:
            await self._wait(stop)
        while not stop.is_set():
            self.ticks += 1
            try:
                done = await self.action()
            except Exception:
                self.logger.exception("task_error task=%s tick=%d", self.name, self.ticks)
                done = False
            if done:
                return
            await self._wait(stop)

    async def _wait(self, stop: asyncio.Event) -> None:
        """Sleep one interval, waking early if ``stop`` is set."""
        sleeper = asyncio.ensure_future(self.clock.sleep(self.interval))
        stopper = asyncio.ensure_future(stop.wait())
        _, pending = await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
