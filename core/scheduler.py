"""
Fixed-period task runner.

``PeriodicTask`` awaits its action, then sleeps for the period, then
repeats. Ticks never overlap: the next one is only scheduled after the
previous one finished or failed. ``stop()`` is cooperative and is checked
before each sleep and each tick; in-flight work is not interrupted.

``sleep`` is injectable so tests can drive ticks deterministically.

Usage:
    task = PeriodicTask("whales", scanner_tick, interval=30, logger=logger)
    asyncio.create_task(task.run())
    ...
    task.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class PeriodicTask:
    def __init__(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        interval: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: logging.Logger | None = None,
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval = interval
        self._action = action
        self._sleep = sleep
        self._logger = logger or logging.getLogger(name)
        self._run_immediately = run_immediately
        self._running = False
        self._stop_requested = False
        self.tick_count = 0
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Loop until ``stop()``; a failing tick is logged and the loop continues."""
        if self._stop_requested:
            return
        self._running = True
        self._logger.info("Periodic task %s started (every %ss)", self.name, self.interval)
        try:
            if not self._run_immediately:
                await self._sleep(self.interval)
            while not self._stop_requested:
                await self._tick()
                if self._stop_requested:
                    break
                await self._sleep(self.interval)
        except asyncio.CancelledError:
            self._logger.info("Periodic task %s cancelled", self.name)
            raise
        finally:
            self._running = False
            self._logger.info("Periodic task %s stopped after %d ticks", self.name, self.tick_count)

    async def _tick(self) -> None:
        self.tick_count += 1
        try:
            await self._action()
            self.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.last_error = str(exc)
            self._logger.error("Periodic task %s tick failed: %s", self.name, exc, exc_info=True)

    def stop(self) -> None:
        """Signal the loop to stop before its next tick."""
        self._stop_requested = True
