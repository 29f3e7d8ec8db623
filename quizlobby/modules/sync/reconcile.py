from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from quizlobby.core.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ReconciliationLoop:
    """Calls `on_tick` every `interval` seconds until stopped.

    A failing tick is logged and the loop carries on; the next tick is the
    retry. `interval` may be changed while running and applies from the next
    sleep.
    """

    def __init__(
        self,
        interval: float,
        on_tick: Callable[[], Awaitable[None]],
        *,
        name: str = "reconcile",
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.interval = interval
        self.name = name
        self.ticks = 0
        self.failures = 0
        self._on_tick = on_tick
        self._sleep = sleep
        self._task: Optional[asyncio.Task[None]] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from inside a tick; the loop exits when the tick returns
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        while not self._stopped:
            await self._sleep(self.interval)
            if self._stopped:
                return
            try:
                await self._on_tick()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                self.failures += 1
                logger.warning("%s tick failed", self.name, exc_info=True)
            self.ticks += 1
