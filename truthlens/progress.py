import asyncio
import logging
import random
from typing import Callable, Optional

from truthlens.config import settings

logger = logging.getLogger("TruthLensEngine")


class ProgressTicker:
    """
    Cosmetic progress HUD for the ANALYZING phase.

    Every `interval` seconds it calls `on_tick` with a random increment in
    [0, max_increment). The values mean nothing about real analysis progress;
    the owner applies the cap and stops the ticker on every phase exit.
    """

    def __init__(self, on_tick: Callable[[float], None], interval: Optional[float] = None,
                 max_increment: Optional[float] = None, rng: Optional[random.Random] = None):
        self.on_tick = on_tick
        self.interval = settings.PROGRESS_INTERVAL_SECONDS if interval is None else interval
        self.max_increment = settings.PROGRESS_MAX_INCREMENT if max_increment is None else max_increment
        self.rng = rng or random.Random()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_increment(self) -> float:
        return self.rng.random() * self.max_increment

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self.on_tick(self.next_increment())

    async def stop(self):
        """Cancels the ticker and waits for it to unwind. Safe to call when not running."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
