import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ElapsedTimer:
    """Whole-second recording clock. Only counts while started."""

    def __init__(self, interval: float = 1.0, on_tick: Optional[Callable[[int], None]] = None):
        self.interval = interval
        self.on_tick = on_tick
        self.elapsed = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Begin ticking on the running event loop; no-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self):
        self.elapsed += 1
        if self.on_tick:
            self.on_tick(self.elapsed)

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def reset(self):
        self.stop()
        self.elapsed = 0
