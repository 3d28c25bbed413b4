"""
Periodic cache cleanup on the running event loop.
"""

import asyncio
import logging
from typing import Callable, Optional


class CleanupScheduler:
    """Runs a cleanup callable every interval_seconds until stopped."""

    def __init__(self, cleanup: Callable[[], int], interval_seconds: float, name: str = "cache"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self._cleanup = cleanup
        self.interval_seconds = interval_seconds
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the cleanup loop; requires a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._logger.info(f"Background {self.name} cleanup started (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._logger.info(f"Background {self.name} cleanup stopped")

    def run_once(self) -> int:
        """Run a single sweep, logging rather than raising on failure."""
        try:
            removed = self._cleanup()
        except Exception as e:
            self._logger.error(f"Background {self.name} cleanup failed: {e}")
            return 0
        self.runs += 1
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.run_once()
