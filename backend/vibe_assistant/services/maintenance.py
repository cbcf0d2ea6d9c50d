"""
Periodic cleanup of the in-process caches.

The janitor runs inside the application's event loop; it is started and
stopped by the FastAPI lifespan.
"""
import asyncio
import logging
import math
from typing import Optional, Protocol

from vibe_assistant.schemas.cache import CacheStatus

logger = logging.getLogger(__name__)

BYTE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_bytes(num_bytes: int) -> str:
    """
    Format a byte count for display.

    Examples:
    - 0 -> "0 Bytes"
    - 1536 -> "1.5 KB"
    - 5242880 -> "5 MB"
    """
    if num_bytes <= 0:
        return "0 Bytes"
    k = 1024
    i = min(int(math.floor(math.log(num_bytes, k))), len(BYTE_UNITS) - 1)
    value = round(num_bytes / k ** i, 2)
    # Drop a trailing ".0" so 5.0 MB reads as 5 MB
    return f"{value:g} {BYTE_UNITS[i]}"


class Sweepable(Protocol):
    def evict_expired(self) -> int: ...

    def cache_status(self) -> CacheStatus: ...


class CacheJanitor:
    """Calls ``evict_expired`` on a fixed interval until stopped."""

    def __init__(self, target: Sweepable, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.target = target
        self.interval_seconds = interval_seconds
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Cache cleanup already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Cache cleanup started with interval: {self.interval_seconds:g}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cache cleanup stopped")

    def sweep(self) -> int:
        """Run one cleanup pass now. Returns how many entries were dropped."""
        removed = self.target.evict_expired()
        status = self.target.cache_status()
        logger.info(
            f"Cache cleanup completed: removed {removed}, "
            f"{status.entries.get('total', 0)} entries, {status.size.get('total', '0 Bytes')}"
        )
        if status.needs_cleanup:
            logger.warning("Caches are above their cleanup thresholds after sweeping")
        return removed

    async def _run(self) -> None:
        while True:
            try:
                self.sweep()
            except Exception as e:
                # Keep the loop alive; the next tick retries
                logger.error(f"Cache cleanup failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
