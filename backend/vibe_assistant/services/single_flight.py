import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """
    Collapse concurrent calls that share a key into one underlying call.

    The first caller for a key starts the work as a task; callers arriving
    while it runs await the same task and get the same result or exception.
    The key is forgotten as soon as the task finishes, so later calls start
    fresh work.
    """

    def __init__(self) -> None:
        self._in_flight: Dict[Hashable, "asyncio.Task[Any]"] = {}

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Joining in-flight call for {key}")

        # Shielded so that a cancelled waiter does not cancel the shared work
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the exception as retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)
