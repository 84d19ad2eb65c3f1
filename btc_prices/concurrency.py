import asyncio
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

T = TypeVar("T")


def _consume_outcome(task: "asyncio.Task") -> None:
    # Mark the outcome as retrieved even when every waiter has gone away
    if not task.cancelled():
        task.exception()


class SingleFlight:
    """Keyed single-flight coalescing for async callers.

    The first caller for a key starts ``fn`` as its own task; callers arriving
    while that task is pending await the same task instead of starting another.
    The key is released when the task settles, success or failure.

    Waiters attach through ``asyncio.shield`` so a cancelled waiter never
    cancels the shared work.
    """

    def __init__(self) -> None:
        self._calls: Dict[str, "asyncio.Task"] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._calls

    def join_or_start(self, key: str, fn: Callable[[], Awaitable[T]]) -> Tuple["asyncio.Task", bool]:
        """Return ``(task, started)`` where ``started`` is True when this call created the task."""
        task = self._calls.get(key)
        if task is not None:
            return task, False
        task = asyncio.ensure_future(self._run(key, fn))
        task.add_done_callback(_consume_outcome)
        self._calls[key] = task
        return task, True

    async def do(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        *,
        on_join: Optional[Callable[[], None]] = None,
    ) -> T:
        """Await the shared result for ``key``; ``on_join`` runs when joining an existing call."""
        task, started = self.join_or_start(key, fn)
        if not started and on_join is not None:
            on_join()
        return await asyncio.shield(task)

    async def _run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            self._calls.pop(key, None)
