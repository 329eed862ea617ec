"""Bounded worker pool for concurrent transfers.

Work items are put on a queue and consumed by ``width`` worker tasks, so
the number of simultaneously running operations can never exceed the
configured width. ``in_flight`` and ``peak_in_flight`` expose the bound
for instrumentation.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BoundedWorkerPool:
    """Fixed-width pool of asyncio workers.

    Example:
        pool = BoundedWorkerPool(width=4, name="downloads")
        results = await pool.map(download_one, resources)
    """

    def __init__(
        self,
        width: int,
        name: str = "pool",
        on_change: Callable[[int], None] | None = None,
    ):
        if width < 1:
            raise ValueError(f"Pool width must be at least 1, got: {width}")
        self.width = width
        self.name = name
        self._on_change = on_change
        self._gate = asyncio.Semaphore(width)
        self.in_flight = 0
        self.peak_in_flight = 0

    def _enter(self) -> None:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        if self._on_change:
            self._on_change(self.in_flight)

    def _exit(self) -> None:
        self.in_flight -= 1
        if self._on_change:
            self._on_change(self.in_flight)

    async def run(self, operation: Callable[[], Awaitable[R]]) -> R:
        """Run a single operation once a slot is free."""
        async with self._gate:
            self._enter()
            try:
                return await operation()
            finally:
                self._exit()

    async def map(
        self,
        func: Callable[[T], Awaitable[R]],
        items: Iterable[T],
    ) -> list[R | BaseException]:
        """Apply ``func`` to every item with at most ``width`` running at once.

        Results are returned in input order. An exception raised by ``func``
        is placed in the result list instead of stopping the other workers.
        Cancellation stops all workers and propagates.
        """
        work = list(items)
        results: list[R | BaseException] = [None] * len(work)  # type: ignore[list-item]
        if not work:
            return results

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(work)):
            queue.put_nowait(index)

        async def worker() -> None:
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results[index] = await self.run(lambda: func(work[index]))
                except Exception as e:
                    logger.debug(f"{self.name}: item {index} failed: {e}")
                    results[index] = e

        worker_count = min(self.width, len(work))
        await asyncio.gather(*(worker() for _ in range(worker_count)))
        return results
