"""Worker pool primitives: bounded job queue, shared cursor, and the two
fan-out loops (sequential streaming and parallel detail fetch).

All shared state here is mutated in synchronous sections only; tasks
interleave at awaits, so no locks are needed.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Generic, TypeVar

from harvest.browser.actions import random_sleep
from harvest.browser.session import SessionPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Queue capacity per consumer.
QUEUE_FACTOR = 2


class BoundedJobQueue(Generic[T]):
    """FIFO with a hard capacity; the producer polls while it is full."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            msg = "capacity must be >= 1"
            raise ValueError(msg)
        self.capacity = capacity
        self._items: deque[T] = deque()
        self._closed = False
        self.high_water = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def full(self) -> bool:
        return len(self._items) >= self.capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> None:
        if self._closed:
            msg = "queue is closed"
            raise RuntimeError(msg)
        if self.full:
            msg = f"queue is full ({self.capacity})"
            raise RuntimeError(msg)
        self._items.append(item)
        self.high_water = max(self.high_water, len(self._items))

    def pop(self) -> T | None:
        return self._items.popleft() if self._items else None

    def close(self) -> None:
        """Signal that the producer is done; consumers exit once drained."""
        self._closed = True


class JobCursor(Generic[T]):
    """Monotonic index over a fixed list; each item is claimed at most once."""

    def __init__(self, items: list[T]) -> None:
        self._items = items
        self._next = 0

    @property
    def claimed(self) -> int:
        return self._next

    @property
    def remaining(self) -> int:
        return len(self._items) - self._next

    def claim(self) -> T | None:
        # Read and increment with no await in between.
        if self._next >= len(self._items):
            return None
        item = self._items[self._next]
        self._next += 1
        return item


async def run_sequential_pool(
    items: AsyncIterator[T],
    handle: Callable[[T], Awaitable[None]],
    *,
    worker_count: int,
    stop_event: asyncio.Event,
    poll_s: float = 0.1,
    stop_producing: Callable[[], bool] | None = None,
) -> BoundedJobQueue[T]:
    """Stream ``items`` through ``worker_count`` consumers calling ``handle``.

    The producer stops early when ``stop_event`` is set or ``stop_producing``
    returns True. A failing ``handle`` call is logged and the consumer moves
    on. An exception raised by the stream itself propagates once the
    consumers have drained the queue.

    Returns the queue (for its ``high_water`` mark).
    """
    queue: BoundedJobQueue[T] = BoundedJobQueue(QUEUE_FACTOR * worker_count)

    def should_stop() -> bool:
        return stop_event.is_set() or (stop_producing is not None and stop_producing())

    async def produce() -> None:
        try:
            async for item in items:
                if should_stop():
                    break
                while queue.full and not stop_event.is_set():
                    await asyncio.sleep(poll_s)
                if should_stop():
                    break
                queue.push(item)
        finally:
            queue.close()
            aclose = getattr(items, "aclose", None)
            if aclose is not None:
                await aclose()

    async def consume(index: int) -> None:
        while not stop_event.is_set():
            item = queue.pop()
            if item is None:
                if queue.closed:
                    return
                await asyncio.sleep(poll_s)
                continue
            try:
                await handle(item)
            except Exception:
                logger.exception("Consumer %d failed to handle an item", index)

    results = await asyncio.gather(
        produce(),
        *(consume(i) for i in range(worker_count)),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return queue


async def run_detail_workers(
    items: list[T],
    fetch: Callable[[Any, T], Awaitable[None]],
    *,
    pool: SessionPool,
    worker_count: int,
    stop_event: asyncio.Event,
    stagger_s: float = 0.0,
    politeness_s: float = 0.0,
    setup: Callable[[Any], Awaitable[None]] | None = None,
) -> JobCursor[T]:
    """Fan ``items`` out to workers that each own one browser session.

    Worker ``i`` starts after ``i * stagger_s`` seconds, opens its own
    session, runs ``setup(page)`` if given, then claims items from a shared
    cursor until it is exhausted or ``stop_event`` is set. ``fetch(page, item)``
    failures are logged and the worker continues; a politeness delay follows
    every fetch regardless of outcome.

    Raises the first worker error only if every worker failed.
    """
    cursor: JobCursor[T] = JobCursor(items)
    workers = max(1, min(worker_count, len(items)))

    async def work(index: int) -> int:
        if stagger_s > 0 and index:
            await asyncio.sleep(index * stagger_s)
        if stop_event.is_set():
            return 0
        done = 0
        async with pool.session() as session:
            if setup is not None:
                await setup(session.page)
            while not stop_event.is_set():
                item = cursor.claim()
                if item is None:
                    break
                try:
                    await fetch(session.page, item)
                except Exception:
                    logger.exception("Worker %d failed on an item", index)
                done += 1
                if politeness_s > 0:
                    await random_sleep(politeness_s, politeness_s * 1.5)
        logger.debug("Worker %d finished after %d items", index, done)
        return done

    results = await asyncio.gather(*(work(i) for i in range(workers)), return_exceptions=True)
    errors = [r for r in results if isinstance(r, BaseException)]
    for error in errors:
        logger.warning("Detail worker stopped: %s", error)
    if errors and len(errors) == len(results):
        raise errors[0]
    return cursor
