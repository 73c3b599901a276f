"""Content KPI Engine — Async Concurrency Limiter.

Bounds the number of in-flight async tasks. Tasks beyond the capacity
wait in a FIFO queue and are dispatched as running tasks finish.

Each pipeline owns its own limiter. Sharing one instance between
unrelated pipelines makes them block each other.

Usage:
    limiter = ConcurrencyLimiter(capacity=3)
    future = limiter.submit(rule.evaluate, context)
    result = await future
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable

from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


class _PendingTask:
    """A queued call waiting for a free slot."""

    __slots__ = ("func", "args", "kwargs", "future")

    def __init__(
        self,
        func: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        future: asyncio.Future,
    ) -> None:
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self.future = future


class ConcurrencyLimiter:
    """Runs at most `capacity` coroutines at once, queueing the rest FIFO.

    Attributes:
        name: Label used in log messages.
    """

    def __init__(self, capacity: int, name: str = "limiter") -> None:
        """Initialize the limiter.

        Args:
            capacity: Maximum number of concurrently running tasks (>= 1).
            name: Label used in log messages.

        Raises:
            ValueError: If capacity is below 1.
        """
        if capacity < 1:
            raise ValueError(f"Limiter capacity must be >= 1, got {capacity}")
        self.name = name
        self._capacity = capacity
        self._running = 0
        self._queue: deque[_PendingTask] = deque()
        self._tasks: set[asyncio.Task] = set()

        logger.debug("Limiter '%s' initialized: capacity=%d", name, capacity)

    @property
    def capacity(self) -> int:
        """Maximum number of concurrently running tasks."""
        return self._capacity

    @capacity.setter
    def capacity(self, value: int) -> None:
        """Reconfigure capacity; affects only tasks not yet dispatched."""
        if value < 1:
            raise ValueError(f"Limiter capacity must be >= 1, got {value}")
        logger.info(
            "Limiter '%s': capacity %d → %d", self.name, self._capacity, value,
        )
        self._capacity = value
        self._dispatch()

    @property
    def running(self) -> int:
        """Number of tasks currently running."""
        return self._running

    @property
    def pending(self) -> int:
        """Number of tasks waiting for a slot."""
        return len(self._queue)

    def submit(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> asyncio.Future:
        """Schedule func(*args, **kwargs) under the concurrency bound.

        Starts immediately when a slot is free, otherwise queues behind
        earlier submissions. Must be called from a running event loop.

        Args:
            func: Async callable to execute.
            *args: Positional arguments for func.
            **kwargs: Keyword arguments for func.

        Returns:
            A future resolving with func's result or raising its exception.
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append(_PendingTask(func, args, kwargs, future))
        self._dispatch()
        if not future.done() and self._queue:
            logger.debug(
                "Limiter '%s' full (%d/%d running), %d queued",
                self.name, self._running, self._capacity, len(self._queue),
            )
        return future

    async def run(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Submit a call and wait for its outcome."""
        return await self.submit(func, *args, **kwargs)

    def _dispatch(self) -> None:
        """Start queued tasks while slots are free."""
        while self._queue and self._running < self._capacity:
            pending = self._queue.popleft()
            if pending.future.cancelled():
                continue
            self._running += 1
            task = asyncio.ensure_future(self._execute(pending))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, pending: _PendingTask) -> None:
        """Run one task and hand its slot to the next queued one."""
        try:
            result = await pending.func(*pending.args, **pending.kwargs)
        except asyncio.CancelledError:
            if not pending.future.done():
                pending.future.cancel()
            raise
        except Exception as e:
            if not pending.future.done():
                pending.future.set_exception(e)
        else:
            if not pending.future.done():
                pending.future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""
        return (
            f"ConcurrencyLimiter(name={self.name!r}, capacity={self._capacity}, "
            f"running={self._running}, pending={len(self._queue)})"
        )
