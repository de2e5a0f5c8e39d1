"""Bounded async worker pool used to compile independent projects side by side."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence

T = TypeVar("T")
R = TypeVar("R")


class BoundedSemaphore:
    """Small wrapper over ``asyncio.Semaphore`` with usage diagnostics."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self._semaphore.acquire()
        self._in_use += 1
        try:
            yield
        finally:
            self._in_use -= 1
            self._semaphore.release()


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Run coroutines with bounded concurrency; results come back in submission order."""

    max_concurrency: int
    _semaphore: BoundedSemaphore = field(init=False, repr=False)
    peak_in_use: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._semaphore = BoundedSemaphore(self.max_concurrency)

    async def run(self, coroutines: Iterable[Awaitable[T]]) -> list[T]:
        tasks: list[asyncio.Task[T]] = [
            asyncio.create_task(self._run_one(coroutine)) for coroutine in coroutines
        ]
        if not tasks:
            return []
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in tasks:
                if task.done() and not task.cancelled() and task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
            return [task.result() for task in tasks]
        finally:
            await self._cancel_all(tasks)

    async def _run_one(self, coroutine: Awaitable[T]) -> T:
        async with self._semaphore.permit():
            self.peak_in_use = max(self.peak_in_use, self._semaphore.in_use)
            return await coroutine

    @staticmethod
    async def _cancel_all(tasks: Sequence[asyncio.Task[T]]) -> None:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            with suppress(Exception):
                await asyncio.gather(*pending, return_exceptions=True)


def run_in_threads(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    max_workers: int = 1,
) -> list[R]:
    """
    Apply ``func`` to every item on worker threads, at most ``max_workers`` at once.

    Results are returned in input order. With ``max_workers == 1`` the calls run
    inline, without an event loop.
    """

    if max_workers <= 0:
        raise ValueError("max_workers must be > 0")
    materialized = list(items)
    if max_workers == 1 or len(materialized) <= 1:
        return [func(item) for item in materialized]

    async def _runner() -> list[R]:
        pool: WorkerPool[R] = WorkerPool(max_concurrency=max_workers)
        return await pool.run(asyncio.to_thread(func, item) for item in materialized)

    return asyncio.run(_runner())


__all__ = [
    "BoundedSemaphore",
    "WorkerPool",
    "run_in_threads",
]
