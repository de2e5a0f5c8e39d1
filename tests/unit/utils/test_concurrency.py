"""Unit tests for bounded concurrency helpers."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from spec_trace.utils.concurrency import BoundedSemaphore, WorkerPool, run_in_threads


@pytest.mark.unit
def test_run_in_threads_preserves_input_order() -> None:
    def _slow_square(value: int) -> int:
        time.sleep(0.01 * (5 - value))
        return value * value

    assert run_in_threads(_slow_square, range(5), max_workers=3) == [0, 1, 4, 9, 16]
    assert run_in_threads(_slow_square, range(5), max_workers=1) == [0, 1, 4, 9, 16]
    assert run_in_threads(_slow_square, [], max_workers=4) == []


@pytest.mark.unit
def test_run_in_threads_inline_when_single_worker() -> None:
    caller = threading.get_ident()
    seen = run_in_threads(lambda _: threading.get_ident(), [1, 2], max_workers=1)
    assert seen == [caller, caller]


@pytest.mark.unit
def test_run_in_threads_propagates_errors_and_validates_workers() -> None:
    def _fail(value: int) -> int:
        if value == 2:
            raise RuntimeError("boom")
        return value

    with pytest.raises(RuntimeError, match="boom"):
        run_in_threads(_fail, [1, 2, 3], max_workers=2)
    with pytest.raises(ValueError, match="max_workers"):
        run_in_threads(_fail, [1], max_workers=0)


@pytest.mark.unit
def test_worker_pool_bounds_concurrency() -> None:
    async def _scenario() -> tuple[list[int], int]:
        pool: WorkerPool[int] = WorkerPool(max_concurrency=2)

        async def _job(value: int) -> int:
            await asyncio.sleep(0.01)
            return value

        results = await pool.run(_job(index) for index in range(6))
        return results, pool.peak_in_use

    results, peak = asyncio.run(_scenario())
    assert results == [0, 1, 2, 3, 4, 5]
    assert 1 <= peak <= 2


@pytest.mark.unit
def test_semaphore_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError, match="limit"):
        BoundedSemaphore(0)
    with pytest.raises(ValueError, match="max_concurrency"):
        WorkerPool(max_concurrency=0)
