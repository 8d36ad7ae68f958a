"""Concurrency helpers with backpressure.

Small utilities to avoid unbounded concurrency where we offload work to the
default threadpool (boto3 calls) or fan out network requests (attachment
downloads).
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Iterable
from typing import ParamSpec, TypeVar

_P = ParamSpec("_P")
_T = TypeVar("_T")


def _default_to_thread_limit() -> int:
    cpu = os.cpu_count() or 4
    return max(4, min(32, cpu * 4))


_TO_THREAD_LIMIT = int(os.getenv("PARLEY_TO_THREAD_LIMIT", str(_default_to_thread_limit())))
_TO_THREAD_SEMAPHORE = asyncio.Semaphore(_TO_THREAD_LIMIT)


async def to_thread_limited(func: Callable[_P, _T], /, *args: _P.args, **kwargs: _P.kwargs) -> _T:
    """Run a blocking function in a thread with bounded concurrency."""
    await _TO_THREAD_SEMAPHORE.acquire()
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    finally:
        _TO_THREAD_SEMAPHORE.release()


async def gather_limited(
    factories: Iterable[Callable[[], Awaitable[_T]]],
    *,
    limit: int,
) -> list[_T]:
    """Run coroutine factories concurrently, at most ``limit`` at a time.

    Results come back in input order regardless of completion order.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(factory: Callable[[], Awaitable[_T]]) -> _T:
        async with semaphore:
            return await factory()

    return list(await asyncio.gather(*(_run(factory) for factory in factories)))
