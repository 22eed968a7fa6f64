"""Async utilities for running blocking filesystem work in threads."""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Iterable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)


async def run_sync_limited(
    semaphore: asyncio.Semaphore,
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a synchronous function in a thread pool, bounded by *semaphore*.

    Args:
        semaphore: Limits how many calls run at once.
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    async with semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T]:
    """Run coroutines concurrently.

    Each coroutine should use run_sync_limited internally.
    Returns results in order. Exceptions propagate from the first failure.

    Args:
        coros: Sequence of coroutines to run concurrently.

    Returns:
        List of results in the same order as input coroutines.
    """
    return list(await asyncio.gather(*coros))


async def map_in_threads(
    func: Callable[[T], R],
    items: Iterable[T],
    max_parallel: int,
) -> list[R]:
    """Apply *func* to every item in worker threads.

    The semaphore is created per call so it is always bound to the
    running event loop.

    Returns:
        Results in the same order as *items*, regardless of which
        thread finished first.
    """
    semaphore = asyncio.Semaphore(max_parallel)
    coros = [run_sync_limited(semaphore, func, item) for item in items]
    logger.debug(
        "Running %d tasks with max_parallel=%d", len(coros), max_parallel
    )
    return await gather_limited(coros)
