"""Bounded fan-out and per-call timeouts for network-bound steps."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from typing import TypeVar

from book_rag.errors import OperationTimeoutError, Stage

T = TypeVar("T")


async def gather_bounded(awaitables: Iterable[Awaitable[T]], limit: int) -> list[T]:
    """Run awaitables with at most `limit` in flight.

    Results come back in input order. On failure, every task still pending is
    cancelled and, once they have settled, the failure of the earliest input
    is re-raised. All other failures are retrieved and dropped.
    """

    if limit < 1:
        raise ValueError("limit must be >= 1")

    semaphore = asyncio.Semaphore(limit)

    async def _run(awaitable: Awaitable[T]) -> T:
        async with semaphore:
            return await awaitable

    tasks = [asyncio.ensure_future(_run(awaitable)) for awaitable in awaitables]
    if not tasks:
        return []

    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failures = [
            task.exception()
            for task in tasks
            if task.done() and not task.cancelled() and task.exception() is not None
        ]
    finally:
        unfinished = [task for task in tasks if not task.done()]
        for task in unfinished:
            task.cancel()
        if unfinished:
            await asyncio.gather(*unfinished, return_exceptions=True)

    if failures:
        raise failures[0]

    return [task.result() for task in tasks]


async def with_timeout(
    awaitable: Awaitable[T], seconds: float | None, *, stage: Stage | None = None
) -> T:
    """Await with a time limit; `None` waits indefinitely."""

    if seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except OperationTimeoutError:
        raise
    except asyncio.TimeoutError as exc:
        raise OperationTimeoutError(
            f"timed out after {seconds:g}s", stage=stage
        ) from exc
