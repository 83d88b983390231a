"""
Concurrency-limited runner for independent asynchronous jobs.

Results are stored by input position, so the returned list follows task
order regardless of completion order. The first failure rejects the whole
batch immediately; tasks already in flight keep running in the background
and their outcomes are discarded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar

from .models import InvalidConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Task = Callable[[], Awaitable[T]]


def throttle_all(limit: int, tasks: Sequence[Task[T]]) -> Awaitable[List[T]]:
    """
    Run `tasks` with at most `limit` of them in flight.

    Arguments are validated before anything is scheduled, so a bad call
    raises here rather than when awaited.

    Raises:
        InvalidConfigError: `limit` is not a positive integer, or `tasks` is
            not a sequence of callables.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidConfigError(
            f"Expected 'limit' to be a finite number > 0, got `{limit!r}` ({type(limit).__name__})"
        )
    if not isinstance(tasks, (list, tuple)) or not all(callable(task) for task in tasks):
        raise InvalidConfigError("Expected 'tasks' to be a list of functions returning an awaitable")

    return _run(limit, list(tasks))


def _discard(future: "asyncio.Future[Any]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Ignoring failure from abandoned task: %s", exc)


async def _run(limit: int, tasks: List[Task[T]]) -> List[T]:
    if not tasks:
        return []

    loop = asyncio.get_running_loop()
    done: "asyncio.Future[List[T]]" = loop.create_future()
    results: List[Any] = [None] * len(tasks)
    pending = iter(enumerate(tasks))
    fulfilled = 0
    # Strong references so abandoned tasks are not garbage collected mid-flight.
    running: set = set()

    def start_next() -> None:
        if done.done():
            return
        try:
            index, task = next(pending)
        except StopIteration:
            return
        try:
            job = asyncio.ensure_future(task())
        except Exception as exc:  # noqa: BLE001
            done.set_exception(exc)
            return
        running.add(job)
        job.add_done_callback(lambda fut, index=index: on_done(index, fut))

    def on_done(index: int, fut: "asyncio.Future[T]") -> None:
        nonlocal fulfilled
        running.discard(fut)
        if done.done():
            _discard(fut)
            return
        if fut.cancelled():
            done.set_exception(asyncio.CancelledError())
            return
        exc = fut.exception()
        if exc is not None:
            done.set_exception(exc)
            return
        results[index] = fut.result()
        fulfilled += 1
        if fulfilled == len(tasks):
            done.set_result(results)
            return
        start_next()

    for _ in range(min(limit, len(tasks))):
        start_next()

    return await done
