"""Abortable awaits and first-error fan-out/fan-in for the pipeline's network calls."""

import asyncio
import logging
from typing import Any, Awaitable, List, Optional, TypeVar

from .exceptions import Cancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _discard(awaitable: Awaitable[Any]) -> None:
    if asyncio.iscoroutine(awaitable):
        awaitable.close()


async def _drain(tasks) -> None:
    # results of cancelled work are dropped on purpose
    await asyncio.gather(*tasks, return_exceptions=True)


async def run_abortable(
    awaitable: Awaitable[T],
    abort_signal: Optional[asyncio.Event],
    operation: str = "operation",
) -> T:
    """
    Await ``awaitable`` unless ``abort_signal`` fires first.

    When the signal fires the in-flight work is cancelled and Cancelled is
    raised. Cancellation of the calling task is propagated to the work too.
    """
    if abort_signal is None:
        return await awaitable

    if abort_signal.is_set():
        _discard(awaitable)
        raise Cancelled(f"{operation} aborted before it started")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort_signal.wait())

    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        await _drain([task, waiter])
        raise

    if task in done:
        waiter.cancel()
        await _drain([waiter])
        return task.result()

    task.cancel()
    await _drain([task])
    logger.debug("%s aborted by caller", operation)
    raise Cancelled(f"{operation} aborted")


async def gather_first_error(*awaitables: Awaitable[Any]) -> List[Any]:
    """
    Run awaitables concurrently and return their results in order.

    The first failure cancels every sibling still running and is re-raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await _drain(tasks)
        raise

    if pending:
        for task in pending:
            task.cancel()
        await _drain(pending)

    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    return [task.result() for task in tasks]


__all__ = ["run_abortable", "gather_first_error"]
