"""
Cooperative cancellation for query-side work.

A query may carry an ``asyncio.Event``; setting it aborts the query at
its next suspension point and interrupts any remote call in flight.
Cancelling the task running the query has the same effect.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


def check_cancelled(cancel: asyncio.Event | None) -> None:
    """Raise CancelledError if the query has been cancelled."""
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError("query cancelled")


async def run_cancellable(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """
    Await ``awaitable`` unless ``cancel`` fires first.

    If the event is set while waiting, the pending work is cancelled
    and CancelledError is raised.
    """
    if cancel is None:
        return await awaitable
    task = asyncio.ensure_future(awaitable)
    if cancel.is_set():
        task.cancel()
        raise asyncio.CancelledError("query cancelled")

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
    if task in done:
        return task.result()
    raise asyncio.CancelledError("query cancelled")
