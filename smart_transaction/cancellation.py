"""
Cooperative cancellation.

An abort signal is a plain asyncio.Event shared by everything working on one
transaction. Any network call wrapped with abortable() is cancelled as soon
as the event is set, and the caller sees OperationAbortedError.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .exceptions import OperationAbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

AbortSignal = asyncio.Event


def new_abort_signal() -> AbortSignal:
    return asyncio.Event()


def raise_if_aborted(abort_signal: Optional[AbortSignal]) -> None:
    if abort_signal is not None and abort_signal.is_set():
        raise OperationAbortedError("Operation aborted")


async def abortable(awaitable: Awaitable[T], abort_signal: Optional[AbortSignal] = None) -> T:
    """Await `awaitable`, abandoning it if `abort_signal` fires first."""
    if abort_signal is None:
        return await awaitable

    if abort_signal.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationAbortedError("Operation aborted before it started")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort_signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    logger.debug("In-flight call cancelled by abort signal")
    raise OperationAbortedError("Operation aborted")


__all__ = [
    "AbortSignal",
    "new_abort_signal",
    "raise_if_aborted",
    "abortable",
]
