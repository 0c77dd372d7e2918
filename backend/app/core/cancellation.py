"""Cooperative cancellation shared between a chat session and the relay call it drives."""

import asyncio
from typing import AsyncIterator, Awaitable, TypeVar

from app.core.errors import AbortedError

T = TypeVar("T")


class DeadlineExceeded(Exception):
    """Raised when a wait runs out of time. Distinct from a TimeoutError raised by the awaited work."""


class CancellationToken:
    """One-shot flag. Once cancelled it stays cancelled."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def _next(iterator: AsyncIterator[T]) -> T:
    return await anext(iterator)


async def _discard(task: asyncio.Future) -> None:
    """Cancel a task if still pending and wait until it has actually stopped."""
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        # Retrieve the outcome so asyncio does not log it as unhandled
        task.exception()


async def await_or_abort(
    awaitable: Awaitable[T],
    token: CancellationToken | None = None,
    timeout: float | None = None,
) -> T:
    """Await `awaitable`, racing the token and a timeout.

    Raises AbortedError when the token fires first and DeadlineExceeded when
    `timeout` seconds pass first. In both cases the work is cancelled and has
    finished by the time this raises. If the work completed at the same
    moment, its result is dropped; pass a task to inspect it afterwards.
    """
    task = asyncio.ensure_future(awaitable)
    if token is not None and token.cancelled:
        await _discard(task)
        raise AbortedError("Cancelled before the call started")

    waiters: set[asyncio.Future] = {task}
    cancel_task = None
    if token is not None:
        cancel_task = asyncio.ensure_future(token.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=max(timeout, 0.0) if timeout is not None else None,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        await _discard(task)
        raise
    finally:
        if cancel_task is not None:
            cancel_task.cancel()

    # Cancellation wins even if the work finished at the same time
    if cancel_task is not None and cancel_task in done:
        await _discard(task)
        raise AbortedError("Cancelled while waiting")

    if task in done:
        return task.result()

    await _discard(task)
    raise DeadlineExceeded()


async def next_or_abort(
    iterator: AsyncIterator[T],
    token: CancellationToken | None = None,
    timeout: float | None = None,
) -> T:
    """Await the next item of `iterator`, racing the token and a timeout.

    Raises StopAsyncIteration when the iterator is exhausted, otherwise
    behaves like await_or_abort. A cancelled read has finished before this
    raises, so the iterator can be closed safely.
    """
    if token is not None and token.cancelled:
        raise AbortedError("Cancelled before next chunk")
    return await await_or_abort(_next(iterator), token, timeout)
