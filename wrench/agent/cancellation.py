"""
Cancellation helpers.

A turn is cancelled by setting an ``asyncio.Event``.  Every suspension point
of the turn (next stream fragment, confirmation prompt, tool execution) is
raced against that event so cancellation lands between fragments rather than
only at round boundaries.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, TypeVar

from wrench.errors import TurnCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def race_cancel(aw: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """
    Await *aw* unless *cancel* is set first.

    Raises ``TurnCancelled`` if the event wins; the pending awaitable is
    cancelled and awaited so it can clean up.
    """
    if cancel is None:
        return await aw

    if cancel.is_set():
        if inspect.iscoroutine(aw):
            aw.close()
        raise TurnCancelled()

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _pending = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        waiter.cancel()
        await _settle(task)
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    await _settle(task)
    raise TurnCancelled()


async def _settle(task: asyncio.Future) -> None:
    """Cancel *task* and wait until it has unwound."""
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        logger.debug(
            "Awaitable failed while being cancelled", exc_info=task.exception()
        )


async def _next(iterator: AsyncIterator[T]) -> tuple[bool, T | None]:
    try:
        return True, await iterator.__anext__()
    except StopAsyncIteration:
        return False, None


async def iterate_cancellable(
    stream: AsyncIterable[T], cancel: asyncio.Event | None
) -> AsyncIterator[T]:
    """Yield from *stream*, checking *cancel* before and while awaiting each item."""
    iterator = stream.__aiter__()
    try:
        while True:
            has_item, item = await race_cancel(_next(iterator), cancel)
            if not has_item:
                return
            yield item  # type: ignore[misc]
    finally:
        aclose: Any = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
