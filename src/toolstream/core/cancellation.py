"""Cancellation token shared by every suspension point of a run."""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, TypeVar

from toolstream.errors import RequestCancelled

T = TypeVar("T")


class CancelToken:
    """Caller-owned cancellation signal.

    ``cancel()`` may be called from any coroutine on the same loop; every
    awaiting point raced through :func:`race_cancel` observes it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "Request was aborted"

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self.reason)


async def race_cancel(aw: Awaitable[T], token: CancelToken | None) -> T:
    """Await *aw* unless *token* fires first.

    On cancellation the pending work is cancelled and
    :class:`RequestCancelled` is raised.
    """
    if token is None:
        return await aw
    if token.cancelled:
        if inspect.iscoroutine(aw):
            aw.close()
        raise RequestCancelled(token.reason)

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        pass
    raise RequestCancelled(token.reason)
