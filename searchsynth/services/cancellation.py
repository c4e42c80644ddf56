from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from searchsynth.errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    """Turn-wide cooperative cancellation signal.

    Stages call `raise_if_cancelled` between steps and wrap every network call
    in `guard`, which checks the token before the call, races the call against
    the token, and checks again once the call returns.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationError()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if self._event.is_set():
            if task.done():
                if not task.cancelled():
                    # retrieve so the loop does not report it as unhandled
                    task.exception()
            else:
                task.cancel()
            raise CancellationError()
        return task.result()


class NullToken(CancellationToken):
    """Token that is never set; used when a caller runs a stage standalone."""

    def cancel(self) -> None:
        return None
