from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator

from loguru import logger


@dataclass(frozen=True, slots=True)
class _EndOfStream:
    error: BaseException | None = None


class FragmentChannel:
    """Bounded producer/consumer queue carrying streamed answer fragments.

    A producer task pumps an upstream async iterator into the queue; the
    consumer reads with `receive()` (or `async for`). `close()` stops the
    producer, drops anything buffered and wakes a waiting consumer, which then
    sees the end of the stream. Upstream errors are re-raised to the consumer
    after the fragments that preceded them.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue[str | _EndOfStream] = asyncio.Queue(maxsize=max(maxsize, 1))
        self._producer: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, source: AsyncIterator[str]) -> "FragmentChannel":
        if self._producer is not None:
            raise RuntimeError("channel already started")
        self._producer = asyncio.create_task(self._pump(source))
        return self

    async def _pump(self, source: AsyncIterator[str]) -> None:
        error: BaseException | None = None
        try:
            async for fragment in source:
                if fragment:
                    await self._queue.put(fragment)
        except Exception as exc:
            error = exc
        finally:
            aclose = getattr(source, "aclose", None) or getattr(source, "close", None)
            if aclose is not None:
                try:
                    result = aclose()
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as exc:
                    logger.debug(f"Closing answer source failed: {exc}")
        await self._queue.put(_EndOfStream(error))

    async def receive(self) -> str | None:
        """Return the next fragment, or None once the stream has ended."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if isinstance(item, _EndOfStream):
            self._closed = True
            if item.error is not None:
                raise item.error
            return None
        return item

    def close(self) -> None:
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_EndOfStream())

    def __aiter__(self) -> "FragmentChannel":
        return self

    async def __anext__(self) -> str:
        fragment = await self.receive()
        if fragment is None:
            raise StopAsyncIteration
        return fragment
