"""
Bounded hand-off streams between pipeline stages.

A stream is an ``asyncio.Queue`` with an explicit end: producers ``send``
items and close the stream once; consumers iterate with ``async for`` and
stop when the stream is closed and drained. Closing never blocks, so it is
safe from ``finally`` blocks of cancelled tasks.
"""

import asyncio
from typing import AsyncIterator, Generic, TypeVar

from core.exceptions import ComponentError, StreamClosedError

T = TypeVar("T")

_CLOSED = object()


class Stream(Generic[T]):
    """Bounded single-producer-side-close queue."""

    def __init__(self, maxsize: int = 0, name: str = "stream"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False

    @classmethod
    def empty(cls, name: str = "stream") -> "Stream[T]":
        """Return a stream that is already closed and has no items."""
        stream = cls(name=name)
        stream.close()
        return stream

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, item: T) -> None:
        """Put an item, waiting while the stream is full."""
        if self._closed:
            raise StreamClosedError(f"Cannot send on closed stream '{self.name}'")
        await self._queue.put(item)

    def close(self) -> None:
        """Mark the end of the stream. Calling it again has no effect."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # The consumer sees the flag once it has drained the queue
            pass

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._queue.empty() and self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __repr__(self) -> str:
        return f"Stream(name={self.name}, size={self._queue.qsize()}, closed={self._closed})"


# Record streams carry etl.base.Record; error streams carry stage errors
RecordStream = Stream
ErrorStream = Stream[ComponentError]
