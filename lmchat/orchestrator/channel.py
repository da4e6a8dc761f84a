"""Per-round event channel."""

from __future__ import annotations

import asyncio

from lmchat.session.events import StreamEvent

_CLOSED = object()


class RoundChannel:
    """
    Ordered, single-consumer stream of the events of one round.

    The engine ``put``\\ s events; the consumer iterates with ``async for``.
    Iteration ends after the terminal event (``complete`` or ``error``) or
    when the channel is closed.  Nothing can be put after closing.
    """

    def __init__(self, session_id: str, round_id: str) -> None:
        self.session_id = session_id
        self.round_id = round_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event: StreamEvent) -> bool:
        """Queue *event*.  Returns ``False`` if the channel is already closed."""
        if self._closed:
            return False
        self._queue.put_nowait(event)
        if event.terminal:
            self.close()
        return True

    def close(self, *, discard: bool = False) -> None:
        """
        Close the channel.  With *discard* any events not yet consumed are
        dropped, so the consumer sees nothing further.
        """
        if self._closed:
            return
        self._closed = True
        if discard:
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> RoundChannel:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            raise StopAsyncIteration
        return item

    async def collect(self) -> list[StreamEvent]:
        """Consume the channel to its end and return every event."""
        return [event async for event in self]
