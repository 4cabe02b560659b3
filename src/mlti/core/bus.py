"""
Message bus - the data and control channels.

Both channels are unbounded, multi-producer and single-consumer. Producers
never suspend on send; the one consumer suspends on receive.
"""

import asyncio
from typing import AsyncIterator

import structlog

from .errors import ChannelClosedError
from .messages import Message


logger = structlog.get_logger()

_CLOSED = object()


class Channel:
    """Unbounded FIFO channel with explicit closure."""

    def __init__(self, name: str):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._consuming = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self._queue.qsize()

    def send(self, message: Message) -> None:
        """Queue a message. Messages sent after close() are dropped."""
        if self._closed:
            logger.debug("channel_send_after_close", channel=self.name, type=message.type.value)
            return
        self._queue.put_nowait(message)

    def close(self) -> None:
        """Close the channel. Queued messages can still be received."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def recv(self) -> Message:
        """
        Receive the next message.

        Raises ChannelClosedError once the channel is closed and drained.
        """
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker in place so later receivers see closure too
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosedError(f"Channel closed: {self.name}", channel=self.name)
        return item

    def drain_nowait(self) -> list[Message]:
        """Take every queued message without suspending."""
        items = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            items.append(item)
        return items

    def __aiter__(self) -> AsyncIterator[Message]:
        if self._consuming:
            raise RuntimeError(f"Channel {self.name} already has a consumer")
        self._consuming = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Message]:
        try:
            while True:
                try:
                    message = await self.recv()
                except ChannelClosedError:
                    return
                yield message
        finally:
            self._consuming = False


class MessageBus:
    """The pair of channels shared by every component of a run."""

    def __init__(self):
        self.data = Channel("data")
        self.control = Channel("control")

    def close(self) -> None:
        self.data.close()
        self.control.close()
