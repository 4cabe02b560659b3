"""
Output sequencer - consumes the data channel.

Live mode renders each message as it arrives. Grouped mode buffers per
task index and, once the run terminates, flushes the buffers in index
order so the output reads as if the tasks ran one after another.
"""

from collections import defaultdict
from typing import Optional

import structlog

from ..core.bus import Channel
from ..core.errors import ChannelClosedError
from ..core.messages import Message, MessageType
from .formatter import LineRenderer


logger = structlog.get_logger()


class OutputSequencer:
    """Single consumer of the data channel."""

    def __init__(self, renderer: LineRenderer, grouped: bool = False):
        self.renderer = renderer
        self.grouped = grouped
        self._buffers: dict[int, list[Message]] = defaultdict(list)
        self._trailing: list[Message] = []
        self.rendered = 0

    async def run(self, channel: Channel) -> None:
        """Consume until a KILL message arrives or the channel closes."""
        while True:
            try:
                message = await channel.recv()
            except ChannelClosedError:
                logger.debug("sequencer_channel_closed", channel=channel.name)
                break

            if message.type == MessageType.KILL:
                break
            self._accept(message)

        for message in channel.drain_nowait():
            if message.type != MessageType.KILL:
                self._accept(message)

        if self.grouped:
            self.flush()

    def _accept(self, message: Message) -> None:
        if message.is_control:
            return
        if not self.grouped:
            self._render(message)
        elif message.sender.index is not None:
            self._buffers[message.sender.index].append(message)
        else:
            self._trailing.append(message)

    def flush(self) -> None:
        """Render every buffer in ascending task index, then unindexed lines."""
        for index in sorted(self._buffers):
            for message in self._buffers[index]:
                self._render(message)
        for message in self._trailing:
            self._render(message)

        logger.debug(
            "sequencer_flushed",
            groups=len(self._buffers),
            trailing=len(self._trailing),
        )
        self._buffers.clear()
        self._trailing.clear()

    def buffered(self, index: Optional[int] = None) -> int:
        """Number of buffered messages, for one task or in total."""
        if index is not None:
            return len(self._buffers.get(index, []))
        return sum(len(b) for b in self._buffers.values()) + len(self._trailing)

    def _render(self, message: Message) -> None:
        self.renderer.render(message)
        self.rendered += 1
