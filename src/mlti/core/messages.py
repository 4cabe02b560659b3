"""Messages passed between tasks, the scheduler and the output sequencer."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class MessageType(Enum):
    """Message tags. Data tags are rendered, control tags drive shutdown."""
    TEXT = "text"
    ERROR = "error"
    KILL = "kill"                              # Termination signal on the data channel
    COMPLETE = "complete"                      # Scheduler finished naturally
    KILL_ALL = "kill_all"                      # Unconditional stop (user interrupt)
    KILL_OTHERS = "kill_others"                # A task finished under --kill-others
    KILL_ALL_ON_ERROR = "kill_all_on_error"    # A task failed under --kill-others-on-fail


CONTROL_TYPES = frozenset({
    MessageType.COMPLETE,
    MessageType.KILL_ALL,
    MessageType.KILL_OTHERS,
    MessageType.KILL_ALL_ON_ERROR,
})


class SenderKind(Enum):
    """Who produced a message."""
    MAIN = "main"
    TASK = "task"
    PROCESS = "process"
    SCHEDULER = "scheduler"


@dataclass(frozen=True)
class Sender:
    """Originating sender descriptor."""
    kind: SenderKind
    index: Optional[int] = None
    name: str = ""


MAIN_SENDER = Sender(SenderKind.MAIN, name="mlti")
SCHEDULER_SENDER = Sender(SenderKind.SCHEDULER, name="scheduler")


@dataclass(frozen=True)
class Message:
    """An immutable message on the bus."""
    type: MessageType
    sender: Sender
    data: str = ""
    color: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_control(self) -> bool:
        return self.type in CONTROL_TYPES

    @classmethod
    def text(cls, sender: Sender, data: str, color: Optional[str] = None) -> "Message":
        return cls(MessageType.TEXT, sender, data, color)

    @classmethod
    def error(cls, sender: Sender, data: str, color: Optional[str] = None) -> "Message":
        return cls(MessageType.ERROR, sender, data, color)

    @classmethod
    def control(cls, type_: MessageType, sender: Sender = MAIN_SENDER) -> "Message":
        return cls(type_, sender)
