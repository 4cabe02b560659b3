"""Core mlti components."""

from .config import ConfigLoader, MltiConfig, OutputConfig, RetryConfig
from .bus import Channel, MessageBus
from .messages import Message, MessageType, Sender, SenderKind
from .errors import (
    MltiError,
    ConfigError,
    SpawnError,
    ExhaustedRetriesError,
    ChannelClosedError,
)

__all__ = [
    "ConfigLoader",
    "MltiConfig",
    "OutputConfig",
    "RetryConfig",
    "Channel",
    "MessageBus",
    "Message",
    "MessageType",
    "Sender",
    "SenderKind",
    "MltiError",
    "ConfigError",
    "SpawnError",
    "ExhaustedRetriesError",
    "ChannelClosedError",
]
