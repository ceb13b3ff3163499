"""Async communication engine for Thorlabs APT motion controllers over USB."""

from .config import ResyncPolicy, SessionConfig
from .device import APTDevice, open_device
from .dispatcher import Dispatcher
from .errors import (
    AptError,
    ChannelClosed,
    DecodeError,
    IncompleteFrameError,
    RequestCancelled,
    RequestError,
    RequestTimeout,
    TableError,
    TransportError,
    UnknownMessageError,
)
from .protocol.commands import MessageId
from .protocol.framing import FrameDecoder, Message
from .registry import ChannelRegistry, Subscription
from .session import Session

__all__ = [
    "APTDevice",
    "AptError",
    "ChannelClosed",
    "ChannelRegistry",
    "DecodeError",
    "Dispatcher",
    "FrameDecoder",
    "IncompleteFrameError",
    "Message",
    "MessageId",
    "RequestCancelled",
    "RequestError",
    "RequestTimeout",
    "ResyncPolicy",
    "Session",
    "SessionConfig",
    "Subscription",
    "TableError",
    "TransportError",
    "UnknownMessageError",
    "open_device",
]
