"""Exception types raised by the APT communication engine."""

from __future__ import annotations


class AptError(Exception):
    """Base class for every error raised by this package."""


class TableError(AptError, ValueError):
    """The protocol message table is malformed."""


class TransportError(AptError, ConnectionError):
    """The connection to the device failed or was closed."""


class DecodeError(AptError):
    """The incoming byte stream could not be framed into messages."""


class UnknownMessageError(DecodeError, KeyError):
    """A message identity is not present in the protocol table."""

    def __init__(self, identity: int) -> None:
        super().__init__(identity)
        self.identity = identity

    def __str__(self) -> str:
        return f"0x{self.identity:04X} does not correspond to a known message ID"


class IncompleteFrameError(DecodeError, TransportError):
    """The stream ended part way through a message."""

    def __init__(self, pending: bytes) -> None:
        super().__init__(
            f"Stream closed with {len(pending)} byte(s) of an incomplete message buffered"
        )
        self.pending = pending


class ChannelClosed(AptError):
    """A subscription was read after the caller closed it."""


class RequestError(AptError):
    """A request did not produce a response."""


class RequestTimeout(RequestError, TimeoutError):
    """No matching response arrived before the deadline."""

    def __init__(self, expect: int, timeout: float) -> None:
        super().__init__(
            f"No response to 0x{expect:04X} within {timeout:.3f}s"
        )
        self.expect = expect
        self.timeout = timeout


class RequestCancelled(RequestError):
    """The caller abandoned the request before a response arrived."""

    def __init__(self, expect: int) -> None:
        super().__init__(f"Request awaiting 0x{expect:04X} was cancelled")
        self.expect = expect
