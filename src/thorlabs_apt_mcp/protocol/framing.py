"""Message framing for the Thorlabs APT protocol.

Every message starts with a six byte header::

    +---------+---------+---------+---------+---------+---------+------------------+
    |  ID lo  |  ID hi  | Param 1 | Param 2 |  Dest   | Source  |  Data (optional) |
    +---------+---------+---------+---------+---------+---------+------------------+

- ID: little-endian message identity, e.g. ``0x0443`` travels as ``43 04``
- Param 1/2: command parameters for header-only messages. When the long
  message flag (``0x80``) is set in Dest they hold the little-endian length
  of the data packet instead.
- Dest/Source: ``0x50`` for a generic USB device, ``0x01`` for the host

How many bytes a message occupies is looked up by identity in the generated
message table. Fixed entries give the total length directly; ``VARIABLE``
entries are header-only unless the long flag is set, in which case the
header declares the data length.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Iterator, Mapping

from ..config import DEVICE, HEADER_SIZE, HOST, LONG_FLAG, ResyncPolicy
from ..errors import DecodeError, IncompleteFrameError, UnknownMessageError
from .table import LENGTHS, VARIABLE, name_of

if TYPE_CHECKING:
    from ..transport import Transport

logger = logging.getLogger(__name__)

MAX_DATA_LENGTH = 0xFFFF


@dataclass(frozen=True)
class Message:
    """A single decoded (or outgoing) APT message."""

    identity: int
    param1: int = 0
    param2: int = 0
    destination: int = DEVICE
    source: int = HOST
    payload: bytes = b""

    def __post_init__(self) -> None:
        if not 0 <= self.identity <= 0xFFFF:
            raise ValueError(f"Message identity must fit in 2 bytes, got {self.identity:#x}")
        for field_name in ("param1", "param2", "destination", "source"):
            value = getattr(self, field_name)
            if not 0 <= value <= 0xFF:
                raise ValueError(f"{field_name} must be 0-255, got {value}")
        if not isinstance(self.payload, bytes):
            object.__setattr__(self, "payload", bytes(self.payload))

    @classmethod
    def short(
        cls,
        identity: int,
        param1: int = 0,
        param2: int = 0,
        destination: int = DEVICE,
        source: int = HOST,
    ) -> Message:
        """Build a header-only message."""
        return cls(identity, param1, param2, destination, source)

    @classmethod
    def long(
        cls,
        identity: int,
        data: bytes,
        destination: int = DEVICE,
        source: int = HOST,
    ) -> Message:
        """Build a header-plus-data message.

        The data length is written into the two parameter bytes and the
        long message flag is set on the destination.
        """
        if len(data) > MAX_DATA_LENGTH:
            raise ValueError(f"Data packet must be at most {MAX_DATA_LENGTH} bytes, got {len(data)}")
        length = len(data)
        return cls(
            identity,
            length & 0xFF,
            (length >> 8) & 0xFF,
            destination | LONG_FLAG,
            source,
            bytes(data),
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Message:
        """Split one complete, already framed message into its fields."""
        if len(data) < HEADER_SIZE:
            raise ValueError(f"Message must be at least {HEADER_SIZE} bytes, got {len(data)}")
        return cls(
            identity=int.from_bytes(data[0:2], "little"),
            param1=data[2],
            param2=data[3],
            destination=data[4],
            source=data[5],
            payload=bytes(data[HEADER_SIZE:]),
        )

    @property
    def name(self) -> str:
        return name_of(self.identity)

    @property
    def is_long(self) -> bool:
        return bool(self.destination & LONG_FLAG)

    @property
    def data_length(self) -> int:
        """Length declared in the header (only meaningful for long messages)."""
        return self.param1 | (self.param2 << 8)

    @property
    def total_length(self) -> int:
        return HEADER_SIZE + len(self.payload)

    def to_bytes(self) -> bytes:
        return (
            self.identity.to_bytes(2, "little")
            + bytes([self.param1, self.param2, self.destination, self.source])
            + self.payload
        )

    def __repr__(self) -> str:
        return (
            f"Message({self.name}, id=0x{self.identity:04X}, "
            f"params=({self.param1:#04x}, {self.param2:#04x}), "
            f"dest={self.destination:#04x}, src={self.source:#04x}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


class DecoderState(Enum):
    AWAITING_HEADER = "awaiting_header"
    AWAITING_PAYLOAD = "awaiting_payload"


class FrameDecoder:
    """Turns an arbitrarily chunked byte stream into complete messages.

    Bytes are pushed in with :meth:`feed` and complete messages are pulled
    out by iterating the decoder::

        decoder = FrameDecoder()
        decoder.feed(chunk)
        for message in decoder:
            ...

    An identity that is not in the table makes the framing position
    untrustworthy. With ``ResyncPolicy.FAIL`` the decoder raises
    :class:`UnknownMessageError` and refuses further input; a new decoder
    may only resume if the transport delivers message-aligned chunks.
    With ``ResyncPolicy.SCAN`` it discards bytes one at a time until a
    known identity lines up.
    """

    def __init__(
        self,
        lengths: Mapping[int, int | None] = LENGTHS,
        resync: ResyncPolicy | str = ResyncPolicy.FAIL,
    ) -> None:
        self._lengths = lengths
        self._resync = ResyncPolicy(resync)
        self._buffer = bytearray()
        self._expected: int | None = None
        self._error: DecodeError | None = None
        self._scanning = False
        self.skipped = 0

    @property
    def state(self) -> DecoderState:
        if self._expected is None:
            return DecoderState.AWAITING_HEADER
        return DecoderState.AWAITING_PAYLOAD

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet emitted as a message."""
        return len(self._buffer)

    @property
    def failed(self) -> bool:
        return self._error is not None

    def feed(self, data: bytes) -> None:
        self._check_usable()
        self._buffer += data

    def __iter__(self) -> Iterator[Message]:
        return self

    def __next__(self) -> Message:
        self._check_usable()
        while self._expected is None:
            if len(self._buffer) < HEADER_SIZE:
                raise StopIteration
            self._expected = self._frame_length()

        if len(self._buffer) < self._expected:
            raise StopIteration

        frame = bytes(self._buffer[: self._expected])
        del self._buffer[: self._expected]
        self._expected = None
        return Message.from_bytes(frame)

    def close(self) -> None:
        """Signal end of stream.

        Raises:
            IncompleteFrameError: If part of a message is still buffered.
        """
        if self._buffer:
            pending = bytes(self._buffer)
            self.reset()
            raise IncompleteFrameError(pending)

    def reset(self) -> None:
        self._buffer.clear()
        self._expected = None
        self._scanning = False

    def _check_usable(self) -> None:
        if self._error is not None:
            raise DecodeError(
                "Decoder lost framing after an unknown message ID; start a new decoder"
            ) from self._error

    def _frame_length(self) -> int | None:
        """Total length of the message at the head of the buffer.

        Returns ``None`` when a byte was discarded while scanning.
        """
        identity = int.from_bytes(self._buffer[0:2], "little")
        try:
            length = self._lengths[identity]
        except KeyError:
            if self._resync is ResyncPolicy.SCAN:
                if not self._scanning:
                    logger.warning("Unknown message ID 0x%04X, scanning for next header", identity)
                    self._scanning = True
                del self._buffer[0]
                self.skipped += 1
                return None
            self._error = UnknownMessageError(identity)
            raise self._error from None

        if self._scanning:
            logger.info("Resynchronised on %s after discarding %d byte(s)", name_of(identity), self.skipped)
            self._scanning = False

        if length is VARIABLE:
            if self._buffer[4] & LONG_FLAG:
                return HEADER_SIZE + int.from_bytes(self._buffer[2:4], "little")
            return HEADER_SIZE
        return length


def decode(data: bytes, **kwargs) -> list[Message]:
    """Decode a complete byte string into messages."""
    decoder = FrameDecoder(**kwargs)
    decoder.feed(data)
    messages = list(decoder)
    decoder.close()
    return messages


async def read_messages(
    transport: Transport, decoder: FrameDecoder | None = None
) -> AsyncIterator[Message]:
    """Yield messages from ``transport`` until it reports end of stream."""
    decoder = decoder if decoder is not None else FrameDecoder()
    while True:
        chunk = await transport.read()
        if not chunk:
            decoder.close()
            return
        decoder.feed(chunk)
        for message in decoder:
            yield message
