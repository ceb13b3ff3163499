"""Shared fixtures: an in-memory transport standing in for the USB bridge."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from thorlabs_apt_mcp.config import DEVICE, HOST
from thorlabs_apt_mcp.protocol.framing import Message
from thorlabs_apt_mcp.session import Session


def reply(identity: int, param1: int = 0, param2: int = 0, data: bytes | None = None) -> bytes:
    """Wire bytes of a message sent from the device to the host."""
    if data is None:
        return Message.short(identity, param1, param2, destination=HOST, source=DEVICE).to_bytes()
    return Message.long(identity, data, destination=HOST, source=DEVICE).to_bytes()


def hw_info_payload() -> bytes:
    """84-byte HW_GET_INFO data packet for a KDC101."""
    data = bytearray(84)
    data[0:4] = (83000123).to_bytes(4, "little")
    data[4:12] = b"KDC101\x00\x00"
    data[12:14] = (16).to_bytes(2, "little")
    data[14:18] = bytes([4, 2, 3, 0])
    data[18:66] = b"Brushed DC controller".ljust(48, b"\x00")
    data[78:80] = (1).to_bytes(2, "little")
    data[80:82] = (0).to_bytes(2, "little")
    data[82:84] = (1).to_bytes(2, "little")
    return bytes(data)


def status_payload(position: int, status_bits: int, channel: int = 1) -> bytes:
    """14-byte motor status block."""
    return (
        channel.to_bytes(2, "little")
        + position.to_bytes(4, "little", signed=True)
        + (-20).to_bytes(2, "little", signed=True)
        + (150).to_bytes(2, "little", signed=True)
        + status_bits.to_bytes(4, "little")
    )


class FakeTransport:
    """Scripted duplex byte stream.

    ``replies`` maps a command identity to ``(delay, bytes)`` pairs that
    are fed back to the reader after each matching write.
    """

    def __init__(self, replies: dict[int, list[tuple[float, bytes]]] | None = None) -> None:
        self.replies = replies if replies is not None else {}
        self.writes: list[bytes] = []
        self.closed = False
        self._incoming: asyncio.Queue[bytes] = asyncio.Queue()

    def push(self, data: bytes) -> None:
        self._incoming.put_nowait(bytes(data))

    def push_eof(self) -> None:
        self._incoming.put_nowait(b"")

    def script(self, identity: int, data: bytes, delay: float = 0.0) -> None:
        self.replies.setdefault(identity, []).append((delay, data))

    async def read(self) -> bytes:
        return await self._incoming.get()

    async def write(self, data: bytes) -> None:
        data = bytes(data)
        self.writes.append(data)
        identity = int.from_bytes(data[0:2], "little")
        loop = asyncio.get_running_loop()
        for delay, response in self.replies.get(identity, ()):
            loop.call_later(delay, self.push, response)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.push_eof()

    def written_ids(self) -> list[int]:
        return [int.from_bytes(data[0:2], "little") for data in self.writes]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest_asyncio.fixture
async def session(transport):
    async with Session(transport) as s:
        yield s
