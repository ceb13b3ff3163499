"""Byte transports the message engine runs over."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .usb_connection import DeviceInfo, USBConnection, list_devices

__all__ = ["Transport", "USBConnection", "DeviceInfo", "list_devices"]


@runtime_checkable
class Transport(Protocol):
    """An already-open duplex byte channel.

    ``read`` returns the next chunk of bytes in arrival order, with no
    alignment to message boundaries, and ``b""`` once the stream has ended.
    """

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...
