"""USB connection to a Thorlabs APT motion controller.

APT controllers present an FTDI USB-serial bridge. We claim interface 0,
configure the bridge's virtual serial port (115200 baud, 8N1, RTS/CTS flow
control) with vendor control transfers, then exchange raw protocol bytes on
the bulk endpoints 0x81 (IN) and 0x02 (OUT). The FTDI chip prefixes every IN
packet with two modem status bytes, which are stripped here.

pyusb calls block, so they run on the event loop's default executor.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass

import usb.core
import usb.util

from ..config import (
    EP_IN,
    EP_OUT,
    INTERFACE,
    MODEM_STATUS_SIZE,
    PACKET_SIZE,
    PRODUCT_ID,
    USB_TIMEOUT_MS,
    VENDOR_ID,
)
from ..errors import TransportError

logger = logging.getLogger(__name__)

FTDI_VENDOR_OUT = usb.util.build_request_type(
    usb.util.CTRL_OUT, usb.util.CTRL_TYPE_VENDOR, usb.util.CTRL_RECIPIENT_DEVICE
)

# FTDI vendor requests as (bRequest, wValue)
RESET_CONTROLLER = (0x00, 0x0000)
PURGE_RX = (0x00, 0x0001)
PURGE_TX = (0x00, 0x0002)
SET_RTS = (0x01, 0x0202)
FLOW_CONTROL_RTS_CTS = (0x02, 0x0200)
BAUD_RATE_115200 = (0x03, 0x001A)
EIGHT_DATA_ONE_STOP_NO_PARITY = (0x04, 0x0008)
PURGE_DWELL = 0.05
PACKETS_PER_READ = 4


@dataclass
class DeviceInfo:
    """Basic device identification from USB descriptors."""

    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    serial_number: str = ""
    manufacturer: str = ""
    product: str = ""


def _describe(dev) -> DeviceInfo:
    def string(index: int) -> str:
        if not index:
            return ""
        try:
            return usb.util.get_string(dev, index) or ""
        except (usb.core.USBError, ValueError):
            return ""

    return DeviceInfo(
        vendor_id=dev.idVendor,
        product_id=dev.idProduct,
        serial_number=string(dev.iSerialNumber),
        manufacturer=string(dev.iManufacturer),
        product=string(dev.iProduct),
    )


def list_devices(vendor_id: int = VENDOR_ID, product_id: int | None = PRODUCT_ID) -> list[DeviceInfo]:
    """List connected APT controllers."""
    match = {"idVendor": vendor_id}
    if product_id is not None:
        match["idProduct"] = product_id
    return [_describe(dev) for dev in usb.core.find(find_all=True, **match)]


def strip_modem_status(raw: bytes, packet_size: int = PACKET_SIZE) -> bytes:
    """Remove the FTDI status prefix from each packet of a bulk IN transfer."""
    data = bytearray()
    for offset in range(0, len(raw), packet_size):
        data += raw[offset + MODEM_STATUS_SIZE : offset + packet_size]
    return bytes(data)


class USBConnection:
    """Async byte transport over the controller's FTDI bulk endpoints.

    Usage::

        conn = USBConnection(serial_number="27000001")
        await conn.open()
        await conn.write(message.to_bytes())
        chunk = await conn.read()
        await conn.close()
    """

    def __init__(
        self,
        serial_number: str | None = None,
        vendor_id: int = VENDOR_ID,
        product_id: int | None = PRODUCT_ID,
        timeout_ms: int = USB_TIMEOUT_MS,
    ) -> None:
        self._serial_number = serial_number
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._timeout_ms = timeout_ms
        self._device = None
        self._packet_size = PACKET_SIZE
        self._connected = False
        self._device_info = DeviceInfo(vendor_id=vendor_id, product_id=product_id or 0)
        # Held by the executor thread for the duration of each transfer, so
        # release never runs while a read or write is still on the handle.
        self._read_lock = threading.Lock()
        self._write_lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    async def open(self) -> DeviceInfo:
        """Find, claim and configure the controller.

        Raises:
            TransportError: If no matching device (or more than one) is
                found, or it cannot be claimed.
        """
        if self._connected:
            return self._device_info
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._open_blocking)

    def _find(self):
        match = {"idVendor": self._vendor_id}
        if self._product_id is not None:
            match["idProduct"] = self._product_id
        candidates = list(usb.core.find(find_all=True, **match))
        if self._serial_number is not None:
            candidates = [
                dev for dev in candidates
                if _describe(dev).serial_number == self._serial_number
            ]

        target = self._serial_number or f"{self._vendor_id:#06x}"
        if not candidates:
            raise TransportError(f"No APT device {target} was found")
        if len(candidates) > 1:
            raise TransportError(
                f"Multiple APT devices match {target}; specify a serial number"
            )
        return candidates[0]

    def _open_blocking(self) -> DeviceInfo:
        dev = self._find()
        try:
            if dev.is_kernel_driver_active(INTERFACE):
                dev.detach_kernel_driver(INTERFACE)
        except (NotImplementedError, usb.core.USBError) as e:
            logger.debug("Could not detach kernel driver: %s", e)

        try:
            usb.util.claim_interface(dev, INTERFACE)
            self._packet_size = self._in_packet_size(dev)
            self._configure_serial(dev)
        except usb.core.USBError as e:
            usb.util.dispose_resources(dev)
            raise TransportError(f"Could not claim APT device: {e}") from e

        self._device = dev
        self._device_info = _describe(dev)
        self._connected = True
        logger.info(
            "Connected to %s %s (serial %s)",
            self._device_info.manufacturer,
            self._device_info.product,
            self._device_info.serial_number,
        )
        return self._device_info

    @staticmethod
    def _in_packet_size(dev) -> int:
        intf = dev.get_active_configuration()[(INTERFACE, 0)]
        endpoint = usb.util.find_descriptor(
            intf, custom_match=lambda ep: ep.bEndpointAddress == EP_IN
        )
        return endpoint.wMaxPacketSize if endpoint is not None else PACKET_SIZE

    @staticmethod
    def _configure_serial(dev) -> None:
        """Apply the serial port settings the APT protocol requires."""

        def control(request: tuple[int, int]) -> None:
            b_request, w_value = request
            dev.ctrl_transfer(FTDI_VENDOR_OUT, b_request, w_value, 0, None, USB_TIMEOUT_MS)

        control(RESET_CONTROLLER)
        control(BAUD_RATE_115200)
        control(EIGHT_DATA_ONE_STOP_NO_PARITY)
        time.sleep(PURGE_DWELL)
        control(PURGE_RX)
        control(PURGE_TX)
        time.sleep(PURGE_DWELL)
        control(FLOW_CONTROL_RTS_CTS)
        control(SET_RTS)

    async def close(self) -> None:
        """Release the claimed interface."""
        if not self._connected:
            return
        self._connected = False
        dev, self._device = self._device, None
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._release, dev)
        except usb.core.USBError as e:
            logger.warning("Error closing device: %s", e)
        finally:
            logger.info("Disconnected")

    def _release(self, dev) -> None:
        # A read abandoned by a cancelled task finishes within the USB timeout.
        with self._read_lock, self._write_lock:
            usb.util.release_interface(dev, INTERFACE)
            usb.util.dispose_resources(dev)

    async def write(self, data: bytes) -> None:
        """Write raw protocol bytes to the OUT endpoint.

        Raises:
            TransportError: If not connected or the transfer fails.
        """
        if not self._connected:
            raise TransportError("Not connected to device")
        loop = asyncio.get_running_loop()
        try:
            written = await loop.run_in_executor(None, self._write_blocking, data)
        except usb.core.USBError as e:
            raise TransportError(f"USB write failed: {e}") from e
        if written != len(data):
            raise TransportError(f"Short USB write: {written} of {len(data)} bytes")

    async def read(self) -> bytes:
        """Wait for the next chunk of protocol bytes.

        Read timeouts are retried until data arrives. Returns ``b""`` once
        the connection has been closed.

        Raises:
            TransportError: If the transfer fails while connected.
        """
        loop = asyncio.get_running_loop()
        while self._connected:
            try:
                data = await loop.run_in_executor(None, self._read_blocking)
            except usb.core.USBError as e:
                if not self._connected:
                    break
                raise TransportError(f"USB read failed: {e}") from e
            if data:
                return data
        return b""

    def _write_blocking(self, data: bytes) -> int:
        with self._write_lock:
            dev = self._device
            if dev is None:
                raise TransportError("Not connected to device")
            return dev.write(EP_OUT, data, self._timeout_ms)

    def _read_blocking(self) -> bytes:
        with self._read_lock:
            dev = self._device
            if dev is None:
                return b""
            try:
                raw = dev.read(EP_IN, self._packet_size * PACKETS_PER_READ, self._timeout_ms)
            except usb.core.USBTimeoutError:
                return b""
        return strip_modem_status(bytes(raw), self._packet_size)
