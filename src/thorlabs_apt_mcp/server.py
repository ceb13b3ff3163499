"""MCP server entry point for Thorlabs APT motion controllers.

Exposes device tools via the Model Context Protocol using the official
Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .device import APTDevice, open_device
from .errors import AptError, RequestTimeout
from .transport.usb_connection import list_devices

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "thorlabs-apt",
    instructions="MCP server for Thorlabs APT motion controllers (KDC101 and similar)",
)

# Global connection state
_device: APTDevice | None = None


def _get_device() -> APTDevice:
    """Get the active device, raising if not connected."""
    if _device is None or _device.session.failure is not None:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _device


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def find_devices() -> dict[str, Any]:
    """List connected Thorlabs APT controllers by serial number."""
    return {
        "devices": [
            {
                "serial_number": info.serial_number,
                "product": info.product,
                "manufacturer": info.manufacturer,
            }
            for info in list_devices()
        ]
    }


@mcp.tool()
async def connect(serial_number: str | None = None, channel: int = 1) -> dict[str, Any]:
    """Open a USB connection to an APT controller.

    Args:
        serial_number: Controller serial number. May be omitted when only
            one controller is attached.
        channel: Motor channel to drive (default 1).
    """
    global _device
    if _device is not None and _device.session.failure is None:
        return {"connected": True, "message": "Already connected"}
    if _device is not None:
        # Release the failed connection so the interface can be claimed again
        old, _device = _device, None
        await old.close()

    _device = await open_device(serial_number, channel)
    result: dict[str, Any] = {"connected": True}
    try:
        result.update((await _device.hardware_info()).to_dict())
    except RequestTimeout:
        result["warning"] = "Device did not answer HW_REQ_INFO"
    return result


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the USB connection to the controller."""
    global _device
    if _device is not None:
        await _device.close()
        _device = None
    return {"disconnected": True}


@mcp.tool()
async def get_device_info() -> dict[str, Any]:
    """Retrieve hardware information (model, serial number, firmware)."""
    device = _get_device()
    try:
        return (await device.hardware_info()).to_dict()
    except AptError as e:
        return {"error": str(e)}


@mcp.tool()
async def identify() -> dict[str, bool]:
    """Flash the controller's front panel LED."""
    await _get_device().identify()
    return {"identified": True}


# ─── MOTION TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
async def set_enabled(enabled: bool) -> dict[str, Any]:
    """Energise or de-energise the motor channel.

    Args:
        enabled: True to enable the motor, False to disable it.
    """
    device = _get_device()
    try:
        await device.set_enabled(enabled)
    except AptError as e:
        return {"error": str(e)}
    return {"channel": device.channel, "enabled": enabled}


@mcp.tool()
async def home(timeout: float | None = None) -> dict[str, Any]:
    """Home the stage and wait until homing completes.

    Args:
        timeout: Seconds to wait for the homed response. Defaults to the
            configured long timeout (``APT_LONG_TIMEOUT``).
    """
    device = _get_device()
    try:
        await device.home(timeout=timeout)
    except AptError as e:
        return {"error": str(e)}
    return {"channel": device.channel, "homed": True}


@mcp.tool()
async def move_absolute(position: int, timeout: float | None = None) -> dict[str, Any]:
    """Move to an absolute position and wait until the move completes.

    Args:
        position: Target position in encoder counts.
        timeout: Seconds to wait for the move-completed response. Defaults
            to the configured long timeout (``APT_LONG_TIMEOUT``).
    """
    device = _get_device()
    try:
        status = await device.move_absolute(position, timeout=timeout)
    except AptError as e:
        return {"error": str(e)}
    return status.to_dict()


@mcp.tool()
async def stop(immediate: bool = False) -> dict[str, Any]:
    """Stop any motion on the channel.

    Args:
        immediate: Stop abruptly instead of decelerating along the profile.
    """
    device = _get_device()
    try:
        status = await device.stop(immediate=immediate)
    except AptError as e:
        return {"error": str(e)}
    return status.to_dict()


@mcp.tool()
async def get_status() -> dict[str, Any]:
    """Read position, velocity, motor current and status flags."""
    device = _get_device()
    try:
        status = await device.status()
    except AptError as e:
        return {"error": str(e)}
    return status.to_dict()


@mcp.tool()
def get_traffic_stats() -> dict[str, Any]:
    """Report dispatched messages and responses nobody was waiting for."""
    dispatcher = _get_device().session.dispatcher
    return {
        "dispatched": dispatcher.dispatched,
        "unmatched": {
            f"0x{identity:04X}": count for identity, count in dispatcher.unmatched.items()
        },
        "active_channels": dispatcher.registry.active_channels(),
    }


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
