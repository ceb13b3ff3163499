"""Response parsing for device messages."""

from __future__ import annotations

from dataclasses import dataclass

from .commands import ENABLED, MessageId
from .framing import Message


@dataclass
class HardwareInfo:
    """Parsed HW_GET_INFO (0x0006) response."""

    serial_number: int
    model_number: str
    hardware_type: int
    firmware_version: str
    notes: str
    hardware_version: int
    module_state: int
    number_of_channels: int

    def to_dict(self) -> dict:
        return {
            "serial_number": self.serial_number,
            "model_number": self.model_number,
            "hardware_type": self.hardware_type,
            "firmware_version": self.firmware_version,
            "notes": self.notes,
            "hardware_version": self.hardware_version,
            "module_state": self.module_state,
            "number_of_channels": self.number_of_channels,
        }


@dataclass
class ChannelEnableState:
    """Parsed MOD_GET_CHANENABLESTATE (0x0212) response."""

    channel: int
    enabled: bool


# Motor status bits (APT protocol, MOT_GET_STATUSBITS)
STATUS_FLAGS = {
    0x00000001: "forward_hardware_limit",
    0x00000002: "reverse_hardware_limit",
    0x00000010: "moving_forward",
    0x00000020: "moving_reverse",
    0x00000040: "jogging_forward",
    0x00000080: "jogging_reverse",
    0x00000200: "homing",
    0x00000400: "homed",
    0x00001000: "tracking",
    0x00002000: "settled",
    0x00004000: "motion_error",
    0x01000000: "current_limit",
    0x80000000: "enabled",
}


@dataclass
class MotorStatus:
    """Position and status block shared by MOT_GET_USTATUSUPDATE (0x0491),
    MOT_MOVE_COMPLETED (0x0464) and MOT_MOVE_STOPPED (0x0466).

    Data packet layout: channel (2), position (4), velocity (2), motor
    current (2), status bits (4), all little-endian.
    """

    channel: int
    position: int
    velocity: int
    motor_current: int
    status_bits: int

    @property
    def flags(self) -> list[str]:
        return [name for bit, name in STATUS_FLAGS.items() if self.status_bits & bit]

    @property
    def is_moving(self) -> bool:
        return bool(self.status_bits & 0x000000F0)

    @property
    def is_homed(self) -> bool:
        return bool(self.status_bits & 0x00000400)

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "position": self.position,
            "velocity": self.velocity,
            "motor_current": self.motor_current,
            "status_bits": f"0x{self.status_bits:08X}",
            "flags": self.flags,
        }


MOTOR_STATUS_IDS = (
    MessageId.MOT_GET_USTATUSUPDATE,
    MessageId.MOT_MOVE_COMPLETED,
    MessageId.MOT_MOVE_STOPPED,
)


def _ascii(data: bytes) -> str:
    return data.split(b"\x00")[0].decode("ascii", errors="replace").strip()


def parse_hw_info(message: Message) -> HardwareInfo | None:
    """Parse a HW_GET_INFO response.

    The 84-byte data packet holds the serial number (4), model number (8),
    hardware type (2), firmware version (4), notes (48), reserved (12),
    hardware version (2), module state (2) and channel count (2).
    """
    if message.identity != MessageId.HW_GET_INFO:
        return None
    data = message.payload
    if len(data) < 84:
        return None

    fw = data[14:18]
    return HardwareInfo(
        serial_number=int.from_bytes(data[0:4], "little"),
        model_number=_ascii(data[4:12]),
        hardware_type=int.from_bytes(data[12:14], "little"),
        firmware_version=f"{fw[2]}.{fw[1]}.{fw[0]}",
        notes=_ascii(data[18:66]),
        hardware_version=int.from_bytes(data[78:80], "little"),
        module_state=int.from_bytes(data[80:82], "little"),
        number_of_channels=int.from_bytes(data[82:84], "little"),
    )


def parse_channel_enable_state(message: Message) -> ChannelEnableState | None:
    if message.identity != MessageId.MOD_GET_CHANENABLESTATE:
        return None
    return ChannelEnableState(channel=message.param1, enabled=message.param2 == ENABLED)


def parse_motor_status(message: Message) -> MotorStatus | None:
    """Parse any of the messages carrying a motor status block."""
    if message.identity not in MOTOR_STATUS_IDS:
        return None
    data = message.payload
    if len(data) < 14:
        return None
    return MotorStatus(
        channel=int.from_bytes(data[0:2], "little"),
        position=int.from_bytes(data[2:6], "little", signed=True),
        velocity=int.from_bytes(data[6:8], "little", signed=True),
        motor_current=int.from_bytes(data[8:10], "little", signed=True),
        status_bits=int.from_bytes(data[10:14], "little"),
    )


def parse_response(message: Message):
    """Auto-dispatch a message to the appropriate response parser.

    Returns the parsed response dataclass, or the message itself if no
    specific parser matches.
    """
    parsers = {
        MessageId.HW_GET_INFO: parse_hw_info,
        MessageId.MOD_GET_CHANENABLESTATE: parse_channel_enable_state,
        MessageId.MOT_GET_USTATUSUPDATE: parse_motor_status,
        MessageId.MOT_MOVE_COMPLETED: parse_motor_status,
        MessageId.MOT_MOVE_STOPPED: parse_motor_status,
    }
    parser = parsers.get(message.identity)
    if parser:
        result = parser(message)
        if result is not None:
            return result
    return message
