"""Message identity constants and command builders.

Builders return :class:`~thorlabs_apt_mcp.protocol.framing.Message` objects
addressed from the host to a generic USB device. Positions are raw encoder
counts; converting to physical units depends on the attached stage.
"""

from __future__ import annotations

from enum import IntEnum

from .framing import Message


class MessageId(IntEnum):
    """APT message identities used by the command builders."""

    HW_DISCONNECT = 0x0002
    HW_REQ_INFO = 0x0005
    HW_GET_INFO = 0x0006
    HW_START_UPDATEMSGS = 0x0011
    HW_STOP_UPDATEMSGS = 0x0012
    HW_RESPONSE = 0x0080
    HW_RICHRESPONSE = 0x0081
    MOD_SET_CHANENABLESTATE = 0x0210
    MOD_REQ_CHANENABLESTATE = 0x0211
    MOD_GET_CHANENABLESTATE = 0x0212
    MOD_IDENTIFY = 0x0223
    MOT_REQ_STATUSBITS = 0x0429
    MOT_GET_STATUSBITS = 0x042A
    MOT_MOVE_HOME = 0x0443
    MOT_MOVE_HOMED = 0x0444
    MOT_MOVE_ABSOLUTE = 0x0453
    MOT_MOVE_COMPLETED = 0x0464
    MOT_MOVE_STOP = 0x0465
    MOT_MOVE_STOPPED = 0x0466
    MOT_REQ_USTATUSUPDATE = 0x0490
    MOT_GET_USTATUSUPDATE = 0x0491
    MOT_ACK_USTATUSUPDATE = 0x0492


class StopMode(IntEnum):
    IMMEDIATE = 0x01
    PROFILED = 0x02


ENABLED = 0x01
DISABLED = 0x02

MAX_CHANNEL = 4
POSITION_MIN = -(2**31)
POSITION_MAX = 2**31 - 1


def _check_channel(channel: int) -> None:
    if not 1 <= channel <= MAX_CHANNEL:
        raise ValueError(f"Channel must be 1-{MAX_CHANNEL}, got {channel}")


def build_command(identity: MessageId, param1: int = 0, param2: int = 0) -> Message:
    """Build a header-only command."""
    return Message.short(identity, param1, param2)


def build_identify(channel: int = 1) -> Message:
    """Build a MOD_IDENTIFY command to flash the controller's front panel LED."""
    _check_channel(channel)
    return build_command(MessageId.MOD_IDENTIFY, channel)


def build_req_hw_info() -> Message:
    """Build a HW_REQ_INFO command. The device replies with HW_GET_INFO."""
    return build_command(MessageId.HW_REQ_INFO)


def build_start_update_messages() -> Message:
    return build_command(MessageId.HW_START_UPDATEMSGS)


def build_stop_update_messages() -> Message:
    return build_command(MessageId.HW_STOP_UPDATEMSGS)


def build_set_channel_enable_state(channel: int, enabled: bool) -> Message:
    """Build a MOD_SET_CHANENABLESTATE command.

    Args:
        channel: Channel number 1-4.
        enabled: Energise (True) or de-energise (False) the motor.
    """
    _check_channel(channel)
    return build_command(
        MessageId.MOD_SET_CHANENABLESTATE, channel, ENABLED if enabled else DISABLED
    )


def build_req_channel_enable_state(channel: int) -> Message:
    _check_channel(channel)
    return build_command(MessageId.MOD_REQ_CHANENABLESTATE, channel)


def build_home(channel: int = 1) -> Message:
    """Build a MOT_MOVE_HOME command. The device replies with MOT_MOVE_HOMED."""
    _check_channel(channel)
    return build_command(MessageId.MOT_MOVE_HOME, channel)


def build_move_absolute(channel: int = 1, position: int | None = None) -> Message:
    """Build a MOT_MOVE_ABSOLUTE command.

    Without ``position`` the short form is sent and the controller moves to
    its stored absolute-move parameter. With ``position`` (encoder counts)
    the long form carries the target. Either way the device replies with
    MOT_MOVE_COMPLETED.
    """
    _check_channel(channel)
    if position is None:
        return build_command(MessageId.MOT_MOVE_ABSOLUTE, channel)
    if not POSITION_MIN <= position <= POSITION_MAX:
        raise ValueError(f"Position must fit in a signed 32-bit integer, got {position}")
    data = channel.to_bytes(2, "little") + position.to_bytes(4, "little", signed=True)
    return Message.long(MessageId.MOT_MOVE_ABSOLUTE, data)


def build_stop(channel: int = 1, immediate: bool = False) -> Message:
    """Build a MOT_MOVE_STOP command. The device replies with MOT_MOVE_STOPPED."""
    _check_channel(channel)
    mode = StopMode.IMMEDIATE if immediate else StopMode.PROFILED
    return build_command(MessageId.MOT_MOVE_STOP, channel, mode)


def build_req_status_update(channel: int = 1) -> Message:
    """Build a MOT_REQ_USTATUSUPDATE command."""
    _check_channel(channel)
    return build_command(MessageId.MOT_REQ_USTATUSUPDATE, channel)


def build_ack_status_update() -> Message:
    """Build the keep-alive sent in reply to unsolicited status updates."""
    return build_command(MessageId.MOT_ACK_USTATUSUPDATE)
