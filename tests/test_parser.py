"""Tests for response parsing."""

from thorlabs_apt_mcp.config import DEVICE, HOST
from thorlabs_apt_mcp.protocol.framing import Message
from thorlabs_apt_mcp.protocol.parser import (
    ChannelEnableState,
    HardwareInfo,
    MotorStatus,
    parse_channel_enable_state,
    parse_hw_info,
    parse_motor_status,
    parse_response,
)

from conftest import hw_info_payload, status_payload


def test_parse_hw_info():
    info = parse_hw_info(Message.long(0x0006, hw_info_payload(), HOST, DEVICE))
    assert info == HardwareInfo(
        serial_number=83000123,
        model_number="KDC101",
        hardware_type=16,
        firmware_version="3.2.4",
        notes="Brushed DC controller",
        hardware_version=1,
        module_state=0,
        number_of_channels=1,
    )
    assert info.to_dict()["model_number"] == "KDC101"


def test_parse_hw_info_rejects_short_or_wrong_message():
    assert parse_hw_info(Message.long(0x0006, bytes(40), HOST, DEVICE)) is None
    assert parse_hw_info(Message.short(0x0444, 1)) is None


def test_parse_channel_enable_state():
    state = parse_channel_enable_state(Message.short(0x0212, 1, 0x01, HOST, DEVICE))
    assert state == ChannelEnableState(channel=1, enabled=True)
    assert not parse_channel_enable_state(Message.short(0x0212, 1, 0x02)).enabled


def test_parse_motor_status():
    status = parse_motor_status(
        Message.long(0x0491, status_payload(-5000, 0x80000410), HOST, DEVICE)
    )
    assert status == MotorStatus(
        channel=1, position=-5000, velocity=-20, motor_current=150, status_bits=0x80000410
    )
    assert status.is_moving
    assert status.is_homed
    assert status.flags == ["moving_forward", "homed", "enabled"]
    assert status.to_dict()["status_bits"] == "0x80000410"


def test_move_completed_carries_status_block():
    status = parse_motor_status(Message.long(0x0464, status_payload(2000, 0x400), HOST, DEVICE))
    assert status.position == 2000
    assert not status.is_moving


def test_parse_response_dispatch():
    assert isinstance(
        parse_response(Message.long(0x0466, status_payload(0, 0), HOST, DEVICE)), MotorStatus
    )
    homed = Message.short(0x0444, 1)
    assert parse_response(homed) is homed
