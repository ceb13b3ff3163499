"""High-level commands for a single-channel APT motion controller.

Each method is one request/response exchange built on
:class:`~thorlabs_apt_mcp.session.Session`. Positions are raw encoder counts.
"""

from __future__ import annotations

import logging

from .config import SessionConfig
from .errors import AptError
from .protocol.commands import (
    MessageId,
    build_ack_status_update,
    build_home,
    build_identify,
    build_move_absolute,
    build_req_channel_enable_state,
    build_req_hw_info,
    build_req_status_update,
    build_set_channel_enable_state,
    build_start_update_messages,
    build_stop,
    build_stop_update_messages,
)
from .protocol.parser import (
    ChannelEnableState,
    HardwareInfo,
    MotorStatus,
    parse_channel_enable_state,
    parse_hw_info,
    parse_motor_status,
)
from .session import Session
from .transport.usb_connection import USBConnection

logger = logging.getLogger(__name__)


class APTDevice:
    """Typed wrappers around the raw request/response exchanges."""

    def __init__(self, session: Session, channel: int = 1) -> None:
        self.session = session
        self.channel = channel

    @property
    def config(self) -> SessionConfig:
        return self.session.config

    async def close(self) -> None:
        await self.session.close()

    async def identify(self) -> None:
        """Flash the front panel LED. The device sends no reply."""
        await self.session.send(build_identify(self.channel))

    async def hardware_info(self) -> HardwareInfo:
        response = await self.session.request(
            build_req_hw_info(), MessageId.HW_GET_INFO, join=True
        )
        info = parse_hw_info(response)
        if info is None:
            raise AptError(f"Malformed hardware info response: {response!r}")
        return info

    async def set_enabled(self, enabled: bool) -> None:
        """Energise or de-energise the motor.

        The set command has no reply, so the state is read back to confirm.
        """
        await self.session.send(build_set_channel_enable_state(self.channel, enabled))
        state = await self.enable_state()
        if state.enabled != enabled:
            raise AptError(
                f"Channel {self.channel} is still {'enabled' if state.enabled else 'disabled'}"
            )

    async def enable_state(self) -> ChannelEnableState:
        response = await self.session.request(
            build_req_channel_enable_state(self.channel),
            MessageId.MOD_GET_CHANENABLESTATE,
        )
        return parse_channel_enable_state(response)

    async def is_enabled(self) -> bool:
        return (await self.enable_state()).enabled

    async def home(self, timeout: float | None = None) -> None:
        """Home the stage and wait for MOT_MOVE_HOMED.

        A home already in progress is joined rather than restarted.
        """
        await self.session.request(
            build_home(self.channel),
            MessageId.MOT_MOVE_HOMED,
            timeout=self.config.long_timeout if timeout is None else timeout,
            join=True,
        )
        logger.info("Channel %d homed", self.channel)

    async def move_absolute(self, position: int | None = None, timeout: float | None = None) -> MotorStatus:
        """Move to ``position`` (encoder counts) and wait for MOT_MOVE_COMPLETED.

        Without ``position`` the controller's stored absolute-move
        parameter is used.
        """
        response = await self.session.request(
            build_move_absolute(self.channel, position),
            MessageId.MOT_MOVE_COMPLETED,
            timeout=self.config.long_timeout if timeout is None else timeout,
        )
        return self._motor_status(response)

    async def stop(self, immediate: bool = False, timeout: float | None = None) -> MotorStatus:
        """Stop any motion and wait for MOT_MOVE_STOPPED."""
        response = await self.session.request(
            build_stop(self.channel, immediate),
            MessageId.MOT_MOVE_STOPPED,
            timeout=self.config.long_timeout if timeout is None else timeout,
            join=True,
        )
        return self._motor_status(response)

    async def status(self) -> MotorStatus:
        """Request a status update (position, velocity, current, status bits)."""
        response = await self.session.request(
            build_req_status_update(self.channel),
            MessageId.MOT_GET_USTATUSUPDATE,
            join=True,
        )
        await self.session.send(build_ack_status_update())
        return self._motor_status(response)

    async def start_update_messages(self) -> None:
        await self.session.send(build_start_update_messages())

    async def stop_update_messages(self) -> None:
        await self.session.send(build_stop_update_messages())

    @staticmethod
    def _motor_status(response) -> MotorStatus:
        status = parse_motor_status(response)
        if status is None:
            raise AptError(f"Malformed status response: {response!r}")
        return status


async def open_device(
    serial_number: str | None = None,
    channel: int = 1,
    config: SessionConfig | None = None,
) -> APTDevice:
    """Open a USB connection, start a session and wrap it in an :class:`APTDevice`."""
    connection = USBConnection(serial_number=serial_number)
    await connection.open()
    session = Session(connection, config=config if config is not None else SessionConfig.from_env())
    session.start()
    return APTDevice(session, channel)
