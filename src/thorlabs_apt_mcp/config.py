"""Connection constants and session settings.

Module constants describe the fixed parts of the APT protocol and the FTDI
USB bridge. ``SessionConfig`` holds the knobs a caller may want to change,
and can be populated from ``APT_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

# USB
VENDOR_ID = 0x0403  # FTDI
PRODUCT_ID = 0xFAF0  # Thorlabs APT controllers
INTERFACE = 0
EP_IN = 0x81
EP_OUT = 0x02
PACKET_SIZE = 64
MODEM_STATUS_SIZE = 2  # FTDI prefixes every IN packet with two status bytes
USB_TIMEOUT_MS = 200

# APT protocol
HEADER_SIZE = 6
HOST = 0x01
DEVICE = 0x50
LONG_FLAG = 0x80

# Request deadlines in seconds
SHORT_TIMEOUT = 0.5
LONG_TIMEOUT = 60.0


class ResyncPolicy(str, Enum):
    """What the frame decoder does with an identity missing from the table."""

    FAIL = "fail"
    SCAN = "scan"


@dataclass
class SessionConfig:
    """Settings for a :class:`~thorlabs_apt_mcp.session.Session`."""

    request_timeout: float = SHORT_TIMEOUT
    long_timeout: float = LONG_TIMEOUT
    resync: ResyncPolicy = ResyncPolicy.FAIL
    reclaim_idle: bool = True

    def __post_init__(self) -> None:
        if self.request_timeout <= 0:
            raise ValueError(
                f"request_timeout must be positive, got {self.request_timeout}"
            )
        if self.long_timeout <= 0:
            raise ValueError(f"long_timeout must be positive, got {self.long_timeout}")
        self.resync = ResyncPolicy(self.resync)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SessionConfig:
        """Build a config from ``APT_REQUEST_TIMEOUT``, ``APT_LONG_TIMEOUT`` and ``APT_RESYNC``."""
        env = os.environ if environ is None else environ
        config = cls()
        if "APT_REQUEST_TIMEOUT" in env:
            config.request_timeout = float(env["APT_REQUEST_TIMEOUT"])
        if "APT_LONG_TIMEOUT" in env:
            config.long_timeout = float(env["APT_LONG_TIMEOUT"])
        if "APT_RESYNC" in env:
            config.resync = env["APT_RESYNC"].strip().lower()
        config.__post_init__()
        return config
