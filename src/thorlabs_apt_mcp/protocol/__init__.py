"""Protocol layer: message table, framing, command builders, and response parsing."""

from .framing import FrameDecoder, Message, decode
from .commands import MessageId, build_command
