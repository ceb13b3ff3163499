"""Routes decoded messages from the read loop to their channel."""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Callable

from .config import ResyncPolicy
from .errors import TransportError
from .protocol.framing import FrameDecoder, Message, read_messages
from .registry import ChannelRegistry

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)

UnmatchedHook = Callable[[Message], None]


class Dispatcher:
    """Publishes each decoded message to the registry.

    Messages nobody is waiting for are expected traffic (status updates,
    acknowledgements) and are dropped, but every drop is counted per
    identity in :attr:`unmatched` and handed to ``on_unmatched`` if given,
    so a response that is never awaited because of a caller bug can still
    be spotted.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        on_unmatched: UnmatchedHook | None = None,
    ) -> None:
        self.registry = registry
        self.on_unmatched = on_unmatched
        self.unmatched: Counter[int] = Counter()
        self.dispatched = 0

    def dispatch(self, message: Message) -> int:
        """Publish ``message``; returns the number of subscribers reached."""
        self.dispatched += 1
        delivered = self.registry.publish(message)
        if delivered:
            logger.debug("Delivered %r to %d subscriber(s)", message, delivered)
            return delivered

        self.unmatched[message.identity] += 1
        logger.debug("No subscriber for %r", message)
        if self.on_unmatched is not None:
            try:
                self.on_unmatched(message)
            except Exception:
                logger.warning("Unmatched-message hook failed for %s", message.name, exc_info=True)
        return 0

    async def run(
        self,
        transport: Transport,
        decoder: FrameDecoder | None = None,
        resync: ResyncPolicy = ResyncPolicy.FAIL,
    ) -> None:
        """Decode and dispatch messages from ``transport`` until it ends.

        A framing or transport error fails every waiting subscriber and is
        re-raised; the loop cannot continue once framing is lost. A clean
        end of stream fails subscribers with a closed-connection error and
        returns.
        """
        if decoder is None:
            decoder = FrameDecoder(resync=resync)
        try:
            async for message in read_messages(transport, decoder):
                self.dispatch(message)
        except Exception as e:
            logger.error("Dispatch loop stopped: %s", e, exc_info=True)
            self.registry.fail(e)
            raise
        logger.info("Transport closed after %d message(s)", self.dispatched)
        self.registry.fail(TransportError("Connection closed"))
