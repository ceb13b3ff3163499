"""Request/response session over a single device connection.

A session owns the connection's channel registry and runs one background
task that decodes incoming bytes and dispatches them. Any number of
``request`` calls can be in flight at once; writes to the device are
serialised with a lock.

Usage::

    async with Session(transport) as session:
        homed = await session.request(
            Message.short(MessageId.MOT_MOVE_HOME, 1),
            expect=MessageId.MOT_MOVE_HOMED,
            timeout=60,
        )
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING

from .config import SessionConfig
from .dispatcher import Dispatcher, UnmatchedHook
from .errors import RequestCancelled, RequestTimeout, TransportError
from .protocol.framing import Message
from .protocol.table import name_of
from .registry import ChannelRegistry, Subscription

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)


class Session:
    """Send commands and await correlated responses on one connection."""

    def __init__(
        self,
        transport: Transport,
        config: SessionConfig | None = None,
        registry: ChannelRegistry | None = None,
        on_unmatched: UnmatchedHook | None = None,
    ) -> None:
        self.transport = transport
        self.config = config if config is not None else SessionConfig()
        self.registry = (
            registry
            if registry is not None
            else ChannelRegistry(reclaim_idle=self.config.reclaim_idle)
        )
        self.dispatcher = Dispatcher(self.registry, on_unmatched)
        self._write_lock = asyncio.Lock()
        self._in_flight: Counter[str] = Counter()
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def failure(self) -> BaseException | None:
        """Why the connection stopped, or ``None`` while it is healthy."""
        return self.registry.failure

    def start(self) -> None:
        """Start the background read loop."""
        if self._closed:
            raise TransportError("Session is closed")
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self.dispatcher.run(self.transport, resync=self.config.resync),
                name="apt-dispatch",
            )
            self._task.add_done_callback(self._on_dispatch_done)

    @staticmethod
    def _on_dispatch_done(task: asyncio.Task) -> None:
        # Retrieve the exception so asyncio does not report it as unhandled;
        # the registry already carries it to every waiter.
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Dispatch task ended with %r", task.exception())

    async def close(self) -> None:
        """Stop the read loop, fail outstanding waiters and close the transport."""
        if self._closed:
            return
        self._closed = True
        self.registry.fail(TransportError("Session closed"))
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Dispatch task ended with %r during close", e)
        await self.transport.close()

    async def __aenter__(self) -> Session:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise TransportError("Session is closed")
        if self.failure is not None:
            raise TransportError(f"Connection failed: {self.failure}") from self.failure

    def subscribe(self, identity: int) -> Subscription:
        """Subscribe to every future message on ``identity``'s channel."""
        self._check_open()
        return self.registry.subscribe(identity)

    def in_flight(self, identity: int) -> int:
        """Number of requests currently awaiting ``identity``'s channel."""
        return self._in_flight[self.registry.channel_name(identity)]

    async def send(self, message: Message | bytes) -> None:
        """Write one message to the device, one writer at a time."""
        self._check_open()
        data = message.to_bytes() if isinstance(message, Message) else bytes(message)
        async with self._write_lock:
            logger.debug("Send %s", message if isinstance(message, Message) else data.hex(" "))
            await self.transport.write(data)

    async def request(
        self,
        command: Message | bytes,
        expect: int,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
        join: bool = False,
    ) -> Message:
        """Send ``command`` and wait for the next message on ``expect``'s channel.

        The subscription is made before the command is written, so a fast
        reply cannot be missed. Nothing is retried here: whether re-sending
        a motion command is safe is the caller's decision.

        Args:
            command: Message (or raw bytes) to send.
            expect: Identity of the response to wait for.
            timeout: Seconds to wait; defaults to ``config.request_timeout``.
            cancel: Setting this event abandons the wait.
            join: If another request is already in flight on the same
                channel, wait for its response instead of sending
                ``command`` again. Plain subscribers do not count.

        Raises:
            RequestTimeout: No response arrived within ``timeout``.
            RequestCancelled: ``cancel`` was set first.
            TransportError: The connection failed while waiting.
        """
        timeout = self.config.request_timeout if timeout is None else timeout
        subscription = self.subscribe(expect)
        channel = subscription.channel.name
        joined = join and self._in_flight[channel] > 0
        self._in_flight[channel] += 1
        try:
            if joined:
                logger.debug("Joining pending request for %s", name_of(expect))
            else:
                await self.send(command)
            return await self._wait(subscription, expect, timeout, cancel)
        finally:
            self._in_flight[channel] -= 1
            if not self._in_flight[channel]:
                del self._in_flight[channel]
            subscription.close()

    async def _wait(
        self,
        subscription: Subscription,
        expect: int,
        timeout: float,
        cancel: asyncio.Event | None,
    ) -> Message:
        """Race delivery against the deadline and the cancel event.

        Exactly one outcome is reported; delivery wins a tie.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        getter = asyncio.ensure_future(subscription.get())
        waiters = {getter}
        canceller = None
        if cancel is not None:
            canceller = asyncio.ensure_future(cancel.wait())
            waiters.add(canceller)

        try:
            while not getter.done():
                if canceller is not None and canceller.done():
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

            if getter.done():
                message = getter.result()
                logger.debug("Response %r", message)
                return message
            if canceller is not None and canceller.done():
                raise RequestCancelled(expect)
            raise RequestTimeout(expect, timeout)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
