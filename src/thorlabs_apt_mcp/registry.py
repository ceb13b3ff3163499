"""Per-channel broadcast registry.

Every message identity belongs to one channel (by default its own, though
several identities can share a response channel). A channel's broadcast
slot is created by the first subscriber, reused by later ones, and torn
down again when the last one leaves, so a table of many identities only
holds state for the handful that are being awaited.

The registry is confined to one asyncio event loop. Creating a slot
contains no await point, so concurrent first subscribers always end up on
the same channel. Publishing iterates over a snapshot of the subscribers,
so subscribing or closing during a publish never disturbs it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterator, Mapping

from .errors import ChannelClosed, TransportError, UnknownMessageError
from .protocol.framing import Message
from .protocol.table import CHANNELS, name_of

logger = logging.getLogger(__name__)


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


class Subscription:
    """A receive handle yielding every message published to a channel.

    Only messages published after the subscription was created are
    delivered, in the order they were published. Each subscription has its
    own unbounded queue so a slow reader never holds up the publisher.
    """

    def __init__(self, channel: BroadcastChannel, identity: int, is_new: bool) -> None:
        self.channel = channel
        self.identity = identity
        self.is_new = is_new
        self._queue: asyncio.Queue[Message | _Failure] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Message:
        """Wait for the next message.

        Raises:
            ChannelClosed: If this subscription was closed.
            TransportError: If the connection failed; messages received
                before the failure are still delivered first.
        """
        if self._closed:
            raise ChannelClosed(f"Subscription to {name_of(self.identity)} is closed")
        return self._unwrap(await self._queue.get())

    def get_nowait(self) -> Message:
        """Return the next queued message, raising ``asyncio.QueueEmpty`` if none."""
        if self._closed:
            raise ChannelClosed(f"Subscription to {name_of(self.identity)} is closed")
        return self._unwrap(self._queue.get_nowait())

    def _unwrap(self, item: Message | _Failure) -> Message:
        if isinstance(item, _Failure):
            # Leave the failure queued for any later reader.
            self._queue.put_nowait(item)
            raise TransportError(f"Connection failed: {item.error}") from item.error
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.channel.remove(self)

    def _deliver(self, message: Message) -> None:
        self._queue.put_nowait(message)

    def _fail(self, error: BaseException) -> None:
        self._queue.put_nowait(_Failure(error))

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Message:
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration from None

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{self.pending} pending"
        return f"Subscription({name_of(self.identity)} on {self.channel.name!r}, {state})"


class BroadcastChannel:
    """Fan-out of published messages to every current subscriber."""

    def __init__(self, name: str, registry: ChannelRegistry) -> None:
        self.name = name
        self._registry = registry
        self._subscribers: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def add(self, identity: int, is_new: bool) -> Subscription:
        subscription = Subscription(self, identity, is_new)
        self._subscribers.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            return
        if not self._subscribers:
            self._registry._release(self)

    def publish(self, message: Message) -> int:
        subscribers = tuple(self._subscribers)
        for subscription in subscribers:
            subscription._deliver(message)
        return len(subscribers)

    def fail(self, error: BaseException) -> None:
        for subscription in tuple(self._subscribers):
            subscription._fail(error)


class ChannelRegistry:
    """Lazily created broadcast channels, one per channel name.

    Args:
        channels: identity -> channel name lookup, the generated message
            table by default.
        reclaim_idle: Tear a channel down when its last subscriber closes.
    """

    def __init__(self, channels: Mapping[int, str] = CHANNELS, reclaim_idle: bool = True) -> None:
        self._channels = channels
        self._reclaim_idle = reclaim_idle
        self._slots: dict[str, BroadcastChannel] = {}
        self._failure: BaseException | None = None

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    def channel_name(self, identity: int) -> str:
        try:
            return self._channels[identity]
        except KeyError:
            raise UnknownMessageError(identity) from None

    def subscribe(self, identity: int) -> Subscription:
        """Subscribe to every future message on ``identity``'s channel.

        Raises:
            UnknownMessageError: If ``identity`` is not in the table.
            TransportError: If the registry has been failed.
        """
        name = self.channel_name(identity)
        if self._failure is not None:
            raise TransportError(f"Connection failed: {self._failure}") from self._failure

        channel = self._slots.get(name)
        if channel is None:
            channel = self._slots[name] = BroadcastChannel(name, self)
            logger.debug("Opened channel %s", name)
        return channel.add(identity, is_new=len(channel) == 0)

    def publish(self, message: Message) -> int:
        """Deliver ``message`` to its channel's subscribers.

        Returns:
            The number of subscribers reached; zero means it was dropped.
        """
        name = self._channels.get(message.identity)
        if name is None:
            return 0
        channel = self._slots.get(name)
        if channel is None:
            return 0
        return channel.publish(message)

    def fail(self, error: BaseException) -> None:
        """Terminate every subscription with ``error`` and refuse new ones."""
        if self._failure is None:
            self._failure = error
        for channel in list(self._slots.values()):
            channel.fail(error)

    def subscriber_count(self, identity: int) -> int:
        channel = self._slots.get(self.channel_name(identity))
        return len(channel) if channel is not None else 0

    def active_channels(self) -> list[str]:
        return sorted(self._slots)

    def __contains__(self, name: object) -> bool:
        return name in self._slots

    def __iter__(self) -> Iterator[BroadcastChannel]:
        return iter(list(self._slots.values()))

    def __len__(self) -> int:
        return len(self._slots)

    def _release(self, channel: BroadcastChannel) -> None:
        if self._reclaim_idle and self._slots.get(channel.name) is channel:
            del self._slots[channel.name]
            logger.debug("Closed idle channel %s", channel.name)
