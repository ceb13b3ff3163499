"""Tests for the per-channel broadcast registry."""

import asyncio

import pytest

from thorlabs_apt_mcp.errors import ChannelClosed, TransportError, UnknownMessageError
from thorlabs_apt_mcp.protocol.framing import Message
from thorlabs_apt_mcp.registry import ChannelRegistry


HOMED = Message.short(0x0444, 1)


def test_every_subscriber_receives_each_message():
    registry = ChannelRegistry()
    subs = [registry.subscribe(0x0444) for _ in range(5)]

    assert registry.publish(HOMED) == 5
    for sub in subs:
        assert sub.get_nowait() == HOMED
        assert sub.pending == 0


def test_first_subscriber_is_new():
    registry = ChannelRegistry()
    first = registry.subscribe(0x0444)
    second = registry.subscribe(0x0444)
    assert first.is_new
    assert not second.is_new
    assert registry.subscriber_count(0x0444) == 2


def test_no_replay_for_late_subscriber():
    registry = ChannelRegistry()
    early = registry.subscribe(0x0444)
    registry.publish(HOMED)
    late = registry.subscribe(0x0444)

    assert early.pending == 1
    with pytest.raises(asyncio.QueueEmpty):
        late.get_nowait()


def test_messages_arrive_in_publish_order():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0444)
    published = [Message.short(0x0444, channel) for channel in (1, 2, 3)]
    for message in published:
        registry.publish(message)
    assert [sub.get_nowait() for _ in published] == published


def test_publish_without_subscribers_is_dropped():
    registry = ChannelRegistry()
    assert registry.publish(HOMED) == 0
    assert len(registry) == 0


def test_channel_torn_down_when_last_subscriber_leaves():
    registry = ChannelRegistry()
    a = registry.subscribe(0x0444)
    b = registry.subscribe(0x0444)
    assert "homed" in registry

    a.close()
    assert "homed" in registry
    b.close()
    assert "homed" not in registry
    assert registry.active_channels() == []

    again = registry.subscribe(0x0444)
    assert again.is_new


def test_idle_channel_kept_without_reclaim():
    registry = ChannelRegistry(reclaim_idle=False)
    registry.subscribe(0x0444).close()
    assert "homed" in registry
    assert registry.subscribe(0x0444).is_new


def test_close_is_idempotent_and_blocks_reads():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0444)
    sub.close()
    sub.close()
    assert sub.closed
    with pytest.raises(ChannelClosed):
        sub.get_nowait()


def test_context_manager_closes_subscription():
    registry = ChannelRegistry()
    with registry.subscribe(0x0444) as sub:
        assert registry.subscriber_count(0x0444) == 1
    assert sub.closed
    assert registry.subscriber_count(0x0444) == 0


def test_shared_channel_delivers_both_identities():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0080)
    rich = Message.long(0x0081, bytes(68))

    assert registry.publish(rich) == 1
    assert sub.get_nowait() == rich
    assert registry.active_channels() == ["hw_response"]


def test_unknown_identity_rejected():
    registry = ChannelRegistry()
    with pytest.raises(UnknownMessageError):
        registry.subscribe(0xBEEF)
    assert registry.publish(Message.short(0xBEEF)) == 0


def test_fail_reaches_every_subscriber_after_queued_messages():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0444)
    other = registry.subscribe(0x0464)
    registry.publish(HOMED)
    cause = TransportError("USB read failed")
    registry.fail(cause)

    assert sub.get_nowait() == HOMED
    for s in (sub, other):
        with pytest.raises(TransportError) as excinfo:
            s.get_nowait()
        assert excinfo.value.__cause__ is cause
        # The failure is sticky.
        with pytest.raises(TransportError):
            s.get_nowait()

    assert registry.failure is cause
    with pytest.raises(TransportError):
        registry.subscribe(0x0444)


def test_closed_subscription_stops_receiving():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0444)
    registry.publish(HOMED)
    sub.close()
    assert registry.publish(HOMED) == 0


@pytest.mark.asyncio
async def test_concurrent_first_subscribers_share_one_channel():
    registry = ChannelRegistry()

    async def subscribe():
        await asyncio.sleep(0)
        return registry.subscribe(0x0444)

    subs = await asyncio.gather(*(subscribe() for _ in range(20)))
    assert len(registry) == 1
    assert sum(s.is_new for s in subs) == 1
    assert registry.publish(HOMED) == 20


@pytest.mark.asyncio
async def test_get_waits_for_publish():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0444)
    asyncio.get_running_loop().call_later(0.01, registry.publish, HOMED)
    assert await asyncio.wait_for(sub.get(), 1) == HOMED


@pytest.mark.asyncio
async def test_async_iteration_stops_on_close():
    registry = ChannelRegistry()
    sub = registry.subscribe(0x0444)
    registry.publish(HOMED)
    registry.publish(HOMED)

    received = []
    async for message in sub:
        received.append(message)
        if len(received) == 2:
            sub.close()
    assert received == [HOMED, HOMED]
