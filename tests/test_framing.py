"""Tests for message layout and stream framing."""

import logging

import pytest

from thorlabs_apt_mcp.config import DEVICE, HOST, LONG_FLAG, ResyncPolicy
from thorlabs_apt_mcp.errors import DecodeError, IncompleteFrameError, UnknownMessageError
from thorlabs_apt_mcp.protocol.framing import (
    DecoderState,
    FrameDecoder,
    Message,
    decode,
    read_messages,
)

from conftest import FakeTransport, reply


def _hw_info_bytes() -> bytes:
    return reply(0x0006, data=bytes(range(84)))


def test_header_layout():
    """Identity travels little-endian, followed by params, dest and source."""
    data = Message.short(0x0443, 1).to_bytes()
    assert data == bytes([0x43, 0x04, 0x01, 0x00, DEVICE, HOST])


def test_long_message_sets_flag_and_length():
    msg = Message.long(0x0453, b"\x01\x00" + (1000).to_bytes(4, "little"))
    data = msg.to_bytes()
    assert data[2:4] == b"\x06\x00"
    assert data[4] == DEVICE | LONG_FLAG
    assert msg.is_long
    assert msg.data_length == 6
    assert msg.total_length == 12


def test_from_bytes_roundtrip_fields():
    msg = Message.from_bytes(bytes([0x44, 0x04, 0x01, 0x00, HOST, DEVICE]))
    assert msg.identity == 0x0444
    assert msg.param1 == 1
    assert msg.destination == HOST
    assert msg.source == DEVICE
    assert msg.payload == b""
    assert msg.name == "MOT_MOVE_HOMED"


def test_message_rejects_out_of_range_fields():
    with pytest.raises(ValueError):
        Message(0x10000)
    with pytest.raises(ValueError):
        Message.short(0x0443, 256)
    with pytest.raises(ValueError):
        Message.long(0x0453, bytes(0x10000))


def test_message_repr_names_identity():
    text = repr(Message.short(0x0443, 1))
    assert "MOT_MOVE_HOME" in text
    assert "0x0443" in text


def test_fixed_length_uses_table_length():
    """HW_GET_INFO is 90 bytes however the header looks."""
    data = _hw_info_bytes() + reply(0x0444, 1)
    messages = decode(data)
    assert [m.identity for m in messages] == [0x0006, 0x0444]
    assert len(messages[0].payload) == 84
    assert messages[0].payload == bytes(range(84))


@pytest.mark.parametrize("chunk_size", [1, 2, 5, 6, 7, 64, 1000])
def test_decoding_is_independent_of_chunking(chunk_size):
    stream = (
        reply(0x0444, 1)
        + _hw_info_bytes()
        + reply(0x0464, data=bytes(14))
        + Message.long(0x0453, b"\x01\x00\x10\x00\x00\x00").to_bytes()
        + reply(0x0212, 1, 1)
    )
    expected = decode(stream)

    decoder = FrameDecoder()
    messages = []
    for offset in range(0, len(stream), chunk_size):
        decoder.feed(stream[offset : offset + chunk_size])
        messages.extend(decoder)
    decoder.close()

    assert messages == expected
    assert [m.identity for m in messages] == [0x0444, 0x0006, 0x0464, 0x0453, 0x0212]


def test_variable_entry_without_long_flag_is_header_only():
    data = Message.short(0x0453, 1).to_bytes() + reply(0x0444, 1)
    messages = decode(data)
    assert [m.identity for m in messages] == [0x0453, 0x0444]
    assert messages[0].payload == b""


def test_variable_entry_with_long_flag_reads_declared_length():
    msg = Message.long(0x0448, b"\x01\x00\xff\xff\xff\xff")
    [decoded] = decode(msg.to_bytes())
    assert decoded == msg
    assert decoded.total_length == 12


def test_incomplete_message_stays_buffered():
    decoder = FrameDecoder()
    data = _hw_info_bytes()
    decoder.feed(data[:-1])
    assert list(decoder) == []
    assert decoder.state is DecoderState.AWAITING_PAYLOAD
    assert decoder.pending == 89

    decoder.feed(data[-1:])
    [message] = list(decoder)
    assert message.identity == 0x0006
    assert decoder.state is DecoderState.AWAITING_HEADER
    assert decoder.pending == 0


def test_close_with_one_byte_missing_raises():
    decoder = FrameDecoder()
    decoder.feed(_hw_info_bytes()[:-1])
    assert list(decoder) == []
    with pytest.raises(IncompleteFrameError) as excinfo:
        decoder.close()
    assert len(excinfo.value.pending) == 89
    assert decoder.pending == 0


def test_partial_header_is_incomplete():
    with pytest.raises(IncompleteFrameError):
        decode(b"\x44\x04\x01")


def test_unknown_identity_fails_decoder():
    decoder = FrameDecoder()
    decoder.feed(b"\xff\xff\x00\x00\x01\x50" + reply(0x0444, 1))
    with pytest.raises(UnknownMessageError) as excinfo:
        next(decoder)
    assert excinfo.value.identity == 0xFFFF
    assert "0xFFFF" in str(excinfo.value)
    assert decoder.failed

    with pytest.raises(DecodeError):
        decoder.feed(reply(0x0444, 1))
    with pytest.raises(DecodeError):
        next(decoder)


def test_custom_table():
    lengths = {0x0001: 8}
    [msg] = decode(b"\x01\x00\x00\x00\x01\x50ab", lengths=lengths)
    assert msg.payload == b"ab"
    with pytest.raises(UnknownMessageError):
        decode(reply(0x0444, 1), lengths=lengths)


def test_scan_resynchronises_on_next_known_header(caplog):
    garbage = b"\xff\xff\xfe"
    decoder = FrameDecoder(resync=ResyncPolicy.SCAN)
    with caplog.at_level(logging.WARNING, logger="thorlabs_apt_mcp.protocol.framing"):
        decoder.feed(garbage + reply(0x0444, 1))
        messages = list(decoder)

    assert [m.identity for m in messages] == [0x0444]
    assert decoder.skipped == len(garbage)
    assert not decoder.failed
    assert sum("scanning" in r.getMessage() for r in caplog.records) == 1


def test_resync_accepts_string_policy():
    assert decode(b"\x00" + reply(0x0444, 1), resync="scan")[0].identity == 0x0444


@pytest.mark.asyncio
async def test_read_messages_stops_at_end_of_stream():
    transport = FakeTransport()
    data = reply(0x0444, 1) + reply(0x0212, 1, 1)
    transport.push(data[:4])
    transport.push(data[4:])
    transport.push_eof()

    messages = [m async for m in read_messages(transport)]
    assert [m.identity for m in messages] == [0x0444, 0x0212]


@pytest.mark.asyncio
async def test_read_messages_raises_on_truncated_stream():
    transport = FakeTransport()
    transport.push(reply(0x0444, 1)[:3])
    transport.push_eof()

    with pytest.raises(IncompleteFrameError):
        async for _ in read_messages(transport):
            pass
