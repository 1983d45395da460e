"""Test TelnetReader decoding and the line helpers."""
# std imports
import anyio

# local imports
from telnetkit.stream import (TelnetReader, TelnetWriter, ProtocolError,
                              Command, Subnegotiation, readline, writeline)
from telnetkit.telopt import (Cmd, IAC, DO, DONT, WILL, WONT, SB, SE,
                              ECHO, SGA, NAWS, LINEMODE)
from tests.accessories import FakeStream, read_all, naws

# 3rd party
import pytest


@pytest.mark.parametrize("data", [
    b"",
    b"\xff",
    b"\xff\xff",
    b"\xff\xff\xff",
    b"\xff\xff\xff\xff",
    b"\xff\xff\xff\xff\xff",
    b"apple\xffbanana\xff\xffcherry",
    bytes(range(256)),
])
@pytest.mark.anyio
async def test_decode_reverses_encode(data):
    wire = FakeStream()
    await TelnetWriter(wire).send(data)

    reader = TelnetReader(FakeStream(bytes(wire.sent)))
    assert await read_all(reader) == data


@pytest.mark.anyio
async def test_negotiation_is_stripped():
    wire = (b"ab" + bytes([IAC, DO, ECHO]) + b"cd" +
            bytes([IAC, WILL, NAWS, IAC, WONT, SGA]) + b"e" +
            bytes([IAC, DONT, LINEMODE]))
    reader = TelnetReader(FakeStream(wire))
    assert await read_all(reader) == b"abcde"


@pytest.mark.anyio
async def test_subnegotiation_with_doubled_iac_is_stripped():
    wire = (b"x" + bytes([IAC, SB, 24, 1, IAC, IAC, 2, IAC, IAC, IAC, SE]) +
            b"y\xff\xffz")
    reader = TelnetReader(FakeStream(wire))
    assert await read_all(reader) == b"xy\xffz"


@pytest.mark.anyio
async def test_split_sequences():
    # commands spread over several transport reads
    reader = TelnetReader(FakeStream(
        b"a\xff", bytes([DO]), bytes([ECHO]) + b"b\xff", b"\xff",
        bytes([IAC, SB]), bytes([NAWS, 0, 80, 0]), bytes([24, IAC]),
        bytes([SE]) + b"c"))
    assert await read_all(reader) == b"ab\xffc"


@pytest.mark.anyio
async def test_orphan_se_is_stripped():
    reader = TelnetReader(FakeStream(b"a" + bytes([IAC, SE]) + b"b"))
    assert await read_all(reader) == b"ab"


@pytest.mark.anyio
async def test_lone_iac_in_subnegotiation_is_payload():
    reader = TelnetReader(FakeStream(bytes([IAC, SB, 42, 1, IAC, 2, IAC, SE]) + b"z"))
    event = await reader.next_event()
    assert event == Subnegotiation(42, bytes([1, IAC, 2]))
    assert await reader.receive() == b"z"


@pytest.mark.anyio
async def test_corruption():
    reader = TelnetReader(FakeStream(bytes([IAC, 0x01]) + b"more"))
    with pytest.raises(ProtocolError):
        await reader.receive()
    # no resynchronization
    with pytest.raises(ProtocolError):
        await reader.receive()


@pytest.mark.anyio
async def test_error_after_data_is_deferred():
    reader = TelnetReader(FakeStream(b"ok" + bytes([IAC, 0x01])))
    assert await reader.receive() == b"ok"
    with pytest.raises(ProtocolError):
        await reader.receive()


@pytest.mark.anyio
async def test_eof_after_data_is_deferred():
    # the stream ends inside an IAC sequence
    reader = TelnetReader(FakeStream(b"ok\xff"))
    assert await reader.receive() == b"ok"
    with pytest.raises(anyio.EndOfStream):
        await reader.receive()


@pytest.mark.anyio
async def test_receive_returns_when_buffer_is_empty():
    reader = TelnetReader(FakeStream(b"one", b"two", eof=False))
    assert await reader.receive() == b"one"
    assert await reader.receive() == b"two"


@pytest.mark.anyio
async def test_receive_max_bytes():
    reader = TelnetReader(FakeStream(b"abcdef"))
    assert await reader.receive(4) == b"abcd"
    assert reader.buffered == 2
    assert await reader.receive(4) == b"ef"


@pytest.mark.anyio
async def test_next_event():
    reader = TelnetReader(FakeStream(
        b"a" + bytes([IAC, WILL, NAWS]) + naws(80, 24) + bytes([IAC, SE])))
    assert await reader.next_event() == ord("a")
    assert await reader.next_event() == Command(Cmd.WILL, NAWS)
    assert await reader.next_event() == Subnegotiation(NAWS, bytes([0, 80, 0, 24]))
    assert await reader.next_event() is None
    with pytest.raises(anyio.EndOfStream):
        await reader.next_event()


@pytest.mark.anyio
async def test_peek_does_not_consume():
    reader = TelnetReader(FakeStream(b"a", b"bc"))
    assert await reader.peek(2) == b"ab"
    assert await reader.peek(5) == b"abc"
    assert await read_all(reader) == b"abc"


@pytest.mark.anyio
async def test_readline_strips_crlf():
    reader = TelnetReader(FakeStream(b"hello\r\nworld\n"))
    assert await readline(reader) == b"hello"
    assert await readline(reader) == b"world\n"


@pytest.mark.anyio
async def test_readline_ignores_commands():
    reader = TelnetReader(FakeStream(b"he" + bytes([IAC, DO, ECHO]) + b"y\r\n"))
    assert await readline(reader) == b"hey"


@pytest.mark.anyio
async def test_readline_without_newline_fails():
    reader = TelnetReader(FakeStream(b"Login: "))
    with pytest.raises(anyio.EndOfStream):
        await readline(reader)


@pytest.mark.anyio
async def test_writeline():
    stream = FakeStream()
    await writeline(TelnetWriter(stream), "ab", b"\xff", "c\r\n")
    assert stream.sent == b"ab\xff\xffc\r\n"
    assert stream.sends == 1


@pytest.mark.anyio
async def test_cancelled_receive_keeps_partial_command():
    stream = FakeStream(b"a", bytes([IAC, DO]), eof=False)
    reader = TelnetReader(stream)
    assert await reader.receive() == b"a"

    with anyio.move_on_after(0.1) as scope:
        await reader.receive()
    assert scope.cancelled_caught
    assert reader.buffered == 2

    stream.feed(bytes([ECHO]) + b"b", eof=True)
    assert await read_all(reader) == b"b"


@pytest.mark.anyio
async def test_cancelled_next_event_keeps_partial_subnegotiation():
    stream = FakeStream(bytes([IAC, SB, NAWS, 0, 80]), eof=False)
    reader = TelnetReader(stream)

    with anyio.move_on_after(0.1) as scope:
        await reader.next_event()
    assert scope.cancelled_caught

    stream.feed(bytes([0, 24, IAC, SE]) + b"hi", eof=True)
    assert await reader.next_event() == Subnegotiation(NAWS, bytes([0, 80, 0, 24]))
    assert await read_all(reader) == b"hi"


@pytest.mark.anyio
async def test_receive_returns_before_partial_sequence():
    stream = FakeStream(b"ok" + bytes([IAC, WILL]), eof=False)
    reader = TelnetReader(stream)
    with anyio.fail_after(1):
        assert await reader.receive() == b"ok"
