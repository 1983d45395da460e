"""Module provides :class:`TelnetReader` and :class:`TelnetWriter`."""
# std imports
import anyio
import anyio.abc
import logging
import outcome
from dataclasses import dataclass
from typing import Optional, Union

# local imports
from .accessories import long_send
from .telopt import Cmd, IAC, SB, SE, CR, LF, VERBS, name_command

__all__ = ('TelnetReader', 'TelnetWriter', 'Command', 'Data',
        'Subnegotiation', 'ProtocolError', 'readline', 'writeline')

bIAC = bytes([IAC])

# _decode: the buffer holds no whole item yet
_INCOMPLETE = object()


class ProtocolError(Exception):
    """The peer violated the TELNET wire grammar."""
    pass


@dataclass(frozen=True)
class Command:
    """
    A three-byte negotiation command, ``IAC verb option``.

    ``bytes(cmd)`` is its wire form. Commands are never escaped.
    """
    verb: Cmd
    option: int

    def __bytes__(self):
        return bytes((IAC, self.verb, self.option))

    def __str__(self):
        return "IAC %s %s" % (name_command(self.verb), name_command(self.option))

@dataclass(frozen=True)
class Data:
    """Application data, escaped on the way out."""
    payload: bytes

@dataclass(frozen=True)
class Subnegotiation:
    """
    ``IAC SB option payload IAC SE``, as received.

    Doubled IACs in the payload have been un-doubled.
    """
    option: int
    payload: bytes


class TelnetWriter(anyio.abc.ByteSendStream):
    r"""
    Escapes outgoing application data.

    Byte 255 (IAC) in the data is doubled on the wire::

        Original:  b'\x01\x37\xff\x04'
        Escaped:   b'\x01\x37\xff\xff\x04'

    Commands go out raw, through :meth:`send_command` or by passing a
    :class:`Command` to :meth:`write`. All writes are serialized, so a
    command never ends up in the middle of a data write.
    """

    def __init__(self, stream: anyio.abc.ByteSendStream, *, log=None):
        self._stream = stream
        self.log = log or logging.getLogger(__name__)

        # write lock
        self._write_lock = anyio.Lock()

    async def write(self, item: Union[Data, Command]) -> int:
        """
        Write one item to the transport.

        :returns: for :class:`Data`, the number of payload bytes consumed
            (not the number of wire bytes); for :class:`Command`, 3.
        """
        if isinstance(item, Data):
            buf = self._escape_iac(item.payload)
            size = len(item.payload)
        elif isinstance(item, Command):
            self.log.debug("send %s", item)
            buf = bytes(item)
            size = len(buf)
        else:
            raise TypeError("Can't write %r" % (item,))

        async with self._write_lock:
            await long_send(self._stream, buf)
        return size

    async def send(self, item: bytes) -> int:
        """Write escaped application data."""
        return await self.write(Data(bytes(item)))

    async def send_command(self, verb: int, option: int) -> int:
        """Write ``IAC verb option``, unescaped."""
        return await self.write(Command(Cmd(verb), option))

    async def send_eof(self):
        await self._stream.send_eof()

    async def aclose(self):
        await self._stream.aclose()

    @property
    def extra_attributes(self):
        return self._stream.extra_attributes

    @staticmethod
    def _escape_iac(buf):
        r"""Replace bytes in buf ``IAC`` (``b'\xff'``) by ``IAC IAC``."""
        return bytes(buf).replace(bIAC, bIAC + bIAC)


class TelnetReader(anyio.abc.ByteReceiveStream):
    """
    Un-escapes incoming wire data and strips commands.

    Application data is what's left after removing negotiation
    (``IAC DO opt`` and friends) and subnegotiation (``IAC SB … IAC SE``)
    sequences and un-doubling ``IAC IAC``. Nothing is replied to and no
    option state is kept.

    An ``IAC`` followed by any other byte is a protocol violation. It
    raises :class:`ProtocolError`, now and on every later call; there is
    no attempt to resynchronize.

    If an error occurs after some data has been decoded by a
    :meth:`receive` call, that data is returned and the error is raised
    by the next call.
    """

    def __init__(self, stream: anyio.abc.ByteReceiveStream, *, log=None):
        self._stream = stream
        self.log = log or logging.getLogger(__name__)

        # raw wire bytes not yet decoded
        self._buffer = bytearray()

        # error to raise on the next receive
        self._pending: Optional[outcome.Error] = None
        self._broken: Optional[ProtocolError] = None

        #: held while decoding. The window size request reads the wire
        #: directly and holds this too.
        self.lock = anyio.Lock()

    @property
    def buffered(self) -> int:
        """Number of undecoded bytes in the buffer."""
        return len(self._buffer)

    async def _fill(self):
        chunk = await self._stream.receive()
        self._buffer.extend(chunk)

    async def peek(self, n: int = 1) -> bytes:
        """
        Return up to ``n`` wire bytes without consuming them.

        Blocks until ``n`` bytes are available. Fewer are returned only at
        end of stream; if nothing is buffered then, raise
        :class:`anyio.EndOfStream`.
        """
        while len(self._buffer) < n:
            try:
                await self._fill()
            except anyio.EndOfStream:
                if not self._buffer:
                    raise
                break
        return bytes(self._buffer[:n])

    async def next_event(self) -> Union[int, Command, Subnegotiation, None]:
        """
        Decode one item off the wire.

        Bytes are only removed from the buffer once a whole item has
        arrived, so a cancelled call leaves the stream intact.

        :rtype: an ``int`` data byte, a :class:`Command`, a
            :class:`Subnegotiation`, or ``None`` for a stray ``IAC SE``.
        :raises ProtocolError: on ``IAC`` followed by anything else.
        """
        while True:
            item = self._decode()
            if item is not _INCOMPLETE:
                return item
            await self._fill()

    def _decode(self):
        # one item off the front of the buffer, or _INCOMPLETE
        if self._broken is not None:
            raise self._broken

        buf = self._buffer
        if not buf:
            return _INCOMPLETE
        if buf[0] != IAC:
            byte = buf[0]
            del buf[0]
            return byte
        if len(buf) < 2:
            return _INCOMPLETE

        cmd = buf[1]
        if cmd == IAC:
            del buf[:2]
            return IAC
        elif cmd in VERBS:
            if len(buf) < 3:
                return _INCOMPLETE
            item = Command(Cmd(cmd), buf[2])
            del buf[:3]
            return item
        elif cmd == SB:
            return self._decode_subneg()
        elif cmd == SE:
            del buf[:2]
            return None

        self._broken = ProtocolError("corrupted: IAC followed by %d" % (cmd,))
        raise self._broken

    def _decode_subneg(self):
        buf = self._buffer
        if len(buf) < 3:
            return _INCOMPLETE
        payload = bytearray()
        i = 3
        while i < len(buf):
            byte = buf[i]
            if byte != IAC:
                payload.append(byte)
                i += 1
                continue
            if i + 1 >= len(buf):
                break
            nxt = buf[i + 1]
            if nxt == SE:
                item = Subnegotiation(buf[2], bytes(payload))
                del buf[:i + 2]
                return item
            # IAC IAC is a literal; a lone IAC is kept and the next byte rescanned
            payload.append(IAC)
            i += 2 if nxt == IAC else 1
        return _INCOMPLETE

    async def receive(self, max_bytes: int = 65536) -> bytes:
        """
        Return at least one byte of application data.

        Blocks until some data is decoded. Once it is, returns when either
        ``max_bytes`` are collected or no whole item is left in the
        buffer.
        """
        async with self.lock:
            if self._pending is not None:
                pending, self._pending = self._pending, None
                pending.unwrap()

            data = bytearray()
            while len(data) < max_bytes:
                try:
                    item = self._decode()
                    if item is _INCOMPLETE:
                        if data:
                            break
                        await self._fill()
                        continue
                except (anyio.EndOfStream, anyio.BrokenResourceError,
                        anyio.ClosedResourceError, OSError, ProtocolError) as exc:
                    if not data:
                        raise
                    self._pending = outcome.Error(exc)
                    break

                if isinstance(item, int):
                    data.append(item)
                elif isinstance(item, Command):
                    self.log.debug("recv %s", item)
                elif isinstance(item, Subnegotiation):
                    self.log.debug("recv IAC SB %s <%d> IAC SE",
                            name_command(item.option), len(item.payload))
            return bytes(data)

    async def aclose(self):
        await self._stream.aclose()

    @property
    def extra_attributes(self):
        return self._stream.extra_attributes

    def __repr__(self):
        return '<%s: buffered=%d%s>' % (self.__class__.__name__,
                len(self._buffer), ' broken' if self._broken else '')


async def readline(stream) -> bytes:
    r"""
    Read one line from ``stream``, a byte at a time.

    The line ends with the first LF. A trailing CR LF is stripped; a bare
    LF is not.

    There's no partial result: if the stream fails or ends before the LF
    arrives, that error is raised. This means a prompt that doesn't end
    in a newline (``Login: ``, say) will never be returned.
    """
    line = bytearray()
    while True:
        b = await stream.receive(1)
        if not b:
            continue
        line += b
        if b[0] == LF:
            break

    if line.endswith(bytes((CR, LF))):
        del line[-2:]
    return bytes(line)

async def writeline(stream, *text: Union[str, bytes]):
    """
    Concatenate ``text`` and send it as one (escaped) write.

    Strings are encoded as UTF-8. No newline is added.
    """
    await stream.send(b''.join(t.encode('utf-8') if isinstance(t, str) else t
                               for t in text))
