"""Module provides class Session."""
# std imports
import anyio
import anyio.abc
import logging
import struct
from typing import Optional, Tuple, Union

# local imports
from .stream import (TelnetReader, TelnetWriter, Command, Subnegotiation,
                     ProtocolError, readline, writeline)
from .telopt import IAC, DO, WILL, WONT, NAWS

__all__ = ('Session', 'NAWS_TIMEOUT')

#: How long :meth:`Session.request_window_size` waits for the client.
NAWS_TIMEOUT = 2

_IAC_IAC = bytes((IAC, IAC))


class Session(anyio.abc.ByteStream):
    """
    One side of a TELNET connection: a reader and a writer on a transport.

    :param stream: the transport.
    :param anyio.CancelScope scope: lifecycle token of the connection.
        Nothing here enters it; the server's watcher task does, and closes
        the transport when it is cancelled or its deadline passes.
    :param logging.Logger log: target logger, if None is given, one is
        created using the namespace ``'telnetkit.session'``.
    :param bool pty: see :meth:`set_pty`.

    A session belongs to one task. Reading from it while
    :meth:`request_window_size` is running in another task will block
    until the request is done.
    """

    def __init__(self, stream: anyio.abc.ByteStream, *,
            scope: Optional[anyio.CancelScope] = None, log=None, pty=False):
        self._stream = stream
        self.log = log or logging.getLogger('telnetkit.session')
        self.scope = scope if scope is not None else anyio.CancelScope()
        self.reader = TelnetReader(stream, log=self.log)
        self.writer = TelnetWriter(stream, log=self.log)
        self.pty = pty

        # client window size, zero until negotiated
        self.cols = 0
        self.rows = 0

    @property
    def stream(self) -> anyio.abc.ByteStream:
        """The underlying transport."""
        return self._stream

    @property
    def closing(self) -> bool:
        """Whether the lifecycle token has been cancelled or has expired."""
        return (self.scope.cancel_called or
                anyio.current_time() >= self.scope.deadline)

    def _check_closing(self):
        if self.closing:
            raise anyio.ClosedResourceError

    @property
    def remote_address(self) -> str:
        """
        Stable identity of the peer, ``host:port``.

        Transports without socket attributes are identified by their repr.
        """
        addr = self._stream.extra(anyio.abc.SocketAttribute.remote_address, None)
        if isinstance(addr, tuple):
            host, port = addr[:2]
            if ':' in host:
                return "[%s]:%d" % (host, port)
            return "%s:%d" % (host, port)
        elif addr is not None:
            return str(addr)
        return repr(self._stream)

    # window size

    @property
    def window_size(self) -> Tuple[int, int]:
        """``(cols, rows)``, both zero unless negotiated."""
        return self.cols, self.rows

    @property
    def has_window_size(self) -> bool:
        return self.cols > 0 and self.rows > 0

    async def request_window_size(self, timeout: float = NAWS_TIMEOUT):
        """
        Ask the client for its window size, :rfc:`1073`.

        Sends ``IAC DO NAWS``, then waits up to ``timeout`` seconds for
        ``IAC SB NAWS <cols> <rows> IAC SE``. Other negotiation arriving in
        the meantime is consumed and discarded.

        A client that refuses (``WONT NAWS``), doesn't answer, starts
        sending data, or disconnects is not an error: the size just stays
        unset. Check :attr:`has_window_size` afterwards.

        Call this before reading anything else from the session.
        """
        await self.send_command(DO, NAWS)

        with anyio.move_on_after(timeout) as sc:
            async with self.reader.lock:
                try:
                    await self._await_naws()
                except anyio.EndOfStream:
                    self.log.debug("NAWS: connection closed while waiting")
        if sc.cancelled_caught:
            self.log.debug("NAWS: no reply within %s seconds", timeout)

    async def _await_naws(self):
        reader = self.reader
        while True:
            head = await reader.peek(1)
            if head[0] == IAC:
                head = await reader.peek(2)
            if head[0] != IAC or head == _IAC_IAC:
                # the client is talking, not negotiating
                self.log.debug("NAWS: data received, giving up")
                return

            item = await reader.next_event()
            if isinstance(item, Command) and item.option == NAWS:
                if item.verb == WONT:
                    self.log.debug("NAWS: refused")
                    return
                elif item.verb == WILL:
                    self.log.debug("NAWS: accepted")
            elif isinstance(item, Subnegotiation) and item.option == NAWS:
                if len(item.payload) != 4:
                    raise ProtocolError("NAWS: bad payload %r" % (item.payload,))
                self.cols, self.rows = struct.unpack('>HH', item.payload)
                self.log.debug("NAWS: cols=%d rows=%d", self.cols, self.rows)
                return
            else:
                self.log.debug("NAWS: skipping %r", item)

    # line discipline

    def set_pty(self, pty: bool):
        """
        Turn output line normalization on or off.

        With a pty, every LF sent goes out as CR LF. This stands in for
        real terminal mode negotiation, which isn't supported.
        """
        self.pty = pty

    # data

    async def receive(self, max_bytes: int = 65536) -> bytes:
        self._check_closing()
        return await self.reader.receive(max_bytes)

    async def send(self, item: bytes) -> int:
        """
        Send application data.

        :returns: the number of bytes of ``item`` written. CR insertion
            by the pty mode is not counted.
        """
        self._check_closing()
        if self.pty:
            size = len(item)
            item = bytes(item).replace(b'\n', b'\r\n').replace(b'\r\r\n', b'\r\n')
            return min(await self.writer.send(item), size)
        return await self.writer.send(item)

    async def send_command(self, verb: int, option: int) -> int:
        return await self.writer.send_command(verb, option)

    async def readline(self) -> bytes:
        return await readline(self)

    async def writeline(self, *text: Union[str, bytes]):
        await writeline(self, *text)

    async def send_eof(self):
        await self._stream.send_eof()

    async def aclose(self):
        await self._stream.aclose()

    @property
    def extra_attributes(self):
        return self._stream.extra_attributes

    def __repr__(self):
        info = [self.remote_address]
        if self.has_window_size:
            info.append('cols=%d rows=%d' % self.window_size)
        if self.pty:
            info.append('pty')
        return '<%s: %s>' % (self.__class__.__name__, ' '.join(info))
