#!/usr/bin/env python3
"""
Telnet Client API for the 'telnetkit' python package.
"""
# std imports
import argparse
import logging
import ssl
import anyio
import anyio.abc
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional, Union

# local imports
from . import accessories
from .stream import TelnetReader, TelnetWriter, readline, writeline

__all__ = ('TelnetClient', 'open_connection', 'run_client')

TELNET_PORT = 23
TELNETS_PORT = 992


class TelnetClient(anyio.abc.ByteStream):
    """
    The client end of a TELNET connection.

    Data sent is escaped, data received has had all commands removed;
    see :class:`~.TelnetWriter` and :class:`~.TelnetReader`.
    """

    def __init__(self, stream: anyio.abc.ByteStream, *, log=None):
        self._stream = stream
        self.log = log or logging.getLogger('telnetkit.client')
        self.reader = TelnetReader(stream, log=self.log)
        self.writer = TelnetWriter(stream, log=self.log)

    async def receive(self, max_bytes: int = 65536) -> bytes:
        return await self.reader.receive(max_bytes)

    async def send(self, item: bytes) -> int:
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

    @property
    def local_address(self):
        return self.extra(anyio.abc.SocketAttribute.local_address, None)

    @property
    def remote_address(self):
        return self.extra(anyio.abc.SocketAttribute.remote_address, None)

    def __repr__(self):
        return '<%s: %r>' % (self.__class__.__name__, self.remote_address)


@asynccontextmanager
async def open_connection(host='127.0.0.1', port=None, *, tls=False,
                          ssl_context: Optional[ssl.SSLContext] = None,
                          log=None, **kwargs):
    """
    Connect to a TCP Telnet server as a Telnet client.

    :param str host: Remote Internet TCP Server host.
    :param int port: Remote Internet host TCP port; 23, or 992 with TLS,
        if not given.
    :param bool tls: connect with TLS (TELNETS). Implied by ``ssl_context``.
    :param ssl.SSLContext ssl_context: TLS client settings. The system's
        default context is used if ``tls`` is set without one.
    :param logging.Logger log: target logger, if None is given, one is created
        using the namespace ``'telnetkit.client'``.

    Other keyword arguments are passed to :func:`anyio.connect_tcp`.

    :return mgr: yields a :class:`TelnetClient`.
    """
    log = log or logging.getLogger('telnetkit.client')
    tls = tls or ssl_context is not None
    if port is None:
        port = TELNETS_PORT if tls else TELNET_PORT

    if tls:
        kwargs.update(tls=True, ssl_context=ssl_context,
                      tls_standard_compatible=False)
    async with await anyio.connect_tcp(host, port, **kwargs) as conn:
        log.debug('connected to %s:%d', host, port)
        yield TelnetClient(conn, log=log)

async def run_client(host, port=None, *, caller=None, **kw):
    """
    Connect, then run ``caller(client)``; the connection is closed when it
    returns.
    """
    if caller is None:
        from .client_shell import echo_caller as caller
    async with open_connection(host=host, port=port, **kw) as client:
        await caller(client)

def main():
    """Command-line 'telnetkit-client' entry point, via setuptools."""
    kwargs = _transform_args(_get_argument_parser().parse_args())
    config_msg = (
        'Client configuration: {key_values}'
        .format(key_values=accessories.repr_mapping(kwargs)))
    host = kwargs.pop('host')
    port = kwargs.pop('port')

    log = kwargs['log'] = accessories.make_logger(
        name=__name__,
        loglevel=kwargs.pop('loglevel'),
        logfile=kwargs.pop('logfile'),
        logfmt=kwargs.pop('logfmt'))
    log.debug(config_msg)

    # connect
    anyio.run(partial(run_client, host, port, **kwargs))


def _get_argument_parser():
    parser = argparse.ArgumentParser(
        description="Telnet protocol client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('host', action='store',
                        help='hostname')
    parser.add_argument('port', nargs='?', default=None, type=int,
                        help='port number (default: 23, or 992 with --tls)')
    parser.add_argument('--loglevel', default='warn',
                        help='log level')
    parser.add_argument('--logfmt', default=accessories._DEFAULT_LOGFMT,
                        help='log format')
    parser.add_argument('--logfile',
                        help='filepath')
    parser.add_argument('--caller', default='telnetkit.client_shell.echo_caller',
                        help='module.function_name')
    parser.add_argument('--tls', action='store_true', default=False,
                        help='connect with TLS (TELNETS)')
    return parser


def _transform_args(args):
    return {
        'host': args.host,
        'port': args.port,
        'loglevel': args.loglevel,
        'logfile': args.logfile,
        'logfmt': args.logfmt,
        'caller': accessories.function_lookup(args.caller),
        'tls': args.tls,
    }


if __name__ == '__main__':
    exit(main())
