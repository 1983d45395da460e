"""
The ``main`` function here is wired to the command line tool by name
telnetkit-server.  If this server's PID receives the SIGTERM signal, it
attempts to shutdown gracefully.

The :class:`Server` class accepts connections, wraps each of them in a
:class:`~.Session` and runs a handler for it in its own task. Each
connection can be cancelled on its own (or all of them at once, by
:meth:`Server.shutdown`); a cancelled connection's transport is closed no
matter what its handler is doing.
"""
# std imports
import argparse
import collections
import logging
import signal
import ssl
import anyio
import anyio.abc
from anyio.streams.tls import TLSListener
from functools import partial
from typing import Awaitable, Callable, Optional

# local
from . import accessories
from .session import Session
from .stream import ProtocolError
from .telopt import WONT, SGA

__all__ = ('Server', 'echo_handler', 'serve', 'listen_and_serve',
           'listen_and_serve_tls', 'run_server', 'parse_server_args')

TELNET_PORT = 23
TELNETS_PORT = 992

CONFIG = collections.namedtuple('CONFIG', [
    'host', 'port', 'loglevel', 'logfile', 'logfmt', 'shell', 'timeout',
    'tls', 'certfile', 'keyfile'])(
        host='localhost', port=6023, loglevel='info',
        logfile=None, logfmt=accessories._DEFAULT_LOGFMT,
        shell='telnetkit.server_shell.default_shell',
        timeout=0, tls=False, certfile=None, keyfile=None)

Handler = Callable[[Session], Awaitable[None]]

# errors that just mean the connection is gone
_CONN_ERRORS = (anyio.EndOfStream, anyio.ClosedResourceError,
                anyio.BrokenResourceError, OSError, ProtocolError)


async def echo_handler(session: Session):
    """
    Send every byte of data received back to the client.

    Reads one byte at a time, so nothing waits for a buffer to fill up.
    """
    while True:
        data = await session.receive(1)
        await session.send(data)


class Server:
    """
    A TELNET (or TELNETS) server.

    :param Callable handler: coroutine that serves one connection,
        receiving its :class:`~.Session`. The connection is closed when it
        returns. Defaults to :func:`echo_handler`.
    :param str host: bind address for :meth:`listen_and_serve`.
    :param int port: bind port; 23, or 992 for TLS, if unset.
    :param float timeout: if set, every connection is closed this many
        seconds after it was accepted.
    :param Callable context_hook: called as ``context_hook(scope, stream)``
        for each new connection; returns the (unentered)
        :class:`anyio.CancelScope` to use as the connection's lifecycle
        token.
    :param Callable conn_hook: called as ``conn_hook(scope, stream)``
        after ``context_hook``; returns the stream to build the session on.
    :param ssl.SSLContext ssl_context: TLS credentials for
        :meth:`listen_and_serve_tls`.
    :param session_factory: builds the session, default :class:`~.Session`.
    :param logging.Logger log: target logger, if None is given, one is
        created using the namespace ``'telnetkit.server'``.
    """

    def __init__(self, handler: Optional[Handler] = None, *, host=None,
                 port=None, timeout=None, context_hook=None, conn_hook=None,
                 ssl_context: Optional[ssl.SSLContext] = None,
                 session_factory=Session, log=None):
        self.handler = handler
        self.host = host
        self.port = port
        self.timeout = timeout
        self.context_hook = context_hook
        self.conn_hook = conn_hook
        self.ssl_context = ssl_context
        self.session_factory = session_factory
        self.log = log or logging.getLogger('telnetkit.server')

        self._listener = None
        self._accept_scope = None
        self._stopping = False

        # remote address => cancel the connection
        self._handles = {}
        self._handles_lock = anyio.Lock()

    @property
    def connections(self):
        """Remote addresses of the connections currently being served."""
        return list(self._handles)

    async def listen_and_serve(self, *, evt=None):
        """
        Listen on TCP ``host``/``port`` and serve connections.

        :param anyio.Event evt: set once the server is listening.
        """
        listener = await anyio.create_tcp_listener(
            local_host=self.host, local_port=self.port or TELNET_PORT)
        await self.serve(listener, evt=evt)

    async def listen_and_serve_tls(self, certfile=None, keyfile=None, *, evt=None):
        """
        Like :meth:`listen_and_serve`, but TELNET over TLS.

        The certificate and key are loaded from the given files unless
        ``ssl_context`` is already set. The TLS handshake happens in the
        connection's task, not in the accept loop.
        """
        if self.ssl_context is None:
            if not certfile and not keyfile:
                raise ValueError("missing certificate file and key file")
            context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
            context.load_cert_chain(certfile, keyfile)
            self.ssl_context = context

        listener = await anyio.create_tcp_listener(
            local_host=self.host, local_port=self.port or TELNETS_PORT)
        await self.serve(TLSListener(listener, self.ssl_context,
                                     standard_compatible=False), evt=evt)

    async def serve(self, listener: anyio.abc.Listener, *, evt=None):
        """
        Serve connections accepted on ``listener``.

        Returns after :meth:`shutdown`, once all connection tasks have
        ended. Errors from the listener itself are not caught.
        """
        if self._listener is not None:
            raise RuntimeError("server already listening")
        self._listener = listener

        if self.handler is None:
            self.log.debug("no handler set, using echo_handler")
            self.handler = echo_handler

        async with anyio.create_task_group() as tg:
            # the listener closes as soon as accepting stops
            async with listener:
                with anyio.CancelScope() as self._accept_scope:
                    if self._stopping:
                        self._accept_scope.cancel()
                    self.log.info('Server ready on %s', _local_address(listener))
                    if evt is not None:
                        evt.set()
                    await listener.serve(self._handle, tg)
        self.log.debug('Server stopped')

    async def shutdown(self):
        """
        Stop accepting connections and cancel every open one.

        This returns as soon as every connection has been told to cancel.
        It does *not* wait for their handlers to return or for their
        transports to be closed; :meth:`serve` returns when that's done.
        """
        self._stopping = True
        if self._accept_scope is not None:
            # serve() closes the listener once the accept loop is done
            self._accept_scope.cancel()

        async with self._handles_lock:
            cancels = list(self._handles.values())
        self.log.debug("cancelling %d connections", len(cancels))

        async def _cancel(cancel):
            cancel()

        async with anyio.create_task_group() as tg:
            for cancel in cancels:
                tg.start_soon(_cancel, cancel)

    def _new_scope(self):
        if self.timeout:
            return anyio.CancelScope(deadline=anyio.current_time() + self.timeout)
        return anyio.CancelScope()

    async def _handle(self, stream: anyio.abc.ByteStream):
        try:
            scope = self._new_scope()
            if self.context_hook is not None:
                scope = self.context_hook(scope, stream)
            if self.conn_hook is not None:
                stream = self.conn_hook(scope, stream)

            session = self.session_factory(stream, scope=scope, log=self.log)
            key = session.remote_address
        except Exception:
            self.log.exception("%r: connection setup failed", stream)
            await anyio.aclose_forcefully(stream)
            return
        self.log.debug("received new connection from %s", key)

        async with self._handles_lock:
            self._handles[key] = scope.cancel
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._watch, session, name="watch " + key)
                try:
                    await self._run(session, key)
                finally:
                    with anyio.CancelScope(shield=True):
                        await self._unregister(key, scope)
                    scope.cancel()
        finally:
            # the watcher may never have started
            await anyio.aclose_forcefully(stream)
        self.log.debug("%s: connection closed", key)

    async def _unregister(self, key, scope):
        async with self._handles_lock:
            if self._handles.get(key) == scope.cancel:
                del self._handles[key]

    async def _watch(self, session: Session):
        with session.scope:
            await anyio.sleep_forever()
        self.log.debug("%s: closing", session.remote_address)
        try:
            await anyio.aclose_forcefully(session.stream)
        except (anyio.BrokenResourceError, OSError) as exc:
            self.log.debug("%s: close: %r", session.remote_address, exc)

    async def _run(self, session: Session, key: str):
        # Clients that negotiated SGA handle ENTER wrongly once echo is
        # switched off and on again, which password prompts do.
        try:
            await session.send_command(WONT, SGA)
        except _CONN_ERRORS as exc:
            self.log.debug("%s: initial negotiation failed: %r", key, exc)
            return

        try:
            await self.handler(session)
        except _CONN_ERRORS as exc:
            self.log.debug("%s: connection lost: %r", key, exc)
        except Exception:
            self.log.exception("%s: handler failed", key)

    def __repr__(self):
        return '<%s: %d connections>' % (self.__class__.__name__, len(self._handles))


def _local_address(listener):
    # TLSListener wraps the socket listener
    listener = getattr(listener, 'listener', listener)
    addr = listener.extra(anyio.abc.SocketAttribute.local_address, None)
    if isinstance(addr, tuple):
        return '%s:%d' % addr[:2]
    return repr(addr)


async def serve(listener, handler=None, **kw):
    """Serve TELNET connections accepted on ``listener``."""
    await Server(handler, **kw).serve(listener)

async def listen_and_serve(host=None, port=TELNET_PORT, handler=None, **kw):
    """Listen on ``host``/``port`` and serve TELNET connections."""
    await Server(handler, host=host, port=port, **kw).listen_and_serve()

async def listen_and_serve_tls(host=None, port=TELNETS_PORT, certfile=None,
                               keyfile=None, handler=None, **kw):
    """Listen on ``host``/``port`` and serve TELNETS connections."""
    await Server(handler, host=host, port=port, **kw).listen_and_serve_tls(
        certfile, keyfile)


async def _sigterm_handler(server, log):
    with anyio.open_signal_receiver(signal.SIGTERM, signal.SIGINT) as signals:
        async for signum in signals:
            log.info('%s received, closing server.', signal.Signals(signum).name)
            await server.shutdown()
            return


async def _run_server(server, tls=False, certfile=None, keyfile=None):
    async with anyio.create_task_group() as tg:
        tg.start_soon(_sigterm_handler, server, server.log)
        if tls:
            await server.listen_and_serve_tls(certfile, keyfile)
        else:
            await server.listen_and_serve()
        tg.cancel_scope.cancel()


def parse_server_args():
    parser = argparse.ArgumentParser(
        description="Telnet protocol server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('host', nargs='?', default=CONFIG.host,
                        help='bind address')
    parser.add_argument('port', nargs='?', type=int, default=CONFIG.port,
                        help='bind port')
    parser.add_argument('--loglevel', default=CONFIG.loglevel,
                        help='level name')
    parser.add_argument('--logfile', default=CONFIG.logfile,
                        help='filepath')
    parser.add_argument('--logfmt', default=CONFIG.logfmt,
                        help='log format')
    parser.add_argument('--shell', default=CONFIG.shell,
                        type=accessories.function_lookup,
                        help='module.function_name')
    parser.add_argument('--timeout', default=CONFIG.timeout, type=float,
                        help='close connections after this many seconds (0 disables)')
    parser.add_argument('--tls', action='store_true', default=CONFIG.tls,
                        help='serve TELNETS')
    parser.add_argument('--certfile', default=CONFIG.certfile,
                        help='TLS certificate file')
    parser.add_argument('--keyfile', default=CONFIG.keyfile,
                        help='TLS key file')
    return vars(parser.parse_args())


def run_server(host=CONFIG.host, port=CONFIG.port, loglevel=CONFIG.loglevel,
               logfile=CONFIG.logfile, logfmt=CONFIG.logfmt,
               shell=None, timeout=CONFIG.timeout, tls=CONFIG.tls,
               certfile=CONFIG.certfile, keyfile=CONFIG.keyfile):
    """
    Program entry point for server daemon.

    This function configures a logger and creates a telnet server for the
    given keyword arguments, serving forever, completing only upon receipt of
    SIGTERM.
    """
    log = accessories.make_logger(
        name=__name__,
        loglevel=loglevel,
        logfile=logfile,
        logfmt=logfmt)

    if shell is None:
        shell = accessories.function_lookup(CONFIG.shell)
    server = Server(shell, host=host, port=port, timeout=timeout, log=log)
    anyio.run(partial(_run_server, server, tls=tls,
                      certfile=certfile, keyfile=keyfile))
    log.info('Server stop.')


def main():
    """Command-line 'telnetkit-server' entry point, via setuptools."""
    return run_server(**parse_server_args())


if __name__ == '__main__':
    exit(main())
