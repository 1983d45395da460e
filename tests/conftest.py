import pytest
import socket
import ssl
import anyio
import trustme

from contextlib import asynccontextmanager, closing
from functools import partial

from telnetkit.server import Server


@pytest.fixture(scope="module", params=['127.0.0.1'])
def bind_host(request):
    """ Localhost bind address. """
    return request.param

def _unused_tcp_port():
    """Find an unused localhost TCP port from 1024-65535 and return it."""
    with closing(socket.socket()) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]

@pytest.fixture
def unused_tcp_port():
    return _unused_tcp_port()

@pytest.fixture
def server(bind_host, unused_tcp_port):
    @asynccontextmanager
    async def mgr(handler=None, *, tls=False, certfile=None, keyfile=None, **kw):
        srv = Server(handler, host=bind_host, port=unused_tcp_port, **kw)
        if tls:
            run = partial(srv.listen_and_serve_tls, certfile, keyfile)
        else:
            run = srv.listen_and_serve
        async with anyio.create_task_group() as tg:
            evt = anyio.Event()
            tg.start_soon(partial(run, evt=evt))
            await evt.wait()
            yield srv
            tg.cancel_scope.cancel()
    return mgr

@pytest.fixture
def ca():
    return trustme.CA()

@pytest.fixture
def cert_files(ca, tmp_path):
    """PEM certificate chain and key for 127.0.0.1, as file paths."""
    cert = ca.issue_cert("127.0.0.1", "localhost")
    cert_pem = tmp_path / "cert.pem"
    key_pem = tmp_path / "key.pem"
    cert.private_key_pem.write_to_path(str(key_pem))
    with open(str(cert_pem), "wb") as f:
        for blob in cert.cert_chain_pems:
            f.write(blob.bytes())
    return str(cert_pem), str(key_pem)

@pytest.fixture
def client_ssl_context(ca):
    ctx = ssl.create_default_context()
    ca.configure_trust(ctx)
    return ctx

@pytest.fixture(params=[
    pytest.param(('asyncio', {}), id='asyncio'),
    pytest.param(('trio', {}), id='trio'),
])
def anyio_backend(request):
    return request.param
