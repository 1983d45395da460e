import anyio
import sys

__all__ = ('echo_caller', 'standard_caller')

CRLF = b'\r\n'

#: How long :func:`standard_caller` keeps printing server output after
#: its input has run out.
EOF_GRACE = 0.5


def _stdio(stdin, stdout):
    if stdin is None:
        stdin = anyio.wrap_file(sys.stdin.buffer)
    if stdout is None:
        stdout = anyio.wrap_file(sys.stdout.buffer)
    return stdin, stdout

def _crlf(line: bytes) -> bytes:
    if not line.endswith(CRLF):
        # the line may end with a bare LF
        line = line.rstrip(b'\n') + CRLF
    return line


async def echo_caller(client, stdin=None, stdout=None):
    """
    Line-by-line conversation: print a line from the server, then send one
    line of input.

    ``stdin`` and ``stdout`` are binary :class:`anyio.AsyncFile`-like
    objects, defaulting to the process's.
    """
    stdin, stdout = _stdio(stdin, stdout)
    while True:
        try:
            line = await client.readline()
        except anyio.EndOfStream:
            await stdout.write(b"Connection closed by foreign host.\n")
            await stdout.flush()
            return
        await stdout.write(line if line.endswith(b'\n') else line + b'\n')
        await stdout.flush()

        reply = await stdin.readline()
        if not reply:
            return
        await client.writeline(_crlf(reply))


async def standard_caller(client, stdin=None, stdout=None):
    """
    Copy everything from the server to ``stdout`` while sending each line
    of ``stdin`` to the server, CR LF terminated.

    Ends when the server closes the connection, or shortly after input
    runs out.
    """
    stdin, stdout = _stdio(stdin, stdout)

    async def copy_out(scope):
        try:
            while True:
                data = await client.receive(1)
                await stdout.write(data)
                await stdout.flush()
        except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
        scope.cancel()

    async with anyio.create_task_group() as tg:
        tg.start_soon(copy_out, tg.cancel_scope)
        while True:
            line = await stdin.readline()
            if not line:
                break
            await client.send(_crlf(line))

        # leave the server a moment to answer
        await anyio.sleep(EOF_GRACE)
        tg.cancel_scope.cancel()
