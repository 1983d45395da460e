"""Accessory functions."""
# std imports
import importlib
import logging
import anyio

__all__ = ('make_logger', 'repr_mapping', 'function_lookup', 'long_send',
           'ShortWriteError')


def get_version():
    try:
        from importlib.metadata import version
        return version("telnetkit")
    except Exception:
        return "0.0"


_DEFAULT_LOGFMT = ' '.join(('%(asctime)s',
                            '%(levelname)s',
                            '%(filename)s:%(lineno)d',
                            '%(message)s'))
def make_logger(name, loglevel='info', logfile=None, logfmt=_DEFAULT_LOGFMT):
    """Create and return simple logger for the given arguments.
    This is only suitable for your main program.
    """
    lvl = getattr(logging, loglevel.upper())
    logging.getLogger().setLevel(lvl)

    _cfg = {'format': logfmt}
    if logfile:
        _cfg['filename'] = logfile
    logging.basicConfig(**_cfg)
    return logging.getLogger(name)

def repr_mapping(mapping):
    """Return printable string, 'key=value [key=value ...]' for mapping."""
    return ' '.join('='.join(map(str, kv)) for kv in mapping.items())

def function_lookup(pymod_path):
    """Return callable function target from standard module.function path."""
    module_name, func_name = pymod_path.rsplit('.', 1)
    module = importlib.import_module(module_name)
    shell_function = getattr(module, func_name)
    assert callable(shell_function), shell_function
    return shell_function


class ShortWriteError(anyio.BrokenResourceError):
    """The transport accepted nothing and reported no error."""
    pass

async def long_send(stream, buf) -> int:
    """
    Write all of ``buf`` to ``stream``, retrying short writes.

    anyio streams send everything or raise, and return ``None``. Other
    transports may return the number of bytes they actually took; the
    remainder is re-offered until nothing is left.

    :raises ShortWriteError: a send took zero bytes without raising.
    :returns: the number of bytes written, i.e. ``len(buf)``.
    """
    view = memoryview(buf)
    written = 0
    while written < len(view):
        n = await stream.send(bytes(view[written:]))
        if n is None:
            n = len(view) - written
        elif n <= 0:
            raise ShortWriteError(
                "no progress after %d of %d bytes" % (written, len(view)))
        written += n
    return written
