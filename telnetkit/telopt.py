# Telnet commands and options.
#
# Only the subset of RFC 854 / RFC 1073 this package speaks.
# Enums are way nicer than telnetlib's bytes.

from enum import IntEnum

__all__ = (
    'Cmd', 'Opt',
    'SE', 'SB', 'WILL', 'WONT', 'DO', 'DONT', 'IAC',
    'ECHO', 'SGA', 'NAWS', 'LINEMODE',
    'CR', 'LF', 'VERBS',
    'name_command', 'name_commands',
)

def _exp(cls):
    for k in dir(cls):
        if k[0].isupper():
            globals()[k] = getattr(cls, k)
    return cls

@_exp
class Cmd(IntEnum):
    SE = 240  # Subnegotiation End
    SB = 250  # Subnegotiation Begin
    WILL = 251  # I want to do …
    WONT = 252  # I will not do …
    DO = 253  # Please do …
    DONT = 254  # You should not do …
    IAC = 255  # Escape

@_exp
class Opt(IntEnum):
    ECHO = 1
    SGA = 3  # Suppress Go Ahead
    NAWS = 31  # Negotiate About Window Size
    LINEMODE = 34

# negotiation verbs: IAC + verb + option, always three bytes
VERBS = frozenset((Cmd.WILL, Cmd.WONT, Cmd.DO, Cmd.DONT))

CR, LF = b'\r\n'


def name_command(byte):
    """Return string description for (maybe) telnet command byte."""
    try:
        return Cmd(byte).name
    except ValueError:
        try:
            return Opt(byte).name
        except ValueError:
            return repr(byte)

def name_commands(cmds, sep=' '):
    """Return string description for array of (maybe) telnet command bytes."""
    return sep.join(name_command(byte) for byte in cmds)
