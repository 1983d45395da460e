import anyio
import hmac
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from . import accessories
from .telopt import WILL, WONT, ECHO

__all__ = ('Shell', 'ShellCommand', 'make_auth_handler', 'default_shell')

DEFAULT_COMMAND_NOT_FOUND = ": command not found\n"
DEFAULT_EXIT_COMMAND = "exit"
DEFAULT_EXIT_MESSAGE = "Goodbye!\r\n"
DEFAULT_PROMPT = "$ "
DEFAULT_WELCOME_MESSAGE = "\r\nWelcome!\r\n"


@dataclass
class ShellCommand:
    """A line matching ``regex`` (anywhere) is answered with ``response``."""
    regex: str
    response: str


class Shell:
    """
    A tiny fake shell, usable as a server handler.

    Each input line is matched against ``commands`` in order; the first
    match's response is sent back. Unmatched lines go to
    ``generic_handler(line) -> str`` if given, otherwise the client is
    told the command wasn't found. ``exit`` ends the session.

    :param Callable auth_handler: coroutine called with the session before
        anything else; the session ends unless it returns True.
        See :func:`make_auth_handler`.
    :param str version: sent after the welcome message, if set.
    """

    def __init__(self, commands: Iterable[ShellCommand] = (),
                 generic_handler: Optional[Callable[[str], str]] = None,
                 auth_handler=None, version: str = '', log=None):
        self.commands = [(re.compile(c.regex), c) for c in commands]
        self.generic_handler = generic_handler
        self.auth_handler = auth_handler
        self.version = version
        self.log = log or logging.getLogger('telnetkit.shell')

    async def __call__(self, session):
        try:
            await self._run(session)
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            return

    async def _run(self, session):
        if self.auth_handler is not None and not await self.auth_handler(session):
            return

        await session.writeline(DEFAULT_WELCOME_MESSAGE)
        if self.version:
            await session.writeline(self.version, "\r\n")

        while True:
            await session.writeline(DEFAULT_PROMPT)
            line = (await session.readline()).decode('utf-8', 'replace')
            self.log.debug("%s: %r", session.remote_address, line)

            fields = line.split(' ')
            if fields[0] == DEFAULT_EXIT_COMMAND:
                await session.writeline(DEFAULT_EXIT_MESSAGE)
                return

            for regex, command in self.commands:
                if regex.search(line):
                    await session.writeline(command.response)
                    break
            else:
                if self.generic_handler is not None:
                    await session.writeline(self.generic_handler(line))
                else:
                    await session.writeline(fields[0], DEFAULT_COMMAND_NOT_FOUND)


def make_auth_handler(username: str, password: str, max_attempts: int = 3,
                      delay: float = 3):
    """
    Return a login prompt for :class:`Shell`.

    The password isn't echoed: the server claims ``WILL ECHO`` while it is
    typed, so the client stops echoing locally, and then takes it back.
    Failed attempts are delayed by ``delay`` seconds.
    """
    async def auth_handler(session) -> bool:
        for _ in range(max_attempts):
            await session.writeline("Login: ")
            user = await session.readline()

            await session.writeline("Password: ")
            await session.send_command(WILL, ECHO)
            secret = await session.readline()
            await session.send_command(WONT, ECHO)
            await session.writeline("\n")

            if (hmac.compare_digest(user, username.encode('utf-8')) and
                    hmac.compare_digest(secret, password.encode('utf-8'))):
                return True

            await anyio.sleep(delay)
            await session.writeline("\nLogin incorrect\n")

        await session.writeline(
            "Maximum number of tries exceeded (%d)\n" % (max_attempts,))
        return False

    return auth_handler


default_shell = Shell(
    commands=[
        ShellCommand(r'^help$', 'help, uname, version, exit\n'),
        ShellCommand(r'^uname', 'telnetkit\n'),
        ShellCommand(r'^version$', accessories.get_version() + '\n'),
    ])
