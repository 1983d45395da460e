"""telnetkit: an anyio-based TELNET server and client library."""
# pylint: disable=wildcard-import,undefined-variable
from .telopt import *           # noqa
from .accessories import *      # noqa
from .stream import *           # noqa
from .session import *          # noqa
from .server import *           # noqa
from .server_shell import *     # noqa
from .client import *           # noqa
from .client_shell import *     # noqa
from .accessories import get_version as __get_version

__all__ = (
    telopt.__all__ +
    accessories.__all__ +
    stream.__all__ +
    session.__all__ +
    server.__all__ +
    server_shell.__all__ +
    client.__all__ +
    client_shell.__all__
)  # noqa

__license__ = 'ISC'
__version__ = __get_version()
