"""Terminal relay sessions.

Public API:
    TerminalSession -- Bridges one connection to one PTY shell
    SessionEstablisher -- Decides what shell to spawn for a session
    Connection -- Abstract client transport
"""

from ptyrelay.relay.connection import Connection, ConnectionClosedError
from ptyrelay.relay.establisher import SessionEstablisher
from ptyrelay.relay.session import TerminalSession

__all__ = [
    "Connection",
    "ConnectionClosedError",
    "SessionEstablisher",
    "TerminalSession",
]
