"""Abstract interface for the client-facing transport of a relay session.

A connection carries two kinds of messages: text (control commands) and
binary (terminal bytes). The session only needs to receive either kind,
send binary, and close; the WebSocket adapter in ``ptyrelay.endpoint``
is the production implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class Connection(ABC):
    """A full-duplex message transport owned by exactly one session."""

    @abstractmethod
    async def receive(self) -> str | bytes | None:
        """Wait for the next message from the client.

        Returns:
            ``str`` for a text message, ``bytes`` for a binary message, or
            ``None`` once the client has disconnected.

        Raises:
            ConnectionClosedError: If the transport failed mid-receive.
        """
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Send ``data`` as one binary message.

        Raises:
            ConnectionClosedError: If the transport is closed or the send failed.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        ...


class ConnectionClosedError(Exception):
    """Raised when the client transport is closed or broken."""
