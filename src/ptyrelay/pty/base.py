"""Abstract interface for pseudo-terminal process providers.

A provider turns a SpawnRequest into a running child process attached to
a PTY. The relay session only talks to these interfaces, so tests can
swap in an in-memory process and other platforms can add their own
backend without touching the session code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ptyrelay.domain.models import SpawnRequest


class PtyProcess(ABC):
    """A child process attached to the slave side of a PTY.

    The read side (terminal output) and write side (terminal input) are
    independent, so one task may read while another writes.
    """

    @property
    @abstractmethod
    def pid(self) -> int | None:
        """Process id of the child, or None once it has been reaped."""
        ...

    @property
    @abstractmethod
    def is_alive(self) -> bool:
        ...

    @abstractmethod
    async def read(self) -> bytes:
        """Read the next chunk of terminal output.

        Returns:
            The bytes available, or ``b""`` once the child has exited and
            the stream has ended.

        Raises:
            PtyClosedError: If the process handle was already closed.
            PtyError: On any other I/O failure.
        """
        ...

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write all of ``data`` to the terminal input.

        Raises:
            PtyClosedError: If the handle is closed or the child is gone.
            PtyError: On any other I/O failure.
        """
        ...

    @abstractmethod
    def resize(self, cols: int, rows: int) -> None:
        """Set the terminal window size; the child gets SIGWINCH."""
        ...

    @abstractmethod
    def kill(self, sig: int) -> None:
        """Send ``sig`` to the child. A no-op if it has already exited."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the PTY file descriptors and reap the child.

        Safe to call more than once.
        """
        ...


class PtyProvider(ABC):
    """Spawns PTY-backed processes."""

    @abstractmethod
    async def spawn(self, request: SpawnRequest) -> PtyProcess:
        """Start ``request.argv`` on a fresh PTY.

        Raises:
            PtySpawnError: If the command cannot be started. Nothing
                allocated for the attempt is left behind.
        """
        ...


class PtyError(Exception):
    """Raised when a PTY operation fails."""


class PtySpawnError(PtyError):
    """Raised when a PTY-backed process cannot be created."""

    def __init__(self, message: str, argv: list[str] | None = None) -> None:
        super().__init__(message)
        self.argv = argv or []


class PtyClosedError(PtyError):
    """Raised for I/O on a PTY whose process is gone or whose handle is closed."""
