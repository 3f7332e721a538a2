"""Pseudo-terminal process providers for ptyrelay.

Public API:
    PtyProvider -- Abstract provider (spawns processes)
    PtyProcess -- Abstract handle to a PTY-backed child process
    UnixPtyProvider -- openpty/fork/exec backend for POSIX hosts
"""

from ptyrelay.pty.base import (
    PtyClosedError,
    PtyError,
    PtyProcess,
    PtyProvider,
    PtySpawnError,
)

__all__ = [
    "PtyClosedError",
    "PtyError",
    "PtyProcess",
    "PtyProvider",
    "PtySpawnError",
    "UnixPtyProcess",
    "UnixPtyProvider",
]


def __getattr__(name: str) -> type:
    """Lazy import for the POSIX backend, which needs fcntl/termios."""
    if name == "UnixPtyProvider":
        from ptyrelay.pty.unix import UnixPtyProvider
        return UnixPtyProvider
    if name == "UnixPtyProcess":
        from ptyrelay.pty.unix import UnixPtyProcess
        return UnixPtyProcess
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
