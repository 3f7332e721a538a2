"""ptyrelay -- Shell sessions over WebSockets.

Each WebSocket connection gets its own pseudo-terminal backed shell.
Binary messages carry raw terminal bytes in both directions; text
messages carry JSON resize commands. Terminal emulation is left to
the browser side -- the relay only moves bytes.
"""

__version__ = "0.1.0"
