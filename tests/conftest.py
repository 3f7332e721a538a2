"""Shared test fixtures for the ptyrelay test suite.

Provides in-memory stand-ins for the two external collaborators of a
relay session -- the PTY provider and the client connection -- so the
session can be driven without forking processes or opening sockets.
"""

from __future__ import annotations

import asyncio

import pytest

from ptyrelay.config.settings import ShellConfig
from ptyrelay.domain.models import SpawnRequest
from ptyrelay.pty.base import PtyClosedError, PtyProcess, PtyProvider, PtySpawnError
from ptyrelay.relay.connection import Connection, ConnectionClosedError
from ptyrelay.relay.establisher import SessionEstablisher


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakePtyProcess(PtyProcess):
    """Records everything done to it; echoes input back as output by default."""

    def __init__(self, request: SpawnRequest, echo: bool = True) -> None:
        self.request = request
        self.echo = echo
        self.written: list[bytes] = []
        self.resizes: list[tuple[int, int]] = []
        self.kills: list[int] = []
        self.close_calls = 0
        self._output: asyncio.Queue[bytes] = asyncio.Queue()
        self._exited = False
        self._closed = False

    @property
    def pid(self) -> int | None:
        return None if self._exited else 4242

    @property
    def is_alive(self) -> bool:
        return not self._exited

    def emit(self, data: bytes) -> None:
        """Make the 'shell' produce output."""
        self._output.put_nowait(data)

    def exit(self) -> None:
        """Make the 'shell' exit: the output stream ends."""
        self._exited = True
        self._output.put_nowait(b"")

    async def read(self) -> bytes:
        if self._closed:
            raise PtyClosedError("PTY is closed")
        return await self._output.get()

    async def write(self, data: bytes) -> None:
        if self._closed or self._exited:
            raise PtyClosedError("PTY is gone")
        self.written.append(data)
        if data == b"exit\n":
            self.exit()
        elif self.echo:
            self.emit(data)

    def resize(self, cols: int, rows: int) -> None:
        self.resizes.append((cols, rows))

    def kill(self, sig: int) -> None:
        self.kills.append(sig)
        if not self._exited:
            self.exit()

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakePtyProvider(PtyProvider):
    def __init__(self, fail: bool = False, echo: bool = True, spawn_delay: float = 0.0) -> None:
        self.fail = fail
        self.echo = echo
        self.spawn_delay = spawn_delay
        self.requests: list[SpawnRequest] = []
        self.processes: list[FakePtyProcess] = []

    @property
    def process(self) -> FakePtyProcess:
        return self.processes[-1]

    async def spawn(self, request: SpawnRequest) -> FakePtyProcess:
        self.requests.append(request)
        if self.spawn_delay:
            await asyncio.sleep(self.spawn_delay)
        if self.fail:
            raise PtySpawnError("Command not found: nosuchshell", argv=list(request.argv))
        process = FakePtyProcess(request, echo=self.echo)
        self.processes.append(process)
        return process


class FakeConnection(Connection):
    """A client connection driven from the test via push()/disconnect()."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.close_calls = 0
        self.fail_sends = False
        self._inbound: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        self._closed = False

    @property
    def received_output(self) -> bytes:
        return b"".join(self.sent)

    def push(self, message: str | bytes) -> None:
        self._inbound.put_nowait(message)

    def disconnect(self) -> None:
        self._inbound.put_nowait(None)

    async def receive(self) -> str | bytes | None:
        if self._closed:
            return None
        return await self._inbound.get()

    async def send_bytes(self, data: bytes) -> None:
        if self._closed or self.fail_sends:
            raise ConnectionClosedError("connection is closed")
        self.sent.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def shell_config() -> ShellConfig:
    return ShellConfig(default_shell="/bin/sh", termination_grace=0.5)


@pytest.fixture
def host_environ() -> dict[str, str]:
    """A small, predictable host environment."""
    return {"PATH": "/usr/bin:/bin", "HOME": "/home/tester", "TERM": "dumb", "SHELL": "/bin/sh"}


@pytest.fixture
def establisher(shell_config: ShellConfig, host_environ: dict[str, str]) -> SessionEstablisher:
    return SessionEstablisher(shell_config, environ=host_environ, cwd="/tmp")


@pytest.fixture
def fake_provider() -> FakePtyProvider:
    return FakePtyProvider()


@pytest.fixture
def failing_provider() -> FakePtyProvider:
    return FakePtyProvider(fail=True)


@pytest.fixture
def slow_provider() -> FakePtyProvider:
    """A provider whose spawn takes a while, so the session can be closed mid-spawn."""
    return FakePtyProvider(spawn_delay=0.1)


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()
