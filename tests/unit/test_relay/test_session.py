"""Tests for the relay session: bridge pumps and lifecycle."""

from __future__ import annotations

import asyncio
import signal
from typing import Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from ptyrelay.config.settings import ShellConfig
from ptyrelay.domain.models import SessionState, TerminalGeometry
from ptyrelay.pty.base import PtyClosedError
from ptyrelay.relay.establisher import SessionEstablisher
from ptyrelay.relay.session import TerminalSession


async def _until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def session(fake_connection, fake_provider, establisher) -> TerminalSession:
    return TerminalSession(fake_connection, fake_provider, establisher)


@pytest_asyncio.fixture
async def running(session: TerminalSession):
    """A session whose run() task is active; torn down afterwards."""
    task = asyncio.create_task(session.run())
    await _until(lambda: session.state is not SessionState.OPENING)
    yield task
    await session.close()
    await asyncio.wait_for(task, 1.0)


class TestEstablishment:
    @pytest.mark.asyncio
    async def test_spawn_makes_session_active(
        self, session, running, fake_provider
    ) -> None:
        assert session.state is SessionState.ACTIVE
        assert session.process is fake_provider.process
        assert fake_provider.requests[0].argv == ["/bin/sh"]
        assert session.geometry == TerminalGeometry(cols=80, rows=24)

    @pytest.mark.asyncio
    async def test_spawn_failure_closes_connection(
        self, fake_connection, failing_provider, establisher
    ) -> None:
        session = TerminalSession(fake_connection, failing_provider, establisher)
        await asyncio.wait_for(session.run(), 1.0)
        assert session.state is SessionState.CLOSED
        assert session.process is None
        assert fake_connection.close_calls == 1
        assert fake_connection.sent == []

    @pytest.mark.asyncio
    async def test_close_before_run_never_spawns(
        self, session, fake_connection, fake_provider
    ) -> None:
        await session.close()
        await session.run()
        assert session.state is SessionState.CLOSED
        assert fake_provider.requests == []
        assert fake_connection.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_during_spawn_discards_new_shell(
        self, fake_connection, slow_provider, establisher
    ) -> None:
        session = TerminalSession(fake_connection, slow_provider, establisher)
        task = asyncio.create_task(session.run())
        await _until(lambda: slow_provider.requests != [])
        assert slow_provider.processes == []

        await asyncio.wait_for(session.close(), 1.0)

        assert task.done()
        process = slow_provider.process
        assert process.kills == [signal.SIGTERM]
        assert process.close_calls == 1
        assert process.written == []
        assert fake_connection.close_calls == 1
        assert fake_connection.sent == []
        assert session.process is None
        assert session.state is SessionState.CLOSED


class TestInputPump:
    @pytest.mark.asyncio
    async def test_binary_frame_reaches_pty_and_echo_comes_back(
        self, session, running, fake_connection, fake_provider
    ) -> None:
        fake_connection.push(b"ls\n")
        await _until(lambda: fake_connection.received_output == b"ls\n")
        assert fake_provider.process.written == [b"ls\n"]

    @pytest.mark.asyncio
    async def test_binary_frames_written_in_order(
        self, session, running, fake_connection, fake_provider
    ) -> None:
        frames = [b"a", b"\x1b[A", b"\x00\xff", "é".encode()]
        for frame in frames:
            fake_connection.push(frame)
        await _until(lambda: len(fake_provider.process.written) == len(frames))
        assert fake_provider.process.written == frames

    @pytest.mark.asyncio
    async def test_resize_frame_updates_geometry_without_input(
        self, session, running, fake_connection, fake_provider
    ) -> None:
        fake_connection.push('{"row":40,"col":120}')
        await _until(lambda: fake_provider.process.resizes != [])
        assert fake_provider.process.resizes == [(120, 40)]
        assert session.geometry == TerminalGeometry(cols=120, rows=40)
        assert fake_provider.process.written == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "",
            '{"row": 40}',
            '{"col": 120}',
            '{"row": "40", "col": "120"}',
            '{"row": 40.5, "col": 120}',
            '{"row": true, "col": true}',
            '{"row": 0, "col": 80}',
            '{"row": -1, "col": 80}',
            "[40, 120]",
        ],
    )
    async def test_malformed_control_frame_is_discarded(
        self, session, running, fake_connection, fake_provider, payload: str
    ) -> None:
        fake_connection.push(payload)
        fake_connection.push(b"still here")
        await _until(lambda: fake_provider.process.written != [])
        assert fake_provider.process.written == [b"still here"]
        assert fake_provider.process.resizes == []
        assert session.geometry == TerminalGeometry(cols=80, rows=24)
        assert session.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_write_error_only_drops_that_message(
        self, session, running, fake_connection, fake_provider
    ) -> None:
        process = fake_provider.process
        process.write = AsyncMock(side_effect=[RuntimeError("boom"), None])
        fake_connection.push(b"first")
        fake_connection.push(b"second")
        await _until(lambda: process.write.await_count == 2)
        assert session.state is SessionState.ACTIVE
        process.write.assert_awaited_with(b"second")

    @pytest.mark.asyncio
    async def test_pty_gone_on_write_ends_session(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        fake_provider.process.write = AsyncMock(side_effect=PtyClosedError("gone"))
        fake_connection.push(b"x")
        await asyncio.wait_for(task, 1.0)
        assert session.state is SessionState.CLOSED
        assert fake_connection.close_calls == 1


class TestOutputPump:
    @pytest.mark.asyncio
    async def test_output_concatenation_is_preserved(
        self, session, running, fake_connection, fake_provider
    ) -> None:
        chunks = [b"total 0\r\n", b"-rw-r--r-- 1 ", b"user user 0 a.txt\r\n", b"$ "]
        for chunk in chunks:
            fake_provider.process.emit(chunk)
        await _until(lambda: len(fake_connection.sent) == len(chunks))
        assert fake_connection.received_output == b"".join(chunks)

    @pytest.mark.asyncio
    async def test_send_failure_tears_session_down(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        process = fake_provider.process
        fake_connection.fail_sends = True
        process.emit(b"output nobody will see")
        await asyncio.wait_for(task, 1.0)
        assert session.state is SessionState.CLOSED
        assert process.kills == [signal.SIGTERM]
        assert process.close_calls == 1


class TestTeardown:
    @pytest.mark.asyncio
    async def test_client_disconnect_signals_shell(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        process = fake_provider.process
        fake_connection.disconnect()
        await asyncio.wait_for(task, 1.0)
        assert process.kills == [signal.SIGTERM]
        assert process.close_calls == 1
        assert fake_connection.close_calls == 1
        assert session.state is SessionState.CLOSED
        assert session.process is None

    @pytest.mark.asyncio
    async def test_shell_exit_closes_connection(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        process = fake_provider.process
        process.exit()
        await asyncio.wait_for(task, 1.0)
        assert fake_connection.close_calls == 1
        assert process.kills == [signal.SIGTERM]
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_racing_triggers_tear_down_once(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        process = fake_provider.process
        process.exit()
        fake_connection.disconnect()
        await asyncio.gather(session.close(), session.close(), task)
        await session.close()
        assert process.kills == [signal.SIGTERM]
        assert process.close_calls == 1
        assert fake_connection.close_calls == 1

    @pytest.mark.asyncio
    async def test_external_close_stops_run(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        await session.close()
        await asyncio.wait_for(task, 1.0)
        assert fake_provider.process.kills == [signal.SIGTERM]
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_messages_after_close_are_rejected(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        process = fake_provider.process
        fake_connection.disconnect()
        await asyncio.wait_for(task, 1.0)

        assert await session.handle_message(b"late") is False
        assert await session.handle_message('{"row": 10, "col": 10}') is False
        assert process.written == []
        assert process.resizes == []

    @pytest.mark.asyncio
    async def test_configured_kill_signal_is_used(
        self, fake_connection, fake_provider, host_environ
    ) -> None:
        config = ShellConfig(kill_signal="HUP")
        session = TerminalSession(
            fake_connection,
            fake_provider,
            SessionEstablisher(config, environ=host_environ, cwd="/tmp"),
        )
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        fake_connection.disconnect()
        await asyncio.wait_for(task, 1.0)
        assert fake_provider.process.kills == [signal.SIGHUP]

    @pytest.mark.asyncio
    async def test_cancelling_run_still_releases_everything(
        self, session, fake_connection, fake_provider
    ) -> None:
        task = asyncio.create_task(session.run())
        await _until(lambda: session.is_active)
        process = fake_provider.process
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await session.close()
        assert process.kills == [signal.SIGTERM]
        assert process.close_calls == 1
        assert fake_connection.close_calls == 1
