"""Relay session: one client connection bridged to one PTY shell.

Lifecycle::

    OPENING --spawned--> ACTIVE --disconnect / shell exit / I/O error--> CLOSING --> CLOSED
       |                                                                              ^
       +----------------------------- spawn failed -----------------------------------+

While ACTIVE two tasks run side by side:

* the output pump copies PTY output to the connection as binary messages;
* the input pump writes binary messages to the PTY and applies resize
  commands carried by text messages.

Whichever pump finishes first ends the session. ``close()`` is the only
teardown path and is idempotent, so a client disconnect racing the shell's
exit signals the shell once and closes the connection once.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from ptyrelay.domain.models import (
    ControlFrame,
    ControlFrameError,
    SessionState,
    TerminalGeometry,
    decode_message,
)
from ptyrelay.pty.base import (
    PtyClosedError,
    PtyError,
    PtyProcess,
    PtyProvider,
    PtySpawnError,
)
from ptyrelay.relay.connection import Connection, ConnectionClosedError
from ptyrelay.relay.establisher import SessionEstablisher

logger = logging.getLogger(__name__)


class TerminalSession:
    """Owns one connection and, once spawned, one PTY process.

    Usage::

        session = TerminalSession(connection, provider, establisher)
        await session.run()  # returns after teardown has completed
    """

    def __init__(
        self,
        connection: Connection,
        provider: PtyProvider,
        establisher: SessionEstablisher,
    ) -> None:
        self._connection = connection
        self._provider = provider
        self._establisher = establisher
        self._kill_signal = establisher.config.kill_signum
        self.session_id = uuid.uuid4().hex[:8]
        self._state = SessionState.OPENING
        self._geometry = TerminalGeometry(
            cols=establisher.config.cols, rows=establisher.config.rows
        )
        self._process: PtyProcess | None = None
        self._spawning = False
        self._tasks: list[asyncio.Task[None]] = []
        self._teardown: asyncio.Future[None] | None = None
        self._closed = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def geometry(self) -> TerminalGeometry:
        return self._geometry

    @property
    def process(self) -> PtyProcess | None:
        return self._process

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    async def run(self) -> None:
        """Spawn the shell and relay until either side goes away."""
        if self._state is not SessionState.OPENING:
            logger.debug("[%s] Not starting, session is %s", self.session_id, self._state.value)
            return
        self._spawning = True
        try:
            process = await self._establisher.establish(self._provider)
        except PtySpawnError as e:
            logger.error("[%s] Could not start shell: %s", self.session_id, e)
            await self._finish()
            return
        except BaseException:
            await self._finish()
            raise
        finally:
            self._spawning = False

        if self._state is not SessionState.OPENING:
            logger.info("[%s] Closed while spawning, discarding shell", self.session_id)
            await self._release_process(process)
            await self._finish()
            return

        self._process = process
        self._state = SessionState.ACTIVE
        logger.info(
            "[%s] Session active (pid=%s, %dx%d)",
            self.session_id, process.pid, self._geometry.cols, self._geometry.rows,
        )

        self._tasks = [
            asyncio.create_task(self._pump_output(), name=f"ptyrelay-{self.session_id}-output"),
            asyncio.create_task(self._pump_input(), name=f"ptyrelay-{self.session_id}-input"),
        ]
        try:
            await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self.close()

    async def close(self) -> None:
        """Tear the session down; later calls wait for the first to finish."""
        if self._teardown is None:
            self._teardown = asyncio.ensure_future(self._shutdown())
        # Shielded so a cancelled caller cannot leave resources half released
        await asyncio.shield(self._teardown)

    async def handle_message(self, message: str | bytes) -> bool:
        """Apply one client message to the PTY.

        Text messages are resize commands, binary messages are terminal
        input. Failures are logged and only cost the message at hand.

        Returns:
            False if the input side should stop (session not active, or
            the shell is gone), True otherwise.
        """
        process = self._process
        if self._state is not SessionState.ACTIVE or process is None:
            logger.debug("[%s] Dropping message, session is %s", self.session_id, self._state.value)
            return False

        try:
            frame = decode_message(message)
            if isinstance(frame, ControlFrame):
                process.resize(frame.col, frame.row)
                self._geometry = frame.geometry
                logger.debug("[%s] Resized to %dx%d", self.session_id, frame.col, frame.row)
            else:
                await process.write(frame.data)
        except ControlFrameError as e:
            logger.warning(
                "[%s] Discarding malformed control frame %r: %s",
                self.session_id, e.payload[:80], e,
            )
        except PtyClosedError as e:
            logger.info("[%s] Shell is gone, stopping input: %s", self.session_id, e)
            return False
        except PtyError as e:
            logger.warning("[%s] PTY operation failed: %s", self.session_id, e)
        except Exception:
            kind = "text" if isinstance(message, str) else "binary"
            logger.exception("[%s] Failed to handle %s message", self.session_id, kind)
        return True

    # ------------------------------------------------------------------
    # Pumps
    # ------------------------------------------------------------------

    async def _pump_output(self) -> None:
        """PTY -> connection."""
        process = self._process
        assert process is not None
        while self._state is SessionState.ACTIVE:
            try:
                chunk = await process.read()
            except PtyError as e:
                logger.warning("[%s] PTY read failed: %s", self.session_id, e)
                return
            if not chunk:
                logger.info("[%s] Shell exited", self.session_id)
                return
            try:
                await self._connection.send_bytes(chunk)
            except ConnectionClosedError as e:
                logger.info("[%s] Connection lost while sending output: %s", self.session_id, e)
                return

    async def _pump_input(self) -> None:
        """Connection -> PTY."""
        while self._state is SessionState.ACTIVE:
            try:
                message = await self._connection.receive()
            except ConnectionClosedError as e:
                logger.info("[%s] Connection failed: %s", self.session_id, e)
                return
            if message is None:
                logger.info("[%s] Client disconnected", self.session_id)
                return
            if not await self.handle_message(message):
                return

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _shutdown(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        if self._state is SessionState.OPENING:
            if self._spawning:
                # run() sees this once the spawn returns and finishes the job
                self._state = SessionState.CLOSING
                await self._closed.wait()
            else:
                await self._finish()
            return

        self._state = SessionState.CLOSING
        logger.info("[%s] Closing session", self.session_id)

        current = asyncio.current_task()
        others = [task for task in self._tasks if task is not current]
        for task in others:
            task.cancel()
        results = await asyncio.gather(*others, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "[%s] Pump failed: %s", self.session_id, result, exc_info=result,
                )

        process = self._process
        try:
            if process is not None:
                await self._release_process(process)
        finally:
            self._process = None
            await self._finish()

    async def _release_process(self, process: PtyProcess) -> None:
        try:
            process.kill(self._kill_signal)
        except Exception as e:
            logger.warning("[%s] Failed to signal shell: %s", self.session_id, e)
        try:
            await process.close()
        except Exception as e:
            logger.warning("[%s] Failed to release PTY: %s", self.session_id, e)

    async def _finish(self) -> None:
        try:
            await self._connection.close()
        except Exception as e:
            logger.debug("[%s] Error closing connection: %s", self.session_id, e)
        self._state = SessionState.CLOSED
        self._closed.set()
        logger.info("[%s] Session closed", self.session_id)
