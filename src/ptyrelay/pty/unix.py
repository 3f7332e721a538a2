"""POSIX pseudo-terminal backend.

Spawns the shell with openpty + fork + execve, the way a terminal
emulator does: the child becomes a session leader with the PTY slave as
its controlling terminal and stdio. The parent keeps only the master
side, in non-blocking mode, and waits on it through the event loop's
reader/writer callbacks so no thread is tied up per session.
"""

from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import pty
import shutil
import signal
import struct
import termios

from ptyrelay.domain.models import SpawnRequest
from ptyrelay.pty.base import (
    PtyClosedError,
    PtyError,
    PtyProcess,
    PtyProvider,
    PtySpawnError,
)

logger = logging.getLogger(__name__)

DEFAULT_READ_CHUNK_SIZE = 4096
# Seconds to wait for the child to exit before escalating to SIGKILL
DEFAULT_TERMINATION_GRACE = 2.0
REAP_POLL_INTERVAL = 0.05
# Same status a shell reports for a command it could not run
EXEC_FAILED_STATUS = 127


def set_window_size(fd: int, cols: int, rows: int) -> None:
    """Apply a window size to the terminal behind ``fd``."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def get_window_size(fd: int) -> tuple[int, int]:
    """Return ``(cols, rows)`` of the terminal behind ``fd``."""
    packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\x00" * 8)
    rows, cols, _, _ = struct.unpack("HHHH", packed)
    return cols, rows


class UnixPtyProcess(PtyProcess):
    """A forked child running on the slave side of a PTY pair."""

    def __init__(
        self,
        pid: int,
        master_fd: int,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        termination_grace: float = DEFAULT_TERMINATION_GRACE,
    ) -> None:
        self._pid = pid
        self._master_fd: int | None = master_fd
        self._read_chunk_size = read_chunk_size
        self._termination_grace = termination_grace
        self._returncode: int | None = None
        self._waiters: set[asyncio.Future[None]] = set()

    @property
    def pid(self) -> int | None:
        return self._pid if self._returncode is None else None

    @property
    def master_fd(self) -> int | None:
        return self._master_fd

    @property
    def returncode(self) -> int | None:
        return self._poll()

    @property
    def is_alive(self) -> bool:
        return self._poll() is None

    async def read(self) -> bytes:
        while True:
            fd = self._require_fd()
            try:
                return os.read(fd, self._read_chunk_size)
            except BlockingIOError:
                await self._wait_ready(fd, writable=False)
            except OSError as e:
                if e.errno == errno.EIO:
                    # Linux reports a hung-up slave as EIO rather than EOF
                    return b""
                raise PtyError(f"Failed to read from pty: {e}") from e

    async def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            fd = self._require_fd()
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                await self._wait_ready(fd, writable=True)
                continue
            except OSError as e:
                if e.errno in (errno.EIO, errno.EBADF):
                    raise PtyClosedError(f"PTY is gone: {e}") from e
                raise PtyError(f"Failed to write to pty: {e}") from e
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        fd = self._require_fd()
        try:
            set_window_size(fd, cols, rows)
        except OSError as e:
            raise PtyError(f"Failed to resize pty to {cols}x{rows}: {e}") from e
        logger.debug("Resized pty of pid %s to %dx%d", self._pid, cols, rows)

    def kill(self, sig: int) -> None:
        if self._poll() is not None:
            logger.debug("pid %d already exited, not sending signal %d", self._pid, sig)
            return
        try:
            os.kill(self._pid, sig)
        except ProcessLookupError:
            logger.debug("pid %d vanished before signal %d", self._pid, sig)

    async def close(self) -> None:
        fd = self._master_fd
        if fd is not None:
            self._master_fd = None
            loop = asyncio.get_running_loop()
            loop.remove_reader(fd)
            loop.remove_writer(fd)
            # Pending reads/writes wake up and find the handle closed
            for waiter in self._waiters:
                if not waiter.done():
                    waiter.set_result(None)
            self._waiters.clear()
            try:
                os.close(fd)
            except OSError as e:
                logger.debug("Closing pty master fd %d failed: %s", fd, e)
        await self._reap()

    def _require_fd(self) -> int:
        if self._master_fd is None:
            raise PtyClosedError("PTY is closed")
        return self._master_fd

    async def _wait_ready(self, fd: int, writable: bool) -> None:
        """Suspend until the master fd is readable (or writable)."""
        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            if not ready.done():
                ready.set_result(None)

        self._waiters.add(ready)
        if writable:
            loop.add_writer(fd, _wake)
        else:
            loop.add_reader(fd, _wake)
        try:
            await ready
        finally:
            self._waiters.discard(ready)
            # close() already unregistered it; the number may belong to someone else now
            if self._master_fd == fd:
                if writable:
                    loop.remove_writer(fd)
                else:
                    loop.remove_reader(fd)

    def _poll(self) -> int | None:
        if self._returncode is None:
            try:
                pid, status = os.waitpid(self._pid, os.WNOHANG)
            except ChildProcessError:
                # Reaped elsewhere; the status is lost
                self._returncode = -1
            else:
                if pid != 0:
                    self._returncode = os.waitstatus_to_exitcode(status)
        return self._returncode

    async def _reap(self) -> None:
        """Wait for the child to exit, escalating to SIGKILL after the grace period."""
        if self._poll() is not None:
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._termination_grace
        while loop.time() < deadline:
            await asyncio.sleep(REAP_POLL_INTERVAL)
            if self._poll() is not None:
                return

        logger.warning(
            "pid %d still running %.1fs after teardown, sending SIGKILL",
            self._pid, self._termination_grace,
        )
        try:
            os.kill(self._pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        while self._poll() is None:
            await asyncio.sleep(REAP_POLL_INTERVAL)


class UnixPtyProvider(PtyProvider):
    """Spawns processes on freshly allocated POSIX pseudo-terminals."""

    def __init__(
        self,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        termination_grace: float = DEFAULT_TERMINATION_GRACE,
    ) -> None:
        self._read_chunk_size = read_chunk_size
        self._termination_grace = termination_grace

    async def spawn(self, request: SpawnRequest) -> UnixPtyProcess:
        argv = list(request.argv)
        executable = shutil.which(argv[0], path=request.env.get("PATH", os.defpath))
        if executable is None:
            raise PtySpawnError(f"Command not found: {argv[0]}", argv=argv)

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise PtySpawnError(f"Cannot allocate a pty: {e}", argv=argv) from e

        fds = [master_fd, slave_fd]
        try:
            set_window_size(slave_fd, request.cols, request.rows)
            # Close-on-exec: stays empty unless the child fails before execve
            err_read, err_write = os.pipe()
            fds += [err_read, err_write]
            pid = os.fork()
        except OSError as e:
            for fd in fds:
                os.close(fd)
            raise PtySpawnError(f"Cannot start {argv[0]}: {e}", argv=argv) from e

        if pid == 0:
            self._exec_child(executable, request, master_fd, slave_fd, err_write)

        # Parent process
        os.close(slave_fd)
        os.close(err_write)
        try:
            failure = await _read_exec_report(err_read)
        except BaseException:
            os.close(master_fd)
            _discard_child(pid)
            raise
        finally:
            os.close(err_read)

        if failure:
            os.close(master_fd)
            await _wait_exited(pid)
            raise PtySpawnError(
                f"Cannot start {argv[0]}: {failure.decode('utf-8', errors='replace')}",
                argv=argv,
            )

        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

        logger.info(
            "Started %s (pid=%d, %dx%d, cwd=%s)",
            executable, pid, request.cols, request.rows, request.cwd,
        )
        return UnixPtyProcess(
            pid,
            master_fd,
            read_chunk_size=self._read_chunk_size,
            termination_grace=self._termination_grace,
        )

    @staticmethod
    def _exec_child(
        executable: str,
        request: SpawnRequest,
        master_fd: int,
        slave_fd: int,
        err_write: int,
    ) -> None:
        """Runs in the forked child; never returns."""
        try:
            os.close(master_fd)
            os.setsid()
            fcntl.ioctl(slave_fd, termios.TIOCSCTTY, 0)
            os.dup2(slave_fd, 0)
            os.dup2(slave_fd, 1)
            os.dup2(slave_fd, 2)
            if slave_fd > 2:
                os.close(slave_fd)
            # Python ignores SIGPIPE; the shell must not inherit that
            signal.signal(signal.SIGPIPE, signal.SIG_DFL)
            os.chdir(request.cwd)
            os.execve(executable, request.argv, request.env)
        except BaseException as e:
            try:
                os.write(err_write, f"{type(e).__name__}: {e}".encode())
            finally:
                os._exit(EXEC_FAILED_STATUS)


async def _read_exec_report(fd: int) -> bytes:
    """Collect what the child writes to the close-on-exec pipe until it closes.

    The pipe reaches EOF once the child calls execve or exits.
    """
    os.set_blocking(fd, False)
    loop = asyncio.get_running_loop()
    chunks = []
    while True:
        try:
            chunk = os.read(fd, 1024)
        except BlockingIOError:
            ready: asyncio.Future[None] = loop.create_future()

            def _wake() -> None:
                if not ready.done():
                    ready.set_result(None)

            loop.add_reader(fd, _wake)
            try:
                await ready
            finally:
                loop.remove_reader(fd)
            continue
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


async def _wait_exited(pid: int) -> None:
    while True:
        try:
            reaped, _ = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            return
        if reaped != 0:
            return
        await asyncio.sleep(REAP_POLL_INTERVAL)


def _discard_child(pid: int) -> None:
    """Kill and reap a child whose spawn was abandoned."""
    try:
        os.kill(pid, signal.SIGKILL)
        os.waitpid(pid, 0)
    except (ProcessLookupError, ChildProcessError):
        pass
