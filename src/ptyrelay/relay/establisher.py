"""Turns a freshly opened connection into a running shell.

The establisher decides *what* to spawn -- shell, arguments, environment,
working directory and initial size -- from configuration and the host
environment it is handed, and asks a PtyProvider to do it. It never reads
process-global state itself, so it can be exercised without a real
environment.
"""

from __future__ import annotations

import logging
from typing import Mapping

from ptyrelay.config.settings import ShellConfig
from ptyrelay.domain.models import SpawnRequest
from ptyrelay.pty.base import PtyProcess, PtyProvider

logger = logging.getLogger(__name__)


class SessionEstablisher:
    """Builds spawn requests for new sessions.

    Args:
        config: Shell configuration.
        environ: The host environment children inherit (usually a
                 snapshot of ``os.environ`` taken at startup).
        cwd: Working directory used when ``config.cwd`` is unset.
    """

    def __init__(self, config: ShellConfig, environ: Mapping[str, str], cwd: str) -> None:
        self._config = config
        self._environ = dict(environ)
        self._cwd = cwd

    @property
    def config(self) -> ShellConfig:
        return self._config

    def select_shell(self) -> str:
        """Configured shell, else the host's $SHELL, else the default shell."""
        if self._config.shell:
            return self._config.shell
        return self._environ.get("SHELL") or self._config.default_shell

    def build_environment(self) -> dict[str, str]:
        env = dict(self._environ)
        # Advertise a colour-capable terminal regardless of what the host had
        env["TERM"] = self._config.term
        env["COLORTERM"] = self._config.colorterm
        return env

    def build_request(self) -> SpawnRequest:
        return SpawnRequest(
            argv=[self.select_shell(), *self._config.shell_args],
            env=self.build_environment(),
            cwd=self._config.cwd or self._cwd,
            cols=self._config.cols,
            rows=self._config.rows,
        )

    async def establish(self, provider: PtyProvider) -> PtyProcess:
        """Spawn the session's shell.

        Raises:
            PtySpawnError: Propagated from the provider.
        """
        request = self.build_request()
        logger.debug(
            "Spawning %s in %s (%dx%d)",
            " ".join(request.argv), request.cwd, request.cols, request.rows,
        )
        return await provider.spawn(request)
