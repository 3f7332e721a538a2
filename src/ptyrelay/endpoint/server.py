"""FastAPI HTTP server for the terminal relay.

Every WebSocket connection on the relay path gets its own shell on its
own pseudo-terminal:

    WS   /ws       <- binary: terminal input, text: {"row": 24, "col": 80}
                   -> binary: terminal output
    GET  /health   -> {"status": "ok", "active_sessions": 1}

Sessions still open at shutdown are torn down by the lifespan handler.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping

import uvicorn
from fastapi import FastAPI, WebSocket
from pydantic import BaseModel

from ptyrelay import __version__
from ptyrelay.config.settings import Settings
from ptyrelay.endpoint.websocket import WebSocketConnection
from ptyrelay.pty.base import PtyProvider
from ptyrelay.relay.establisher import SessionEstablisher
from ptyrelay.relay.session import TerminalSession

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    active_sessions: int = 0


def create_app(
    settings: Settings | None = None,
    provider: PtyProvider | None = None,
    environ: Mapping[str, str] | None = None,
    cwd: str | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Relay settings (defaults when None).
        provider: PTY provider (for testing); the POSIX one when None.
        environ: Environment shells inherit; a snapshot of os.environ
                 when None.
        cwd: Fallback working directory; the current one when None.
    """
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Relay started (path=%s)", settings.server.websocket_path)
        yield
        sessions = list(app.state.sessions)
        if sessions:
            logger.info("Closing %d active session(s)", len(sessions))
            await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        logger.info("Relay stopped")

    app = FastAPI(
        title="ptyrelay",
        description="Shell sessions over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )

    if provider is None:
        from ptyrelay.pty.unix import UnixPtyProvider

        provider = UnixPtyProvider(
            read_chunk_size=settings.shell.read_chunk_size,
            termination_grace=settings.shell.termination_grace,
        )

    app.state.settings = settings
    app.state.provider = provider
    app.state.establisher = SessionEstablisher(
        settings.shell,
        environ=dict(os.environ) if environ is None else environ,
        cwd=os.getcwd() if cwd is None else cwd,
    )
    app.state.sessions = set()

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", active_sessions=len(app.state.sessions))

    @app.websocket(settings.server.websocket_path)
    async def terminal(websocket: WebSocket) -> None:
        await websocket.accept()
        session = TerminalSession(
            WebSocketConnection(websocket),
            app.state.provider,
            app.state.establisher,
        )
        app.state.sessions.add(session)
        logger.info("[%s] Connection from %s", session.session_id, websocket.client)
        try:
            await session.run()
        finally:
            app.state.sessions.discard(session)

    return app


def main() -> None:
    """Entry point for running the relay standalone."""
    settings = Settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
