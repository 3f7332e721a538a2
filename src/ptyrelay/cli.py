"""Command-line interface for ptyrelay.

Provides the main entry point for running the relay server and for
checking what a session would spawn with the current configuration.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="ptyrelay",
        description="Shell sessions over WebSockets",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/ptyrelay.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the relay server")
    serve_parser.add_argument(
        "--host", type=str, default=None,
        help="Address to bind (overrides server.host)",
    )
    serve_parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (overrides server.port)",
    )

    subparsers.add_parser(
        "show-shell",
        help="Print the command, working directory and size a new session would get",
    )

    return parser.parse_args(argv)


def _serve(settings, args) -> None:
    import uvicorn

    from ptyrelay.endpoint.server import create_app

    if args.host is not None:
        settings.server.host = args.host
    if args.port is not None:
        settings.server.port = args.port

    app = create_app(settings)
    logger.info(
        "Listening on ws://%s:%d%s",
        settings.server.host, settings.server.port, settings.server.websocket_path,
    )
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )


def _show_shell(settings) -> None:
    from ptyrelay.relay.establisher import SessionEstablisher

    establisher = SessionEstablisher(settings.shell, environ=os.environ, cwd=os.getcwd())
    request = establisher.build_request()
    print(f"Command: {' '.join(request.argv)}")
    print(f"Cwd:     {request.cwd}")
    print(f"Size:    {request.cols}x{request.rows}")
    print(f"TERM:    {request.env['TERM']}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the ptyrelay CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from ptyrelay.config.settings import load_settings
    from ptyrelay.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        logger.info("Starting relay server")
        _serve(settings, args)

    elif args.command == "show-shell":
        _show_shell(settings)


if __name__ == "__main__":
    main()
