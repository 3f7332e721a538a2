"""Configuration management for ptyrelay.

Loads settings from a YAML configuration file with environment variable
overrides (``PTYRELAY_`` prefix, ``__`` as the nested delimiter).
Supports .env files.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/ptyrelay.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)
    websocket_path: str = Field(default="/ws", pattern=r"^/")


class ShellConfig(BaseModel):
    """How each session's shell is spawned.

    ``shell`` wins over the host's ``$SHELL``, which wins over
    ``default_shell``.
    """

    shell: str | None = Field(default=None, description="Explicit shell command")
    default_shell: str = Field(default="/bin/bash")
    shell_args: list[str] = Field(default_factory=list)
    cwd: str | None = Field(default=None, description="Working directory (default: server cwd)")
    term: str = Field(default="xterm-256color")
    colorterm: str = Field(default="truecolor")
    cols: int = Field(default=80, gt=0, le=65535)
    rows: int = Field(default=24, gt=0, le=65535)
    read_chunk_size: int = Field(default=4096, gt=0)
    kill_signal: str = Field(default="SIGTERM")
    termination_grace: float = Field(default=2.0, ge=0)

    @field_validator("kill_signal")
    @classmethod
    def _known_signal(cls, value: str) -> str:
        name = value.upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        if name not in signal.Signals.__members__:
            raise ValueError(f"Unknown signal: {value}")
        return name

    @property
    def kill_signum(self) -> signal.Signals:
        return signal.Signals[self.kill_signal]


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        # Aliases such as WARN and FATAL collapse to the names uvicorn accepts
        number = logging.getLevelName(value.upper())
        name = logging.getLevelName(number) if isinstance(number, int) else None
        if name not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError(f"Unknown log level: {value}")
        return name


class Settings(BaseSettings):
    """Root configuration for ptyrelay.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "PTYRELAY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment must beat them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
