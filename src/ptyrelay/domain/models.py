"""Core domain models for ptyrelay.

These models describe what flows through a relay session: the frames
arriving on the WebSocket, the terminal geometry they negotiate, the
request handed to the PTY provider, and the session lifecycle states.
"""

from __future__ import annotations

import enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

# struct winsize stores unsigned shorts
MAX_DIMENSION = 65535


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    """Lifecycle state of a relay session."""

    OPENING = "opening"  # Connection accepted, shell not yet spawned
    ACTIVE = "active"  # Both pumps running
    CLOSING = "closing"  # Teardown in progress
    CLOSED = "closed"  # Everything released


# ---------------------------------------------------------------------------
# Terminal Models
# ---------------------------------------------------------------------------


class TerminalGeometry(BaseModel):
    """Size of the terminal in character cells."""

    model_config = ConfigDict(frozen=True)

    cols: int = Field(gt=0, le=MAX_DIMENSION, description="Columns")
    rows: int = Field(gt=0, le=MAX_DIMENSION, description="Rows")


class SpawnRequest(BaseModel):
    """Everything the PTY provider needs to start a shell."""

    model_config = ConfigDict(frozen=True)

    argv: list[str] = Field(min_length=1, description="Command and its arguments")
    env: dict[str, str] = Field(default_factory=dict, description="Full child environment")
    cwd: str = Field(description="Working directory for the child")
    cols: int = Field(default=80, gt=0, le=MAX_DIMENSION)
    rows: int = Field(default=24, gt=0, le=MAX_DIMENSION)


# ---------------------------------------------------------------------------
# Wire Frames
# ---------------------------------------------------------------------------


class ControlFrame(BaseModel):
    """A resize command, sent by the client as a JSON text message.

    Wire shape: ``{"row": 40, "col": 120}``. Unknown keys are ignored.
    """

    model_config = ConfigDict(frozen=True)

    row: StrictInt = Field(gt=0, le=MAX_DIMENSION, description="Terminal rows")
    col: StrictInt = Field(gt=0, le=MAX_DIMENSION, description="Terminal columns")

    @property
    def geometry(self) -> TerminalGeometry:
        return TerminalGeometry(cols=self.col, rows=self.row)


class DataFrame(BaseModel):
    """Raw terminal bytes, carried as a binary message."""

    model_config = ConfigDict(frozen=True)

    data: bytes


Frame = Union[ControlFrame, DataFrame]


class ControlFrameError(ValueError):
    """Raised when a text message is not a well-formed control frame."""

    def __init__(self, message: str, payload: str = "") -> None:
        super().__init__(message)
        self.payload = payload


def parse_control_frame(text: str) -> ControlFrame:
    """Decode a text message into a ControlFrame.

    Raises:
        ControlFrameError: If the text is not JSON, not an object, or
            lacks strictly integer ``row``/``col`` fields in range.
    """
    try:
        return ControlFrame.model_validate_json(text)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in e.errors()
        )
        raise ControlFrameError(f"Invalid control frame ({problems})", payload=text) from e


def decode_message(message: str | bytes) -> Frame:
    """Tag an incoming WebSocket message as a control or data frame."""
    if isinstance(message, str):
        return parse_control_frame(message)
    return DataFrame(data=bytes(message))
