"""Domain models for ptyrelay.

This package contains the core data structures, enumerations, and value
objects used throughout the relay. All models use Pydantic v2 for
validation.
"""

from ptyrelay.domain.models import (
    ControlFrame,
    ControlFrameError,
    DataFrame,
    Frame,
    SessionState,
    SpawnRequest,
    TerminalGeometry,
    decode_message,
    parse_control_frame,
)

__all__ = [
    "ControlFrame",
    "ControlFrameError",
    "DataFrame",
    "Frame",
    "SessionState",
    "SpawnRequest",
    "TerminalGeometry",
    "decode_message",
    "parse_control_frame",
]
