"""
Interaction event models for behavioral tracking.

These models define the timestamped events an event source feeds into
the biometrics tracker. Keystrokes never carry the typed character.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class InteractionKind(str, Enum):
    """Supported interaction event kinds."""
    MOUSE_MOVE = "mouse_move"
    CLICK = "click"
    KEYSTROKE = "keystroke"


class InteractionEvent(BaseModel):
    """Single pointer, click or keyboard interaction."""
    kind: InteractionKind
    timestamp: int  # milliseconds
    x: float = 0.0
    y: float = 0.0
    target: str = "unknown"
    key: Optional[str] = Field(default=None, max_length=32)

    @field_validator('key')
    @classmethod
    def redact_printable_keys(cls, v):
        if v is not None and len(v) == 1:
            return "char"
        return v
