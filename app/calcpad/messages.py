"""
Wire Message Types

Pydantic models for the HTTP and WebSocket API.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ValidationError
import logging

from .engine import (
    Action,
    Backspace,
    Clear,
    Decimal,
    Digit,
    Equals,
    OperatorPress,
    ToggleSign,
)
from .keymap import normalize_operator

logger = logging.getLogger(__name__)


# ============================================
# Actions
# ============================================

class ActionRequest(BaseModel):
    """
    One engine action in wire form.

    `digit` is required for type "digit" and `operator` for type
    "operator" (glyphs × and ÷ are accepted).
    """
    type: Literal["digit", "decimal", "toggle_sign", "backspace", "clear", "operator", "equals"]
    digit: Optional[str] = Field(default=None, pattern=r"^[0-9]$")
    operator: Optional[str] = None

    def to_action(self) -> Action:
        """
        Convert to an engine action.

        Raises:
            ValueError: If a required field is missing or invalid
        """
        if self.type == "digit":
            if self.digit is None:
                raise ValueError("digit action requires 'digit'")
            return Digit(self.digit)
        if self.type == "operator":
            op = normalize_operator(self.operator or "")
            if op is None:
                raise ValueError(f"Unknown operator: {self.operator!r}")
            return OperatorPress(op)
        return {
            "decimal": Decimal(),
            "toggle_sign": ToggleSign(),
            "backspace": Backspace(),
            "clear": Clear(),
            "equals": Equals(),
        }[self.type]


class KeyRequest(BaseModel):
    """A raw key or keypad label, mapped server-side."""
    key: str


class CreateSessionRequest(BaseModel):
    session_id: Optional[str] = None


class DisplayResponse(BaseModel):
    """Display state returned after every action."""
    session_id: str
    display: str
    expression: Optional[str] = None
    current: str
    previous: Optional[str] = None
    operator: Optional[str] = None
    overwrite: bool
    has_error: bool


class ButtonModel(BaseModel):
    label: str
    kind: str
    aria: str


class KeypadResponse(BaseModel):
    rows: List[List[ButtonModel]]


# ============================================
# WebSocket Message Schemas
# ============================================

class WSMessageBase(BaseModel):
    """Base class for WebSocket messages."""
    type: str
    correlation_id: Optional[str] = None


class WSStartMessage(WSMessageBase):
    """Attach the connection to a session (new one if session_id is unknown or absent)."""
    type: str = "start"
    session_id: Optional[str] = None


class WSActionMessage(WSMessageBase):
    """Typed action from client to server."""
    type: str = "action"
    action: ActionRequest


class WSKeyMessage(WSMessageBase):
    """Raw key from client to server."""
    type: str = "key"
    key: str


class WSPingMessage(WSMessageBase):
    type: str = "ping"


class WSPongMessage(WSMessageBase):
    type: str = "pong"


class WSDisplayMessage(WSMessageBase):
    """Display update from server to client."""
    type: str = "display"
    is_new: bool = False
    state: DisplayResponse


class WSErrorMessage(WSMessageBase):
    """Error message from server to client."""
    type: str = "error"
    content: str


def parse_ws_message(data: dict) -> Optional[WSMessageBase]:
    """Parse incoming WebSocket message into typed schema."""
    msg_type = data.get("type")
    try:
        if msg_type == "start":
            return WSStartMessage(**data)
        elif msg_type == "action":
            return WSActionMessage(**data)
        elif msg_type == "key":
            return WSKeyMessage(**data)
        elif msg_type == "ping":
            return WSPingMessage(**data)
        else:
            return None
    except ValidationError as e:
        logger.warning(f"Failed to parse WebSocket message: {e}")
        return None
