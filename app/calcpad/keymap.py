"""
Key Mapping

Translates raw keys and keypad labels into engine actions. This is the
only place that knows about glyphs like × and ÷; the engine only ever
sees the canonical operator symbols.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .engine import (
    Action,
    Backspace,
    Clear,
    Decimal,
    Digit,
    Equals,
    Operator,
    OperatorPress,
    ToggleSign,
)

OPERATOR_ALIASES: Dict[str, Operator] = {
    "+": Operator.ADD,
    "-": Operator.SUBTRACT,
    "*": Operator.MULTIPLY,
    "×": Operator.MULTIPLY,
    "/": Operator.DIVIDE,
    "÷": Operator.DIVIDE,
    "%": Operator.REMAINDER,
}

# Named keys (keyboard event names and keypad labels)
KEY_ACTIONS: Dict[str, Action] = {
    ".": Decimal(),
    "Enter": Equals(),
    "=": Equals(),
    "Escape": Clear(),
    "C": Clear(),
    "Backspace": Backspace(),
    "⌫": Backspace(),
    "±": ToggleSign(),
}


def normalize_operator(symbol: str) -> Optional[Operator]:
    """Map an operator symbol or glyph to an Operator, or None."""
    return OPERATOR_ALIASES.get(symbol)


def action_for_key(key: str) -> Optional[Action]:
    """
    Map a single key to an action.

    Returns None for keys the calculator does not handle, so callers
    can ignore them.
    """
    if len(key) == 1 and "0" <= key <= "9":
        return Digit(key)
    if key in KEY_ACTIONS:
        return KEY_ACTIONS[key]
    op = normalize_operator(key)
    if op is not None:
        return OperatorPress(op)
    return None


@dataclass(frozen=True)
class Button:
    """One key on the keypad."""
    label: str
    kind: str  # "digit", "op", "control", "equals"
    aria: Optional[str] = None

    def to_dict(self) -> dict:
        return {"label": self.label, "kind": self.kind, "aria": self.aria or f"Button {self.label}"}


# Keypad rows, top to bottom
BUTTONS: List[List[Button]] = [
    [
        Button("C", "control", "Clear"),
        Button("⌫", "control", "Backspace"),
        Button("%", "op", "Modulus"),
        Button("÷", "op", "Divide"),
    ],
    [Button("7", "digit"), Button("8", "digit"), Button("9", "digit"), Button("×", "op", "Multiply")],
    [Button("4", "digit"), Button("5", "digit"), Button("6", "digit"), Button("-", "op", "Subtract")],
    [Button("1", "digit"), Button("2", "digit"), Button("3", "digit"), Button("+", "op", "Add")],
    [
        Button("±", "control", "Toggle sign"),
        Button("0", "digit"),
        Button(".", "digit", "Decimal"),
        Button("=", "equals", "Equals"),
    ],
]
