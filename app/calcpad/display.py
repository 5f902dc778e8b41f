"""
Display Formatting

Turns engine state into the strings a front end shows. Purely
presentational: arithmetic always reads the unformatted `current`.
"""

import math
from typing import Optional

from .engine import MAX_DISPLAY_LEN, SENTINELS, ERROR, EngineState, Operator

PRETTY_OPERATORS = {
    Operator.MULTIPLY: "×",
    Operator.DIVIDE: "÷",
}


def pretty_operator(op: Operator) -> str:
    """Render an operator with its keypad glyph (* -> ×, / -> ÷)."""
    op = Operator(op)
    return PRETTY_OPERATORS.get(op, op.value)


def format_display(value: str, max_len: int = MAX_DISPLAY_LEN) -> str:
    """
    Fit a value into the display.

    Sentinels and short literals pass through untouched. Longer numbers
    are re-rendered with max(1, max_len - 2) significant digits, dropping
    precision further if the exponent still pushes the text past max_len.
    """
    if value in SENTINELS:
        return value

    text = str(value)
    if len(text) <= max_len:
        return text

    try:
        number = float(text)
    except ValueError:
        return ERROR
    if not math.isfinite(number):
        return ERROR

    precision = max(1, max_len - 2)
    rendered = format(number, f".{precision}g")
    while len(rendered) > max_len and precision > 1:
        precision -= 1
        rendered = format(number, f".{precision}g")
    return rendered


def expression_preview(state: EngineState, max_len: int = MAX_DISPLAY_LEN) -> Optional[str]:
    """The "12 ×" line above the display, when an operation is pending."""
    if state.previous is None or state.operator is None:
        return None
    return f"{format_display(state.previous, max_len)} {pretty_operator(state.operator)}"
