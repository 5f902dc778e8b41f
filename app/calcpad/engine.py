"""
Calculator Engine Module

The input state machine at the heart of calcpad. Every key press becomes an
Action, and apply() reduces (state, action) to the next state.

The engine never does I/O. When a binary operation completes successfully
the transition also carries a CalculationRecord, which the host forwards
to the calculation sink.

Evaluation is strictly left-to-right: "2 + 3 * 4 =" is (2 + 3) * 4 = 20.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

from .logging_config import get_logger

logger = get_logger("engine")

# Maximum width of the display, in characters
MAX_DISPLAY_LEN = 18

ERROR = "Error"
DIVIDE_BY_ZERO = "Cannot divide by zero"
SENTINELS = (ERROR, DIVIDE_BY_ZERO)


class Operator(str, Enum):
    """Binary operators understood by the engine."""
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    REMAINDER = "%"


# === Actions ===

@dataclass(frozen=True)
class Digit:
    digit: str

    def __post_init__(self):
        if len(self.digit) != 1 or self.digit not in "0123456789":
            raise ValueError(f"Not a digit: {self.digit!r}")


@dataclass(frozen=True)
class Decimal:
    pass


@dataclass(frozen=True)
class ToggleSign:
    pass


@dataclass(frozen=True)
class Backspace:
    pass


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class OperatorPress:
    operator: Operator

    def __post_init__(self):
        # Accept the raw symbol as well as the enum member
        object.__setattr__(self, "operator", Operator(self.operator))


@dataclass(frozen=True)
class Equals:
    pass


Action = Union[Digit, Decimal, ToggleSign, Backspace, Clear, OperatorPress, Equals]


# === State ===

@dataclass(frozen=True)
class EngineState:
    """
    Everything the calculator knows about the calculation in progress.

    current is what the display shows (a numeric literal or an error
    sentinel). previous and operator are set together while an operation
    is pending. overwrite means the next digit starts a new literal.
    """
    current: str = "0"
    previous: Optional[str] = None
    operator: Optional[Operator] = None
    overwrite: bool = True

    @property
    def has_error(self) -> bool:
        return self.current in SENTINELS

    @property
    def has_pending(self) -> bool:
        return self.previous is not None and self.operator is not None


INITIAL_STATE = EngineState()


@dataclass(frozen=True)
class CalculationRecord:
    """A successfully completed binary operation, destined for the sink."""
    a: float
    b: float
    operator: str
    result: float
    session_id: str

    def to_dict(self) -> dict:
        return {
            "a": self.a,
            "b": self.b,
            "operator": self.operator,
            "result": self.result,
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class Transition:
    """Outcome of apply(): the next state plus an optional record."""
    state: EngineState
    record: Optional[CalculationRecord] = None


# === Evaluation ===

@dataclass(frozen=True)
class Number:
    text: str
    value: float


@dataclass(frozen=True)
class DivideByZero:
    pass


@dataclass(frozen=True)
class EvaluationError:
    pass


Outcome = Union[Number, DivideByZero, EvaluationError]


def outcome_text(outcome: Outcome) -> str:
    """Text to store in `current` for an evaluation outcome."""
    if isinstance(outcome, Number):
        return outcome.text
    if isinstance(outcome, DivideByZero):
        return DIVIDE_BY_ZERO
    return ERROR


def parse_number(text: Optional[str]) -> Optional[float]:
    """Parse an operand literal. Returns None unless it is a finite number."""
    if text is None:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def _shortest_digits(value: float):
    """
    Split a positive float into its shortest round-trip digits and the
    position of the decimal point, so that value == 0.DIGITS * 10**point.
    """
    text = repr(value)
    mantissa, _, exponent = text.partition("e")
    whole, _, fraction = mantissa.partition(".")
    raw = whole + fraction
    stripped = raw.lstrip("0")
    point = len(whole) + int(exponent or 0) - (len(raw) - len(stripped))
    return stripped.rstrip("0"), point


def canonical_number(value: float) -> str:
    """
    Render a float the way the display expects it.

    Uses the shortest digits that round-trip. Values from 1e-6 up to
    1e21 are written out in plain decimal, with no trailing ".0" on whole
    numbers; anything else gets an unpadded exponent ("1e-7", "1.5e+22").
    -0 is written "0".
    """
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    digits, point = _shortest_digits(abs(value))
    count = len(digits)

    if count <= point <= 21:
        body = digits + "0" * (point - count)
    elif 0 < point <= 21:
        body = f"{digits[:point]}.{digits[point:]}"
    elif -6 < point <= 0:
        body = "0." + "0" * -point + digits
    else:
        exponent = point - 1
        head = digits if count == 1 else f"{digits[0]}.{digits[1:]}"
        body = f"{head}e{'+' if exponent > 0 else '-'}{abs(exponent)}"
    return sign + body


def compute(a: str, op: Operator, b: str) -> Outcome:
    """Evaluate `a op b` on the operand literals."""
    left = parse_number(a)
    right = parse_number(b)
    if left is None or right is None:
        return EvaluationError()

    op = Operator(op)
    if op in (Operator.DIVIDE, Operator.REMAINDER) and right == 0:
        return DivideByZero()

    try:
        if op == Operator.ADD:
            value = left + right
        elif op == Operator.SUBTRACT:
            value = left - right
        elif op == Operator.MULTIPLY:
            value = left * right
        elif op == Operator.DIVIDE:
            value = left / right
        else:
            # Truncating remainder, sign follows the dividend
            value = math.fmod(left, right)
    except OverflowError:
        return EvaluationError()

    if not math.isfinite(value):
        return EvaluationError()
    return Number(text=canonical_number(value), value=value)


# === The Engine ===

class CalculatorEngine:
    """
    Pure transition function for one calculator session.

    The engine holds no calculation state of its own; it only knows the
    session id to stamp on records and the display width.
    """

    def __init__(self, session_id: str = "", max_len: int = MAX_DISPLAY_LEN):
        self.session_id = session_id
        self.max_len = max_len

    def apply(self, state: EngineState, action: Action) -> Transition:
        """Apply one action to a state."""
        if isinstance(action, Digit):
            return Transition(self._digit(state, action.digit))
        if isinstance(action, Decimal):
            return Transition(self._decimal(state))
        if isinstance(action, ToggleSign):
            return Transition(self._toggle_sign(state))
        if isinstance(action, Backspace):
            return Transition(self._backspace(state))
        if isinstance(action, Clear):
            return Transition(INITIAL_STATE)
        if isinstance(action, OperatorPress):
            return self._operator(state, action.operator)
        if isinstance(action, Equals):
            return self._equals(state)
        raise TypeError(f"Unknown action: {action!r}")

    # --- input editing ---

    def _digit(self, state: EngineState, digit: str) -> EngineState:
        if state.has_error:
            return EngineState(current=digit, overwrite=False)
        if state.overwrite:
            return replace(state, current=digit, overwrite=False)
        if state.current == "0":
            return replace(state, current=digit)
        if len(state.current) >= self.max_len:
            return state
        return replace(state, current=state.current + digit)

    def _decimal(self, state: EngineState) -> EngineState:
        if state.has_error:
            return EngineState(current="0.", overwrite=False)
        if state.overwrite:
            return replace(state, current="0.", overwrite=False)
        if "." in state.current or len(state.current) >= self.max_len:
            return state
        return replace(state, current=state.current + ".")

    def _toggle_sign(self, state: EngineState) -> EngineState:
        if state.has_error:
            return INITIAL_STATE
        if state.current == "0":
            return state
        if state.current.startswith("-"):
            return replace(state, current=state.current[1:])
        if not state.overwrite and len(state.current) >= self.max_len:
            # Typed input never grows past the display width
            return state
        return replace(state, current="-" + state.current)

    def _backspace(self, state: EngineState) -> EngineState:
        if state.has_error:
            return INITIAL_STATE
        if state.overwrite:
            # Soft clear; pending operation survives
            return replace(state, current="0")
        trimmed = state.current[:-1]
        if trimmed in ("", "-"):
            trimmed = "0"
        return replace(state, current=trimmed)

    # --- evaluation ---

    def _operator(self, state: EngineState, op: Operator) -> Transition:
        if state.has_error:
            return Transition(EngineState(current="0", operator=op))

        if state.has_pending and not state.overwrite:
            outcome = compute(state.previous, state.operator, state.current)
            record = self._record(state.previous, state.operator, state.current, outcome)
            if isinstance(outcome, Number):
                next_state = EngineState(
                    current=outcome.text,
                    previous=outcome.text,
                    operator=op,
                    overwrite=True,
                )
            else:
                next_state = EngineState(current=outcome_text(outcome))
            logger.debug(
                f"Chained {state.previous} {state.operator.value} {state.current} -> {next_state.current}"
            )
            return Transition(next_state, record)

        if state.has_pending:
            # Operator pressed again before a new operand: just swap it
            return Transition(replace(state, operator=op))

        return Transition(EngineState(current=state.current, previous=state.current, operator=op))

    def _equals(self, state: EngineState) -> Transition:
        if state.has_error:
            return Transition(INITIAL_STATE)
        if not state.has_pending:
            return Transition(replace(state, overwrite=True))

        # "5 + =" repeats the left operand
        rhs = state.previous if state.overwrite else state.current
        outcome = compute(state.previous, state.operator, rhs)
        record = self._record(state.previous, state.operator, rhs, outcome)
        logger.debug(f"Evaluated {state.previous} {state.operator.value} {rhs} -> {outcome_text(outcome)}")
        return Transition(EngineState(current=outcome_text(outcome)), record)

    def _record(self, a: str, op: Operator, b: str, outcome: Outcome) -> Optional[CalculationRecord]:
        if not isinstance(outcome, Number):
            return None
        return CalculationRecord(
            a=float(a),
            b=float(b),
            operator=op.value,
            result=outcome.value,
            session_id=self.session_id,
        )


def apply(state: EngineState, action: Action, session_id: str = "",
          max_len: int = MAX_DISPLAY_LEN) -> Transition:
    """Module-level shortcut for CalculatorEngine(session_id, max_len).apply()."""
    return CalculatorEngine(session_id=session_id, max_len=max_len).apply(state, action)
