"""
Calculator Session

The host around the engine. A session owns the one mutable slot that
holds the latest EngineState, serializes actions through a lock, and
hands calculation records to the sink dispatcher without waiting.
"""

import uuid
from dataclasses import dataclass, asdict
from threading import Lock
from typing import Any, Dict, Optional

from .display import expression_preview, format_display
from .engine import (
    INITIAL_STATE,
    MAX_DISPLAY_LEN,
    Action,
    CalculationRecord,
    CalculatorEngine,
    EngineState,
)
from .keymap import action_for_key
from .logging_config import get_logger
from .sink import SinkDispatcher

logger = get_logger("session")


def new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass
class DisplaySnapshot:
    """What a front end needs to draw the calculator after an action."""
    session_id: str
    display: str
    expression: Optional[str]
    current: str
    previous: Optional[str]
    operator: Optional[str]
    overwrite: bool
    has_error: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CalculatorSession:
    """
    One interactive calculator.

    Args:
        session_id: Opaque id stamped on every calculation record
        dispatcher: Where records go (None = records are dropped)
        max_len: Display width
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        dispatcher: Optional[SinkDispatcher] = None,
        max_len: int = MAX_DISPLAY_LEN,
    ):
        self.session_id = session_id or new_session_id()
        self.dispatcher = dispatcher
        self.max_len = max_len
        self.engine = CalculatorEngine(session_id=self.session_id, max_len=max_len)
        self._state: EngineState = INITIAL_STATE
        self._lock = Lock()
        self.actions_applied = 0
        self.calculations = 0

    @property
    def state(self) -> EngineState:
        return self._state

    def dispatch(self, action: Action) -> DisplaySnapshot:
        """Apply one action and return the new display."""
        with self._lock:
            transition = self.engine.apply(self._state, action)
            self._state = transition.state
            self.actions_applied += 1
            if transition.record is not None:
                self.calculations += 1
            snapshot = self._render(transition.state)

        if transition.record is not None:
            self._emit(transition.record)
        return snapshot

    def press(self, key: str) -> DisplaySnapshot:
        """Map a raw key to an action and dispatch it. Unknown keys are ignored."""
        action = action_for_key(key)
        if action is None:
            logger.debug(f"Ignoring unmapped key {key!r}")
            return self.snapshot()
        return self.dispatch(action)

    def snapshot(self) -> DisplaySnapshot:
        with self._lock:
            return self._render(self._state)

    def _render(self, state: EngineState) -> DisplaySnapshot:
        return DisplaySnapshot(
            session_id=self.session_id,
            display=format_display(state.current, self.max_len),
            expression=expression_preview(state, self.max_len),
            current=state.current,
            previous=state.previous,
            operator=state.operator.value if state.operator else None,
            overwrite=state.overwrite,
            has_error=state.has_error,
        )

    def _emit(self, record: CalculationRecord) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.submit(record)
        except Exception as e:
            # Delivery problems must never leak into the calculator
            logger.error(f"Failed to queue calculation record: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "actions_applied": self.actions_applied,
            "calculations": self.calculations,
            "display": self.snapshot().display,
        }
