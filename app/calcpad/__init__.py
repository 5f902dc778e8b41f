"""
calcpad - An interactive left-to-right calculator

This package contains the core components of calcpad:
- engine: The calculation input state machine
- display: Display formatting
- keymap: Raw keys to engine actions
- session: The host that owns a session's state
- sink: Fire-and-forget delivery of completed calculations
- config: Configuration loading
"""

from .config import Config
from .engine import CalculatorEngine, EngineState, apply
from .session import CalculatorSession

__version__ = "0.1.0"
__all__ = ["CalculatorEngine", "CalculatorSession", "Config", "EngineState", "apply"]
