"""
Logging Configuration

Every calcpad logger hangs off the "calcpad" logger configured here.
Lines carry a correlation id (the HTTP request id or the calculator
session id) so everything logged for one client can be pulled together.
Output is one JSON object per line by default, or a plain text format.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, List, Optional

ROOT_LOGGER = "calcpad"

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s] %(message)s"

_correlation_id: ContextVar[Optional[str]] = ContextVar("calcpad_correlation_id", default=None)

# Attributes every LogRecord has; anything else was passed through `extra`
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "correlation_id"}


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Bind a correlation id to the current context (task or thread)."""
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_scope(correlation_id: Optional[str]) -> Iterator[None]:
    """Use correlation_id for the duration of the block, then restore the old one."""
    token = _correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)


class CorrelationFilter(logging.Filter):
    """Stamps the active correlation id onto each record ("-" when unset)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with `extra` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        correlation_id = getattr(record, "correlation_id", None) or get_correlation_id()
        if correlation_id and correlation_id != "-":
            entry["correlation_id"] = correlation_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and key not in entry
        )
        return json.dumps(entry, default=str)


def _build_handlers(log_file: Optional[str], formatter: logging.Formatter) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationFilter())
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = True,
) -> None:
    """
    Install handlers on the calcpad logger. Safe to call more than once;
    only the first call has an effect.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Also write to this file when set
        json_format: JSON lines (True) or PLAIN_FORMAT text (False)
    """
    root = logging.getLogger(ROOT_LOGGER)
    if getattr(root, "_calcpad_configured", False):
        return

    formatter = JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)
    root.handlers = _build_handlers(log_file, formatter)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False

    # requests and the test client are chatty at INFO
    for noisy in ("urllib3", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root._calcpad_configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger for a calcpad module, e.g. get_logger("engine") -> calcpad.engine."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
