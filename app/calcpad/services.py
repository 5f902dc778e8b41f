"""
Service Layer

Keeps track of calculator sessions and the shared sink dispatcher.
The HTTP server and the terminal front end both go through here.
"""

import time
from threading import Lock
from typing import Dict, List, Optional, Tuple

from .config import Config, load_config
from .logging_config import get_logger
from .session import CalculatorSession
from .sink import CalculationSink, SinkDispatcher, create_sink

logger = get_logger("services")


class SessionNotFound(KeyError):
    """Raised when a session id is unknown."""
    pass


class CalculatorService:
    """
    Session registry plus the sink dispatcher every session reports to.
    """

    def __init__(self, config: Optional[Config] = None, sink: Optional[CalculationSink] = None):
        self.config = config or load_config()
        self.sink = sink or create_sink(self.config)
        self.dispatcher = SinkDispatcher(
            self.sink,
            max_queue_size=self.config.record_queue_max_size,
        )
        self.sessions: Dict[str, CalculatorSession] = {}
        self._last_activity: Dict[str, float] = {}
        self._lock = Lock()

    def start(self) -> None:
        """Start background delivery of calculation records."""
        self.dispatcher.start()

    def stop(self) -> None:
        """Stop delivery, flushing anything still queued."""
        self.dispatcher.stop()

    def create_session(self, session_id: Optional[str] = None) -> CalculatorSession:
        session = CalculatorSession(
            session_id=session_id,
            dispatcher=self.dispatcher,
            max_len=self.config.max_display_len,
        )
        with self._lock:
            self.sessions[session.session_id] = session
            self._last_activity[session.session_id] = time.time()
        logger.info(f"Session {session.session_id} created")
        return session

    def get_or_create_session(self, session_id: Optional[str] = None) -> Tuple[CalculatorSession, bool]:
        """
        Get an existing session or create a new one.

        Returns:
            Tuple of (session, is_new)
        """
        if session_id:
            with self._lock:
                session = self.sessions.get(session_id)
            if session is not None:
                self.touch(session_id)
                return session, False
        return self.create_session(session_id), True

    def get_session(self, session_id: str) -> CalculatorSession:
        with self._lock:
            session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        self.touch(session_id)
        return session

    def close_session(self, session_id: str) -> None:
        with self._lock:
            if self.sessions.pop(session_id, None) is None:
                raise SessionNotFound(session_id)
            self._last_activity.pop(session_id, None)
        logger.info(f"Session {session_id} closed")

    def touch(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._last_activity:
                self._last_activity[session_id] = time.time()

    def cleanup_idle_sessions(self, max_idle: float = 3600.0) -> List[str]:
        """Close sessions that have seen no activity for max_idle seconds."""
        now = time.time()
        with self._lock:
            idle = [sid for sid, last in self._last_activity.items() if now - last > max_idle]
            for sid in idle:
                self.sessions.pop(sid, None)
                self._last_activity.pop(sid, None)
        if idle:
            logger.info(f"Cleaned up {len(idle)} idle session(s)")
        return idle

    def get_status(self) -> dict:
        with self._lock:
            count = len(self.sessions)
        return {
            "sessions": count,
            "max_display_len": self.config.max_display_len,
            "sink": self.dispatcher.get_stats(),
        }
