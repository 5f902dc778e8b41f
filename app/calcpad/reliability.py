"""
Reliability Module

Failure handling for calculation delivery: the sink exceptions and the
circuit breaker that sits in front of a remote calculation store.
"""

import time
from contextlib import contextmanager
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional

from .logging_config import get_logger

logger = get_logger("reliability")


class SinkError(Exception):
    """Base exception for calculation sink errors."""
    pass


class SinkUnavailable(SinkError):
    """The store is being skipped while its circuit is open."""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class SinkDeliveryError(SinkError):
    """A record could not be stored after all retries."""
    pass


class CircuitBreaker:
    """
    Gate in front of a calculation store.

    closed     every delivery is admitted; consecutive failures are counted
    open       deliveries are refused with SinkUnavailable until
               reset_timeout seconds have passed since the circuit opened
    half_open  exactly one trial delivery is admitted; its outcome closes
               the circuit or opens it again for another reset_timeout

    Deliveries normally go through guard(), which admits the attempt and
    records how it ended.

    Args:
        failure_threshold: Consecutive failures that open the circuit
        reset_timeout: Seconds the circuit stays open before a trial
        clock: Monotonic time source
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = self.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._rejected = 0
        self._lock = Lock()

    def _expire(self) -> None:
        # Caller holds the lock
        if self._state == self.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._state = self.HALF_OPEN
            self._trial_in_flight = False
            logger.info("Calculation store circuit half-open, admitting one trial delivery")

    def _open(self) -> None:
        self._state = self.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(f"Calculation store circuit opened after {self._failures} failed deliveries")

    @property
    def state(self) -> str:
        with self._lock:
            self._expire()
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def acquire(self) -> None:
        """
        Admit one delivery attempt.

        Raises:
            SinkUnavailable: While open, or while the half-open trial is
                still running
        """
        with self._lock:
            self._expire()
            if self._state == self.CLOSED:
                return
            if self._state == self.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return
            self._rejected += 1
            state = self._state
            if state == self.OPEN:
                retry_after = max(0.0, self.reset_timeout - (self._clock() - self._opened_at))
            else:
                retry_after = 0.0
        raise SinkUnavailable(f"Calculation store circuit is {state}", retry_after=retry_after)

    def record_success(self) -> None:
        with self._lock:
            if self._state != self.CLOSED:
                logger.info("Calculation store recovered, circuit closed")
            self._state = self.CLOSED
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == self.HALF_OPEN or self._failures >= self.failure_threshold:
                self._open()
            else:
                logger.debug(f"Delivery failure {self._failures}/{self.failure_threshold}")

    @contextmanager
    def guard(self) -> Iterator[None]:
        """Admit one delivery and record its outcome; errors propagate."""
        self.acquire()
        try:
            yield
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            self._expire()
            return {
                "state": self._state,
                "failure_count": self._failures,
                "failure_threshold": self.failure_threshold,
                "reset_timeout": self.reset_timeout,
                "rejected": self._rejected,
            }
