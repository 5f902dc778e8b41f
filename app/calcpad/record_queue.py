"""
Record Queue Module

Bounded, thread-safe queue of calculation records waiting for delivery.
When the queue is full the oldest record is dropped, so a slow store can
never make the calculator wait.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Condition
from typing import Any, Deque, Dict, Optional

from .engine import CalculationRecord

logger = logging.getLogger(__name__)


@dataclass
class QueuedRecord:
    """A record plus delivery bookkeeping."""
    record: CalculationRecord
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())
    retry_count: int = 0


class RecordQueue:
    """
    Drop-oldest record queue shared by the session (producer) and the
    sink dispatcher (consumer).

    Args:
        max_size: Maximum number of records to hold
    """

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._items: Deque[QueuedRecord] = deque()
        self._cond = Condition()
        self._total_enqueued = 0
        self._total_dequeued = 0
        self._total_dropped = 0

    def put(self, record: CalculationRecord) -> None:
        """Add a record, dropping the oldest one if the queue is full. Never blocks."""
        with self._cond:
            if len(self._items) >= self.max_size:
                self._items.popleft()
                self._total_dropped += 1
                logger.warning(f"Record queue full, dropping oldest record. Queue size: {len(self._items)}")
            self._items.append(QueuedRecord(record=record))
            self._total_enqueued += 1
            self._cond.notify()

    def requeue(self, item: QueuedRecord) -> bool:
        """Put a record back at the front after a failed delivery attempt."""
        with self._cond:
            if len(self._items) >= self.max_size:
                self._total_dropped += 1
                return False
            self._items.appendleft(item)
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[QueuedRecord]:
        """
        Take the next record.

        Args:
            timeout: Maximum time to wait (None = wait indefinitely)

        Returns:
            The queued record, or None on timeout
        """
        with self._cond:
            if not self._cond.wait_for(lambda: len(self._items) > 0, timeout=timeout):
                return None
            self._total_dequeued += 1
            return self._items.popleft()

    def wake(self) -> None:
        """Wake any waiting consumer (used on shutdown)."""
        with self._cond:
            self._cond.notify_all()

    def get_stats(self) -> Dict[str, Any]:
        """Get queue statistics."""
        with self._cond:
            size = len(self._items)
            return {
                "current_size": size,
                "max_size": self.max_size,
                "total_enqueued": self._total_enqueued,
                "total_dequeued": self._total_dequeued,
                "total_dropped": self._total_dropped,
                "is_full": size >= self.max_size,
                "is_empty": size == 0,
            }
