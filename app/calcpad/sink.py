"""
Calculation Sink Module

Where completed calculations go. The session hands every successful
record to a SinkDispatcher, which queues it and delivers it from a
background thread; the calculator never waits on the store.

Backends:
- memory: keeps records in a list (default, handy for tests and demos)
- supabase: inserts rows through the Supabase REST API
- none: discards records
"""

import logging
import threading
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .config import Config
from .engine import CalculationRecord
from .logging_config import get_logger
from .record_queue import QueuedRecord, RecordQueue
from .reliability import CircuitBreaker, SinkDeliveryError, SinkError, SinkUnavailable

logger = get_logger("sink")

# Delivery attempts made by the dispatcher before a record is dropped
MAX_REQUEUES = 3


class CalculationSink(ABC):
    """
    Abstract base class for calculation stores.

    A sink only has to implement deliver(). It may raise SinkError;
    the dispatcher decides what to do about it.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def deliver(self, record: CalculationRecord) -> None:
        """Persist one record."""
        pass

    def get_status(self) -> Dict[str, Any]:
        return {"backend": self.name}


class MemorySink(CalculationSink):
    """Keeps delivered records in memory."""

    def __init__(self):
        self._records: List[CalculationRecord] = []
        self._lock = Lock()

    @property
    def name(self) -> str:
        return "memory"

    def deliver(self, record: CalculationRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[CalculationRecord]:
        with self._lock:
            return list(self._records)

    def get_status(self) -> Dict[str, Any]:
        return {"backend": self.name, "records": len(self.records)}


class NullSink(CalculationSink):
    """Discards every record."""

    @property
    def name(self) -> str:
        return "none"

    def deliver(self, record: CalculationRecord) -> None:
        logger.debug(f"Discarding record for session {record.session_id}")


class SupabaseSink(CalculationSink):
    """
    Inserts records into a Supabase table over its REST interface.

    Transient network errors are retried with exponential backoff; a
    circuit breaker stops hammering the store once it keeps failing.
    """

    def __init__(
        self,
        url: str,
        key: str,
        table: str = "calculations",
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_min_wait: float = 0.5,
        retry_max_wait: float = 5.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self.key = key
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self._post_with_retry = self._create_retry_decorator()(self._post)

    @property
    def name(self) -> str:
        return "supabase"

    def _create_retry_decorator(self):
        """Create a retry decorator based on the configured limits."""
        return retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(min=self.retry_min_wait, max=self.retry_max_wait),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }

    def _post(self, payload: Dict[str, Any]) -> None:
        response = requests.post(
            self.endpoint,
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()

    def deliver(self, record: CalculationRecord) -> None:
        with self.circuit_breaker.guard():
            try:
                self._post_with_retry(record.to_dict())
            except requests.RequestException as e:
                raise SinkDeliveryError(f"Failed to store calculation: {e}") from e

    def get_status(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "endpoint": self.endpoint,
            "circuit_breaker": self.circuit_breaker.get_status(),
        }


class SinkDispatcher:
    """
    Fire-and-forget delivery of records to a sink.

    submit() only enqueues. A daemon worker thread (start()/stop())
    delivers in the background; drain() does the same work inline and
    is what tests and shutdown use.
    """

    def __init__(self, sink: CalculationSink, max_queue_size: int = 100, poll_interval: float = 0.5):
        self.sink = sink
        self.queue = RecordQueue(max_size=max_queue_size)
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._stats_lock = Lock()
        self._delivered = 0
        self._failed = 0
        self._dropped = 0

    def submit(self, record: CalculationRecord) -> None:
        """Queue a record for delivery. Never raises, never blocks on the sink."""
        self.queue.put(record)

    def start(self) -> None:
        """Start the background worker if it is not already running."""
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._run, name="calcpad-sink", daemon=True)
        self._worker.start()
        logger.info(f"Sink dispatcher started ({self.sink.name})")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker and deliver whatever is still queued."""
        self._stop_event.set()
        self.queue.wake()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        self.drain()
        logger.info("Sink dispatcher stopped")

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            item = self.queue.get(timeout=self.poll_interval)
            if item is not None:
                self._deliver(item)

    def drain(self) -> int:
        """
        Deliver every queued record in the calling thread.

        Returns:
            Number of records delivered
        """
        delivered = 0
        while True:
            item = self.queue.get(timeout=0)
            if item is None:
                break
            if self._deliver(item, requeue=False):
                delivered += 1
        if delivered:
            logger.info(f"Delivered {delivered} queued records")
        return delivered

    def _deliver(self, item: QueuedRecord, requeue: bool = True) -> bool:
        try:
            self.sink.deliver(item.record)
        except SinkUnavailable as e:
            logger.warning(f"Sink unavailable for another {e.retry_after:.0f}s, dropping record: {e}")
            self._count("dropped")
            return False
        except SinkError as e:
            self._count("failed")
            item.retry_count += 1
            if requeue and item.retry_count < MAX_REQUEUES and self.queue.requeue(item):
                logger.warning(f"Delivery failed (attempt {item.retry_count}), requeued: {e}")
            else:
                logger.error(f"Dropping record after {item.retry_count} failed attempts: {e}")
                self._count("dropped")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error delivering record: {e}")
            self._count("dropped")
            return False
        self._count("delivered")
        return True

    def _count(self, what: str) -> None:
        with self._stats_lock:
            if what == "delivered":
                self._delivered += 1
            elif what == "failed":
                self._failed += 1
            else:
                self._dropped += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = {
                "delivered": self._delivered,
                "failed": self._failed,
                "dropped": self._dropped,
            }
        stats["running"] = self.is_running
        stats["queue"] = self.queue.get_stats()
        stats["sink"] = self.sink.get_status()
        return stats


def create_sink(config: Config) -> CalculationSink:
    """Build the sink selected by SINK_BACKEND."""
    if config.sink_backend == "supabase":
        return SupabaseSink(
            url=config.supabase_url,
            key=config.supabase_key,
            table=config.supabase_table,
            timeout=config.request_timeout,
            retry_attempts=config.retry_attempts,
            retry_min_wait=config.retry_min_wait,
            retry_max_wait=config.retry_max_wait,
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.circuit_breaker_threshold,
                reset_timeout=config.circuit_breaker_timeout,
            ),
        )
    if config.sink_backend == "none":
        return NullSink()
    return MemorySink()
