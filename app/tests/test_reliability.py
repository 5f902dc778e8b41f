"""
Tests for delivery failure handling: how the calculation store's circuit
breaker reacts when the store goes down and comes back.
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from calcpad.engine import CalculationRecord
from calcpad.reliability import (
    CircuitBreaker,
    SinkDeliveryError,
    SinkError,
    SinkUnavailable,
)
from calcpad.sink import SinkDispatcher, SupabaseSink


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(session_id: str = "s1") -> CalculationRecord:
    return CalculationRecord(a=6.0, b=7.0, operator="*", result=42.0, session_id=session_id)


def fail_once(breaker: CircuitBreaker) -> None:
    with pytest.raises(SinkDeliveryError):
        with breaker.guard():
            raise SinkDeliveryError("store is down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=2, reset_timeout=30.0, clock=clock)


class TestStoreOutage:
    """The circuit opens once the store keeps failing."""

    def test_isolated_failure_keeps_circuit_closed(self, breaker):
        fail_once(breaker)
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 1
        breaker.acquire()

    def test_success_forgets_earlier_failures(self, breaker):
        fail_once(breaker)
        with breaker.guard():
            pass
        fail_once(breaker)
        assert breaker.state == CircuitBreaker.CLOSED

    def test_repeated_failures_open_circuit(self, breaker):
        fail_once(breaker)
        fail_once(breaker)
        assert breaker.state == CircuitBreaker.OPEN

    def test_open_circuit_refuses_without_calling_store(self, breaker, clock):
        fail_once(breaker)
        fail_once(breaker)
        clock.advance(10)

        store = MagicMock()
        with pytest.raises(SinkUnavailable) as excinfo:
            with breaker.guard():
                store.insert()
        store.insert.assert_not_called()
        assert excinfo.value.retry_after == pytest.approx(20.0)
        assert breaker.get_status()["rejected"] == 1

    def test_refusal_is_not_counted_as_failure(self, breaker):
        fail_once(breaker)
        fail_once(breaker)
        with pytest.raises(SinkUnavailable):
            breaker.acquire()
        assert breaker.failure_count == 2


class TestStoreRecovery:
    """After reset_timeout a single trial delivery decides what happens next."""

    @pytest.fixture
    def tripped(self, breaker, clock):
        fail_once(breaker)
        fail_once(breaker)
        clock.advance(30)
        return breaker

    def test_half_open_after_timeout(self, tripped):
        assert tripped.state == CircuitBreaker.HALF_OPEN

    def test_only_one_trial_is_admitted(self, tripped):
        tripped.acquire()
        with pytest.raises(SinkUnavailable) as excinfo:
            tripped.acquire()
        assert excinfo.value.retry_after == 0.0
        assert tripped.state == CircuitBreaker.HALF_OPEN

    def test_successful_trial_closes_circuit(self, tripped):
        with tripped.guard():
            pass
        assert tripped.state == CircuitBreaker.CLOSED
        assert tripped.failure_count == 0
        tripped.acquire()
        tripped.acquire()

    def test_failed_trial_reopens_for_full_timeout(self, tripped, clock):
        fail_once(tripped)
        assert tripped.state == CircuitBreaker.OPEN

        clock.advance(29)
        assert tripped.state == CircuitBreaker.OPEN
        clock.advance(1)
        assert tripped.state == CircuitBreaker.HALF_OPEN

    def test_unexpected_error_in_trial_still_counts(self, tripped):
        with pytest.raises(RuntimeError):
            with tripped.guard():
                raise RuntimeError("bug in payload encoding")
        assert tripped.state == CircuitBreaker.OPEN

    def test_status_reports_state(self, tripped):
        status = tripped.get_status()
        assert status["state"] == CircuitBreaker.HALF_OPEN
        assert status["failure_threshold"] == 2
        assert status["reset_timeout"] == 30.0


class TestSupabaseOutage:
    """The breaker wired into the Supabase sink and the dispatcher."""

    @pytest.fixture
    def sink(self, breaker):
        return SupabaseSink(
            url="https://example.supabase.co",
            key="anon-key",
            retry_attempts=1,
            retry_min_wait=0,
            retry_max_wait=0,
            circuit_breaker=breaker,
        )

    @patch("calcpad.sink.requests.post")
    def test_outage_then_recovery(self, mock_post, sink, clock):
        dispatcher = SinkDispatcher(sink)
        mock_post.side_effect = requests.ConnectionError("refused")

        for _ in range(3):
            dispatcher.submit(make_record())
        dispatcher.drain()

        # Two real attempts trip the circuit; the third record is refused
        assert mock_post.call_count == 2
        stats = dispatcher.get_stats()
        assert stats["failed"] == 2
        assert stats["dropped"] == 3
        assert stats["sink"]["circuit_breaker"]["state"] == CircuitBreaker.OPEN

        clock.advance(30)
        mock_post.side_effect = None
        mock_post.return_value = MagicMock(status_code=201)
        dispatcher.submit(make_record(session_id="after"))
        assert dispatcher.drain() == 1
        assert sink.circuit_breaker.state == CircuitBreaker.CLOSED
        assert mock_post.call_args.kwargs["json"]["session_id"] == "after"

    @patch("calcpad.sink.requests.post")
    def test_rejected_credentials_count_as_failures(self, mock_post, sink):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
        mock_post.return_value = response

        for _ in range(2):
            with pytest.raises(SinkDeliveryError):
                sink.deliver(make_record())
        assert sink.circuit_breaker.state == CircuitBreaker.OPEN


class TestExceptions:
    """Tests for the sink exception hierarchy."""

    def test_hierarchy(self):
        assert issubclass(SinkUnavailable, SinkError)
        assert issubclass(SinkDeliveryError, SinkError)

    def test_unavailable_carries_retry_hint(self):
        assert SinkUnavailable("open", retry_after=5.0).retry_after == 5.0
